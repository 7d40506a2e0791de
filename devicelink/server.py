"""devicelink — relay broker server.

Exposes:
  WS   /  and  /ws          — device and frontend channel
  POST /signup              — broadcast a signup notice to every connection
  GET  /devices             — device directory snapshot
  GET  /frontends           — frontend directory snapshot
  GET  /health              — liveness check

Start with::

    python -m devicelink.server
    # or
    uvicorn devicelink.server:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from devicelink import protocol
from devicelink.broker import Broker
from devicelink.config import BrokerConfig
from devicelink.router import MessageRouter
from devicelink.supervisor import LivenessSupervisor
from devicelink.websocket import relay_ws_handler

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────
# Request models
# ──────────────────────────────────────────────────────────────────

class SignupNotice(BaseModel):
    fullName: str
    department: str = ""


# ──────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    supervisor: LivenessSupervisor = app.state.supervisor
    await supervisor.start()
    try:
        yield
    finally:
        await supervisor.stop()


def create_app(config: BrokerConfig | None = None) -> FastAPI:
    """Build the FastAPI app with a fresh broker, router and supervisor."""
    config = config or BrokerConfig.from_env()

    app = FastAPI(title="devicelink", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    broker = Broker(device_timeout=config.device_timeout)
    app.state.config = config
    app.state.broker = broker
    app.state.router = MessageRouter(broker)
    app.state.supervisor = LivenessSupervisor(
        broker,
        device_sweep_interval=config.device_sweep_interval,
        frontend_ping_interval=config.frontend_ping_interval,
    )

    app.add_api_websocket_route("/", relay_ws_handler)
    app.add_api_websocket_route("/ws", relay_ws_handler)

    @app.post("/signup")
    async def signup(notice: SignupNotice):
        delivered = broker.broadcast(protocol.signup(notice.model_dump()))
        logger.info("Signup notice for %s sent to %d connections", notice.fullName, delivered)
        return {"ok": True, "delivered": delivered}

    @app.get("/health")
    async def health():
        return {"status": "ok", **broker.stats()}

    @app.get("/devices")
    async def list_devices():
        return {"devices": broker.list_devices()}

    @app.get("/frontends")
    async def list_frontends():
        return {"frontends": broker.list_frontends()}

    return app


app = create_app()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn
    config = app.state.config
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting devicelink broker on %s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, reload=False)


if __name__ == "__main__":
    main()
