"""Liveness supervisor: periodic device-timeout and frontend ping sweeps."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from devicelink.broker import Broker

logger = logging.getLogger(__name__)


class LivenessSupervisor:
    """Runs the two sweeps as independent background tasks."""

    def __init__(
        self,
        broker: Broker,
        device_sweep_interval: float = 5.0,
        frontend_ping_interval: float = 15.0,
    ) -> None:
        self.broker = broker
        self.device_sweep_interval = device_sweep_interval
        self.frontend_ping_interval = frontend_ping_interval
        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start both sweep loops."""
        if self._running:
            logger.warning("Liveness supervisor is already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._loop("device", self.broker.sweep_devices, self.device_sweep_interval)
            ),
            asyncio.create_task(
                self._loop("frontend", self.broker.sweep_frontends, self.frontend_ping_interval)
            ),
        ]
        logger.info(
            "Liveness supervisor started (device sweep=%.1fs, frontend ping=%.1fs)",
            self.device_sweep_interval,
            self.frontend_ping_interval,
        )

    async def stop(self) -> None:
        """Cancel both loops. Safe to call when not running."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Liveness supervisor stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _loop(self, name: str, sweep: Callable[[], list[str]], interval: float) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                dropped = sweep()
                if dropped:
                    logger.info("%s sweep took %d offline: %s", name.capitalize(), len(dropped), dropped)
            except Exception:
                logger.exception("%s sweep failed", name.capitalize())
