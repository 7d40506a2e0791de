"""Broker configuration, read from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid value for %s: %r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid value for %s: %r, using %s", name, raw, default)
        return default


@dataclass
class BrokerConfig:
    """Runtime settings for the relay broker.

    All durations are in seconds of wall-clock time.
    """

    host: str = "0.0.0.0"
    port: int = 8080
    device_timeout: float = 15.0
    device_sweep_interval: float = 5.0
    frontend_ping_interval: float = 15.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> BrokerConfig:
        """Build a config from ``DEVICELINK_*`` variables (``PORT`` also honoured)."""
        port_default = _env_int("PORT", cls.port)
        return cls(
            host=os.environ.get("DEVICELINK_HOST", cls.host),
            port=_env_int("DEVICELINK_PORT", port_default),
            device_timeout=_env_float("DEVICELINK_DEVICE_TIMEOUT", cls.device_timeout),
            device_sweep_interval=_env_float(
                "DEVICELINK_DEVICE_SWEEP_INTERVAL", cls.device_sweep_interval
            ),
            frontend_ping_interval=_env_float(
                "DEVICELINK_FRONTEND_PING_INTERVAL", cls.frontend_ping_interval
            ),
            log_level=os.environ.get("DEVICELINK_LOG_LEVEL", cls.log_level).upper(),
        )
