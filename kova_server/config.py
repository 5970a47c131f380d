"""
Server configuration.

Environment variables:
- KOVA_DB_PATH: SQLite database path (default: kova.db)
- KOVA_HUB_SEND_TIMEOUT: Seconds a WebSocket write may take (default: 5.0)
- KOVA_* build settings, see kova_builder.config
"""

import logging
import os
from dataclasses import dataclass, field

from kova_builder.config import BuildConfig

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    db_path: str = "kova.db"
    hub_send_timeout: float = 5.0
    build: BuildConfig = field(default_factory=BuildConfig)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            db_path=get_database_path(),
            hub_send_timeout=get_hub_send_timeout(),
            build=BuildConfig.from_env(),
        )


def get_database_path() -> str:
    """
    Get the database path from environment or use default.

    Returns:
        Path to the SQLite database file
    """
    return os.environ.get("KOVA_DB_PATH", "kova.db")


def get_hub_send_timeout() -> float:
    """
    Get the per-write timeout of the status hub from environment.

    Returns:
        Seconds a single WebSocket write may take
    """
    try:
        timeout = float(os.environ.get("KOVA_HUB_SEND_TIMEOUT", "5.0"))
        if timeout <= 0:
            logger.warning(f"Invalid KOVA_HUB_SEND_TIMEOUT={timeout}, using default 5.0")
            return 5.0
        return timeout
    except ValueError:
        logger.warning(
            f"Invalid KOVA_HUB_SEND_TIMEOUT={os.environ.get('KOVA_HUB_SEND_TIMEOUT')}, "
            "using default 5.0"
        )
        return 5.0
