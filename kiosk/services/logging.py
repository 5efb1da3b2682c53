"""Logging for kiosk, admin console and report viewer instances.

Several instances usually share one machine and one log directory, so every
line carries the instance name:

    [2026-03-01 18:42:07] kiosk-lobby kiosk.services.sync_service - WARNING - ...

The level comes from the caller, else the LOG_LEVEL env var, else INFO.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(instance)s %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty libraries stay at WARNING unless the instance runs at DEBUG
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "uvicorn.access")


def get_log_level(level_name: Optional[str] = None) -> int:
    """Resolve a level name to a logging constant (unknown names give INFO)."""
    level_str = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_str)
    return level if isinstance(level, int) else logging.INFO


class InstanceFilter(logging.Filter):
    """Stamp each record with the instance name."""

    def __init__(self, instance: str):
        super().__init__()
        self.instance = instance

    def filter(self, record: logging.LogRecord) -> bool:
        record.instance = self.instance
        return True


def setup_server_logging(
    log_file: str = "logs/server.log",
    level_name: Optional[str] = None,
    instance: str = "kiosk",
) -> None:
    """
    Send all loggers to stdout and to a per-instance log file.

    Args:
        log_file: Path to log file (parent directories are created)
        level_name: Level name overriding LOG_LEVEL
        instance: Name written on every line (e.g. "kiosk-lobby", "admin")

    Calling it again replaces the handlers installed by the previous call.
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    level = get_log_level(level_name)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    instance_filter = InstanceFilter(instance)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        if any(isinstance(f, InstanceFilter) for f in handler.filters):
            handler.close()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path)):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(instance_filter)
        root_logger.addHandler(handler)

    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
