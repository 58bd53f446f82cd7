"""Logging setup shared by the CLI and the API server.

Console output always; an optional rotating log file when ``log_file`` (or
``LOG_FILE``) is set. Structured events are single ``event=... key=value``
lines so they stay greppable in either sink.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Union

__all__ = [
    "setup_logging",
    "get_logger",
    "log_event",
    "LOGGER_NAMES",
]

LOGGER_NAMES = ("reefstock", "storefront", "reef_import")

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_HANDLER_TAG = "_reefstock_handler"


def _parse_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    level: Union[int, str, None] = None,
    log_to_console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """Configure the project loggers.

    Args:
        level: Level name or number; defaults to ``LOG_LEVEL`` or INFO.
        log_to_console: Attach a stderr handler.
        log_file: Path for a rotating log file; defaults to ``LOG_FILE``.

    Returns:
        The ``reefstock`` logger.

    Calling this again replaces the handlers it added earlier, so repeated
    setup never duplicates output.
    """
    lvl = _parse_level(level)
    log_file = log_file or os.getenv("LOG_FILE") or None
    formatter = logging.Formatter(_FORMAT, datefmt="%H:%M:%S")

    handlers = []
    if log_to_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        handlers.append(console)
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        fh.setFormatter(formatter)
        handlers.append(fh)

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(lvl)
        for h in list(logger.handlers):
            if getattr(h, _HANDLER_TAG, False):
                logger.removeHandler(h)
                h.close()
        for h in handlers:
            setattr(h, _HANDLER_TAG, True)
            logger.addHandler(h)
        logger.propagate = False
    return logging.getLogger("reefstock")


def get_logger(name: str = "reefstock") -> logging.Logger:
    if name == "reefstock" or name.startswith(LOGGER_NAMES):
        return logging.getLogger(name)
    return logging.getLogger(f"reefstock.{name}")


def log_event(logger: logging.Logger, event_type: str, level: int = logging.INFO, **data: Any) -> None:
    """Log one structured event, e.g. ``event=import rows=12 items=10``."""
    parts = [f"event={event_type}"]
    parts.extend(f"{k}={v}" for k, v in data.items())
    logger.log(level, " ".join(parts))
