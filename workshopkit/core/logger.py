"""Logging setup shared by every module."""

import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from typing import Any

from workshopkit.config import env

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "workshopkit.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


class WorkshopLogger(logging.Logger):
    """Logger with an ``error_trace`` helper that attaches the traceback in debug mode."""

    def error_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        if env.DEBUG:
            kwargs.setdefault("exc_info", sys.exc_info()[0] is not None)
            if not kwargs["exc_info"]:
                msg = f"{msg}\n{''.join(traceback.format_stack()[:-1])}"
        self.error(msg, *args, **kwargs)


logging.setLoggerClass(WorkshopLogger)

_file_handler: RotatingFileHandler | None = None


def _get_file_handler() -> RotatingFileHandler | None:
    global _file_handler
    if _file_handler is not None or not env.ENABLE_LOGGING:
        return _file_handler
    try:
        env.LOG_DIR.mkdir(parents=True, exist_ok=True)
        _file_handler = RotatingFileHandler(
            env.LOG_DIR / LOG_FILE_NAME,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        _file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    except OSError as e:
        sys.stderr.write(f"Could not open log file in {env.LOG_DIR}: {e}\n")
        _file_handler = None
    return _file_handler


def setup_logger(name: str) -> WorkshopLogger:
    """Return the named logger, attaching handlers the first time it is requested."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # type: ignore[return-value]

    logger.setLevel(getattr(logging, env.LOG_LEVEL, logging.INFO))
    logger.propagate = False

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    file_handler = _get_file_handler()
    if file_handler is not None:
        logger.addHandler(file_handler)

    return logger  # type: ignore[return-value]
