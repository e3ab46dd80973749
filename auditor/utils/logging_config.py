"""
Logging Setup
=============
Root logger configuration for the audit service.

    setup_logging(level, log_dir, stream) -> path of the log file or None

Every record carries the id of the audit session being processed, taken
from the ``current_session`` context variable ("-" outside a submission).
Console lines are coloured by level only when the stream is a terminal;
the daily file ``auditor_YYYYMMDD.log`` under LOG_DIR is always plain.
"""
import contextvars
import logging
import os
import sys
from datetime import datetime
from typing import Optional, Union

current_session: contextvars.ContextVar[str] = contextvars.ContextVar("current_session", default="-")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(session_id)s | %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Follow the configured level; uvicorn.access is capped at WARNING
SERVICE_LOGGERS = ("auditor", "main", "uvicorn", "uvicorn.error")


class SessionContextFilter(logging.Filter):
    """Stamps records with the session id of the running submission."""

    def filter(self, record):
        if not hasattr(record, "session_id"):
            record.session_id = current_session.get()
        return True


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps each line in the colour of its level."""

    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self, fmt=LOG_FORMAT, datefmt=DATE_FORMAT, use_color=True):
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record):
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        if not self.use_color or color is None:
            return line
        return f"{color}{line}{self.RESET}"


def resolve_level(level: Union[int, str, None]) -> int:
    """Numeric level for an int or a level name; unknown names map to INFO."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level or "INFO").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO, log_dir: Optional[str] = "logs", stream=None) -> Optional[str]:
    """
    Configure the root logger for the service.

    Safe to call more than once; existing root handlers are replaced.
    Pass log_dir=None to skip the file handler (tests, read-only hosts).

    Returns
    -------
    str or None
        Path of the log file, None when file logging is off.
    """
    level = resolve_level(level)
    stream = stream or sys.stderr
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    session_filter = SessionContextFilter()

    # stderr keeps uvicorn's stdout clean
    console_handler = logging.StreamHandler(stream)
    console_handler.addFilter(session_filter)
    console_handler.setFormatter(ColoredFormatter(use_color=hasattr(stream, "isatty") and stream.isatty()))
    root_logger.addHandler(console_handler)

    log_file = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"auditor_{datetime.now().strftime('%Y%m%d')}.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.addFilter(session_filter)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for logger_name in SERVICE_LOGGERS:
        named = logging.getLogger(logger_name)
        named.setLevel(level)
        named.propagate = True
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))

    root_logger.info("Logging initialized at %s (%s)", logging.getLevelName(level), log_file or "console only")
    return log_file
