"""
Logging for the voice tutor.

Console output goes to stderr so the interactive prompt on stdout stays
readable; an optional log file gets the long format with call sites.
Chatty transport loggers (websockets frames, aiohttp access lines, asyncio
debug) are held at WARNING unless the tutor itself runs at DEBUG.

Usage:
    from mentorai.logger import get_logger

    logger = get_logger(__name__)
    logger.info(f"Session {session_id} started")
"""

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO


NOISY_LOGGERS = ("websockets", "aiohttp.access", "asyncio")

TTY_FORMAT = "%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s"
PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


def _to_level(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


class ColoredFormatter(logging.Formatter):
    """Colors the level name by severity. The caller's record is left untouched."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        # Copy so file handlers still see the plain level name
        tinted = logging.makeLogRecord(record.__dict__)
        tinted.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(tinted)


def set_level(level: str) -> None:
    """Change the tutor's log level and re-tune the transport loggers."""
    numeric_level = _to_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers:
        handler.setLevel(numeric_level)

    transport_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Replace the root logger's handlers with a console handler and, if
    log_file is given, a file handler.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_file: Optional path, parent directories are created
        use_colors: Color level names when the console is a terminal
        stream: Console stream, stderr by default
    """
    stream = stream or sys.stderr
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream)
    if use_colors and stream.isatty():
        console_handler.setFormatter(ColoredFormatter(TTY_FORMAT, datefmt="%H:%M:%S"))
    else:
        console_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    set_level(level)


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__."""
    return logging.getLogger(name)


_initialized = False


def init_logging(level: Optional[str] = None) -> None:
    """
    Configure logging from settings on first call.

    Later calls only apply a level override (e.g. from --verbose).
    """
    global _initialized
    if _initialized:
        if level:
            set_level(level)
        return

    try:
        from mentorai.config import settings
        setup_logging(level=level or settings.logging.level, log_file=settings.logging.file)
    except ValueError:
        # Malformed numeric env values in settings; still give the user a console log
        setup_logging(level=level or "INFO")

    _initialized = True
