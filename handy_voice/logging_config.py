"""Logging setup for handy-voice: console plus a rotating file in the app dir."""

import logging
import sys
from logging.handlers import RotatingFileHandler

from handy_voice.config import APP_DIR

LOG_DIR = APP_DIR / "logs"
LOG_FILE = LOG_DIR / "handy_voice.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3

# Chatty at INFO; only let them through when debugging.
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "faster_whisper")


def quiet_third_party(level: int) -> None:
    """Raise HTTP and model loggers to WARNING unless ``level`` is DEBUG."""
    target = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(target)


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure the ``handy_voice`` logger.

    Calling it again only changes the level; handlers are attached once.

    Args:
        level: Console logging level (default: INFO). The file always gets DEBUG.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("handy_voice")
    logger.setLevel(level)
    quiet_third_party(level)

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"Could not set up file logging: {e}")

    return logger
