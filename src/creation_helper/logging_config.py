"""Process-wide logging setup for applications embedding the engine."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .config import Settings, get_settings
from .logging_settings import load_logging_settings

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers above this level are silenced entirely when a key is set to "off".
_DISABLED_LEVEL = logging.CRITICAL + 10


def configure_logging(settings: Settings | None = None) -> None:
    """Configure logging from LOG_LEVEL/LOG_FILE and the logging settings file."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    settings = settings or get_settings()
    file_settings = load_logging_settings(settings.resolved_logging_settings_path)

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if file_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(file_settings.terminal_level)
        handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("creation_helper").setLevel(log_level)
    for name, level in file_settings.overrides().items():
        _apply_level(name, level)

    # Quiet down transport chatter unless explicitly debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _apply_level(name: str, level: int | None) -> None:
    logging.getLogger(name).setLevel(_DISABLED_LEVEL if level is None else level)


__all__ = ["configure_logging"]
