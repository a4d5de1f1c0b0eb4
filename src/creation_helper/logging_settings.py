"""Per-logger levels read from ``logging_settings.conf``.

Each non-comment line is ``key = level``. ``terminal`` sets the console
handler level; every other key names one area of the package::

    terminal = info
    engine = debug      # creation_helper.engine
    stream = off        # creation_helper.engine.stream

Keys that are left out inherit from the package logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

TERMINAL_KEY = "terminal"

LOGGER_NAMES: dict[str, str] = {
    "engine": "creation_helper.engine",
    "stream": "creation_helper.engine.stream",
    "backend": "creation_helper.backend",
    "events": "creation_helper.events",
}

# ``None`` silences the target completely.
LEVEL_NAMES: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = logging.INFO
    logger_levels: Mapping[str, int | None] = field(default_factory=dict)

    def overrides(self) -> dict[str, int | None]:
        """Return configured levels keyed by full logger name."""

        return {LOGGER_NAMES[key]: level for key, level in self.logger_levels.items()}


def load_logging_settings(path: Path) -> LoggingSettings:
    """Read ``path``; a missing file yields the defaults.

    Unknown keys and level names are reported and skipped.
    """

    if not path.is_file():
        return LoggingSettings()

    terminal_level: int | None = logging.INFO
    logger_levels: dict[str, int | None] = {}

    lines = path.read_text(encoding="utf-8").splitlines()
    for number, raw_line in enumerate(lines, start=1):
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        key, value = key.strip().lower(), value.strip().lower()
        if not sep or not key:
            logger.warning("%s:%d: expected 'key = level'", path, number)
            continue
        if value not in LEVEL_NAMES:
            logger.warning("%s:%d: unknown level %r for %s", path, number, value, key)
            continue

        if key == TERMINAL_KEY:
            terminal_level = LEVEL_NAMES[value]
        elif key in LOGGER_NAMES:
            logger_levels[key] = LEVEL_NAMES[value]
        else:
            logger.warning("%s:%d: unknown logging key %r", path, number, key)

    return LoggingSettings(terminal_level=terminal_level, logger_levels=logger_levels)


__all__ = [
    "LEVEL_NAMES",
    "LOGGER_NAMES",
    "LoggingSettings",
    "TERMINAL_KEY",
    "load_logging_settings",
]
