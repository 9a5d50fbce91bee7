################################################################################
# DOCKA-BACKUP
#
# @file:        logging.py
# @module:      docka_backup.helpers.logging
# @description: Central logging setup with structured extra fields.
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
# ==============================================================================
# Hinweise:
# - Components log through get_logger(__name__) and pass context via extra=
# - StructuredFormatter renders extra fields as key=value or one JSON line
# - log_manager.configure() is called once by the CLI before any command
################################################################################

"""
Logging helpers for docka-backup.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import LOG_DATE_FORMAT, LOG_FORMAT

PACKAGE_LOGGER = "docka_backup"

# Attributes every LogRecord carries; anything else came in via extra=
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class Colors:
    """ANSI colors for level names on a terminal."""

    RESET = "\033[0m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    BOLD_RED = "\033[1;31m"

    LEVELS = {
        "DEBUG": DIM,
        "INFO": CYAN,
        "WARNING": YELLOW,
        "ERROR": RED,
        "CRITICAL": BOLD_RED,
    }

    @classmethod
    def level(cls, levelname: str) -> str:
        color = cls.LEVELS.get(levelname)
        if not color:
            return levelname
        return f"{color}{levelname}{cls.RESET}"


def extract_extra(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the fields a caller attached to the record via ``extra=``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    Formatter that appends ``extra`` context to the log line.

    In ``text`` mode the context is rendered as ``key=value`` pairs after the
    message; in ``json`` mode the whole record becomes one JSON object.
    """

    def __init__(self, fmt: str = "text", use_colors: bool = False):
        super().__init__(LOG_FORMAT, LOG_DATE_FORMAT)
        self.mode = fmt
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        extra = extract_extra(record)

        if self.mode == "json":
            payload = {
                "time": self.formatTime(record, LOG_DATE_FORMAT),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            payload.update(extra)
            if record.exc_info:
                payload["exception"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        original_levelname = record.levelname
        if self.use_colors:
            record.levelname = Colors.level(original_levelname)
        try:
            line = super().format(record)
        finally:
            record.levelname = original_levelname

        if extra:
            context = " ".join(f"{key}={value}" for key, value in sorted(extra.items()))
            line = f"{line} [{context}]"
        return line


class LogManager:
    """Owns the handlers of the package logger."""

    def __init__(self):
        self.level = logging.INFO
        self.log_file: Optional[Path] = None
        self.fmt = "text"
        self._handlers: list[logging.Handler] = []

    def configure(
        self,
        level: str = "INFO",
        log_file: Optional[Path] = None,
        fmt: str = "text",
    ) -> None:
        """
        (Re)configure package logging.

        Args:
            level: Level name (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional file that receives a copy of every line
            fmt: ``text`` or ``json``
        """
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")

        root = logging.getLogger(PACKAGE_LOGGER)
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers = []

        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(
            StructuredFormatter(fmt, use_colors=fmt == "text" and sys.stderr.isatty())
        )
        self._handlers.append(console)

        if log_file:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(StructuredFormatter(fmt))
            self._handlers.append(file_handler)

        for handler in self._handlers:
            root.addHandler(handler)
        root.setLevel(numeric)

        self.level = numeric
        self.log_file = log_file
        self.fmt = fmt


log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the package logger."""
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)

