"""Logging setup for sheetmail.

Dispatch and ingestion log with ``extra={"context": {...}}``; the sheet row a
message is about is lifted out of that context onto the record as ``row`` so
both the console and the JSON log file can show it.
"""

import logging
import logging.handlers
import sys
import json
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone

from .config import LoggingConfig, Settings


# Attributes every LogRecord carries; anything else was passed through ``extra``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "row"}

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


class RowFilter(logging.Filter):
    """Sets ``record.row`` from an explicit ``row`` extra or ``context["row"]``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "row", None) is None:
            context = getattr(record, "context", None)
            record.row = context.get("row") if isinstance(context, dict) else None
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line for the log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        row = getattr(record, "row", None)
        if row is not None:
            entry["row"] = row

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and value is not None:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Plain text with a ``[row N]`` tag, colored by level on a terminal."""

    def __init__(self, fmt: Optional[str] = None, color: bool = False):
        super().__init__(fmt)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        row = getattr(record, "row", None)
        if row is not None:
            text = f"[row {row}] {text}"
        if self.color and record.levelno in _LEVEL_COLORS:
            text = f"{_LEVEL_COLORS[record.levelno]}{text}{_RESET}"
        return text


def setup_logging(
    config: Optional[LoggingConfig] = None,
    settings: Optional[Settings] = None
) -> None:
    """
    Configure the root logger from ``settings.logging`` or ``config``.

    Console output goes to stdout; when ``file_path`` is set, JSON lines are
    written to a rotating file as well.
    """
    if settings is not None:
        config = settings.logging
    config = config or LoggingConfig()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.addFilter(RowFilter())
        console_handler.setFormatter(ConsoleFormatter(config.format, color=sys.stdout.isatty()))
        root_logger.addHandler(console_handler)

    if config.file_path:
        log_file = Path(config.file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.addFilter(RowFilter())
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    # request lines from the HTTP client would drown out per-row messages
    for name in ('httpx', 'httpcore'):
        logging.getLogger(name).setLevel(logging.WARNING)
