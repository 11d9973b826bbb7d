"""Dispatch messages read from a Google Sheet through a token-protected endpoint."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .logging import setup_logging
from .exceptions import (
    SheetmailError,
    ConfigurationError,
    IngestionError,
    MissingColumnError,
    TokenFetchError,
    DispatchError,
)
from .models import Record, RecordStatus, SendOutcome, DispatchSummary, ProbeResult, status_color_class
from .sheets import SheetsClient, parse_grid, parse_spreadsheet_id
from .tokens import TokenManager, TokenState
from .tracker import StatusTracker
from .dispatch import DispatchEngine, compose_body
from .session import DispatchSession

__all__ = [
    "Settings",
    "load_settings",
    "setup_logging",
    "SheetmailError",
    "ConfigurationError",
    "IngestionError",
    "MissingColumnError",
    "TokenFetchError",
    "DispatchError",
    "Record",
    "RecordStatus",
    "SendOutcome",
    "DispatchSummary",
    "ProbeResult",
    "status_color_class",
    "SheetsClient",
    "parse_grid",
    "parse_spreadsheet_id",
    "TokenManager",
    "TokenState",
    "StatusTracker",
    "DispatchEngine",
    "compose_body",
    "DispatchSession",
]
