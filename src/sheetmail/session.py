"""Wiring of ingestion, token, tracker and dispatch components for one session."""

import logging
from typing import List, Optional

import httpx

from .config import Settings
from .dispatch import DispatchEngine
from .exceptions import ConfigurationError
from .models import DispatchSummary, ProbeResult, Record, SendOutcome
from .sheets import SheetsClient, parse_spreadsheet_id
from .tokens import TokenManager, derive_token_url
from .tracker import StatusTracker

logger = logging.getLogger(__name__)


class DispatchSession:
    """Owns the HTTP client and the components built on it.

    Use as an async context manager; a client passed in by the caller is
    left open on exit.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        dispatch = settings.dispatch
        try:
            derived_token_url = derive_token_url(dispatch.endpoint, dispatch.token_script)
        except httpx.InvalidURL as e:
            raise ConfigurationError(
                f"Invalid dispatch endpoint: {dispatch.endpoint!r}",
                cause=e,
                context={"endpoint": dispatch.endpoint}
            )
        token_url = dispatch.token_url or derived_token_url

        self._owns_client = client is None
        self.client = client if client is not None else httpx.AsyncClient()

        self.tracker = StatusTracker()
        self.sheets = SheetsClient(settings.sheets, self.client)
        self.tokens = TokenManager(self.client, token_url, timeout=dispatch.token_timeout)
        self.engine = DispatchEngine(
            self.client,
            dispatch.endpoint,
            self.tracker,
            tokens=self.tokens,
            throttle_delay=dispatch.throttle_delay,
            send_timeout=dispatch.send_timeout,
            probe_timeout=dispatch.probe_timeout,
            probe_preview_chars=dispatch.probe_preview_chars,
        )

    async def __aenter__(self) -> "DispatchSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def load(self, spreadsheet: Optional[str] = None, sheet_name: Optional[str] = None) -> List[Record]:
        """
        Fetch the sheet and start tracking its records.

        Args:
            spreadsheet: Spreadsheet ID or URL (defaults to the configured one)
            sheet_name: Sheet to read (defaults to the configured one)

        Returns:
            The tracked records in sheet order

        Raises:
            ConfigurationError: If no spreadsheet is given or configured
            IngestionError: If the sheet cannot be loaded
        """
        spreadsheet = spreadsheet or self.settings.sheets.spreadsheet_id
        try:
            spreadsheet_id = parse_spreadsheet_id(spreadsheet or "")
        except ValueError as e:
            raise ConfigurationError(
                "No spreadsheet ID provided. Pass one or set SHEETMAIL_SHEETS__SPREADSHEET_ID",
                cause=e
            )

        records = await self.sheets.fetch(spreadsheet_id, sheet_name)
        self.tracker.load(records)
        return self.tracker.snapshot()

    async def send_one(self, position: int) -> SendOutcome:
        """Send the tracked record at ``position``.

        Raises:
            KeyError: If no record is tracked at that position
        """
        record = self.tracker.get(position)
        if record is None:
            raise KeyError(f"No record at row {position}")
        return await self.engine.send_one(record)

    async def send_all(self) -> DispatchSummary:
        return await self.engine.send_all()

    async def probe(self) -> ProbeResult:
        return await self.engine.probe()
