"""Google Sheets ingestion for sheetmail."""

import logging
from typing import Optional, List, Any, Dict
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from .config import SheetsConfig, ColumnMap
from .exceptions import ConfigurationError, IngestionError, MissingColumnError
from .models import Record, RecordStatus


logger = logging.getLogger(__name__)

SPREADSHEET_URL_PREFIX = "https://docs.google.com/spreadsheets/d/"

REQUIRED_FIELDS = ("primary_recipients", "subject", "body")


class ValuesResponse(BaseModel):
    """Shape of a values API response; only ``values`` is used."""

    model_config = ConfigDict(extra="ignore")

    values: Optional[List[List[Any]]] = None


def parse_spreadsheet_id(text: str) -> str:
    """
    Extract a spreadsheet ID from a bare ID or a docs.google.com URL.

    Args:
        text: User input, e.g. ``https://docs.google.com/spreadsheets/d/<id>/edit``

    Returns:
        The spreadsheet ID

    Raises:
        ValueError: If no ID can be found
    """
    spreadsheet_id = (text or "").strip()
    if spreadsheet_id.startswith(SPREADSHEET_URL_PREFIX):
        spreadsheet_id = spreadsheet_id[len(SPREADSHEET_URL_PREFIX):].split("/")[0]
    if not spreadsheet_id:
        raise ValueError("Please enter a spreadsheet ID")
    return spreadsheet_id


def _cell(row: List[Any], index: Optional[int], default: str = "") -> str:
    if index is None or index >= len(row):
        return default
    value = row[index]
    return default if value is None else str(value)


def parse_grid(grid: List[List[Any]], columns: Optional[ColumnMap] = None) -> List[Record]:
    """
    Build records from a grid whose first row is the header.

    Columns are located by exact header name in any order. Cells missing from
    short rows take the same default as an absent column.

    Args:
        grid: Rows of cell values, header first
        columns: Header names to look for

    Returns:
        One record per data row, in grid order

    Raises:
        MissingColumnError: If a grid with data rows lacks a required column
    """
    columns = columns or ColumnMap()
    if len(grid) <= 1:
        return []

    headers = [str(h) for h in grid[0]]
    index: Dict[str, Optional[int]] = {}
    for field_name, header in columns.model_dump().items():
        # first occurrence wins if a header is repeated
        index[field_name] = headers.index(header) if header in headers else None

    missing = [getattr(columns, name) for name in REQUIRED_FIELDS if index[name] is None]
    if missing:
        raise MissingColumnError(missing, headers)

    records = []
    for grid_index, row in enumerate(grid[1:], start=1):
        row = row or []
        records.append(Record(
            primary_recipients=_cell(row, index["primary_recipients"]),
            backup_recipient=_cell(row, index["backup_recipient"]),
            subject=_cell(row, index["subject"]),
            links=_cell(row, index["links"]),
            body=_cell(row, index["body"]),
            cc_recipients=_cell(row, index["cc_recipients"]),
            status=RecordStatus.normalize(_cell(row, index["status"], RecordStatus.PENDING.value)),
            source_position=grid_index + 1,
        ))
    return records


class SheetsClient:
    """Client for reading record grids from the Google Sheets values API."""

    def __init__(self, config: SheetsConfig, client: httpx.AsyncClient):
        """
        Initialize the Sheets client.

        Args:
            config: Sheets configuration containing the API key and column names
            client: Shared HTTP client
        """
        self.config = config
        self._client = client

    def values_url(self, spreadsheet_id: str, sheet_name: str) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/{quote(spreadsheet_id, safe='')}/values/{quote(sheet_name, safe='')}"

    async def fetch_grid(self, spreadsheet_id: str, sheet_name: Optional[str] = None) -> List[List[Any]]:
        """
        Fetch the raw grid of a sheet.

        Raises:
            ConfigurationError: If no API key is configured
            IngestionError: On network failure, non-200 response or malformed body
        """
        sheet_name = sheet_name or self.config.sheet_name
        if not self.config.api_key:
            raise ConfigurationError(
                "No Sheets API key provided. Set SHEETMAIL_SHEETS__API_KEY",
                context={"config_keys": ["sheets.api_key"]}
            )

        url = self.values_url(spreadsheet_id, sheet_name)
        context = {"spreadsheet_id": spreadsheet_id, "sheet_name": sheet_name}

        try:
            response = await self._client.get(
                url,
                params={"key": self.config.api_key},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise IngestionError(f"Failed to fetch sheet: {e}", cause=e, context=context)

        if response.status_code != 200:
            raise IngestionError(
                f"Failed to load data: HTTP {response.status_code}",
                context={**context, "status_code": response.status_code}
            )

        try:
            payload = ValuesResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IngestionError(f"Malformed values response: {e}", cause=e, context=context)

        return payload.values or []

    async def fetch(self, spreadsheet_id: str, sheet_name: Optional[str] = None) -> List[Record]:
        """
        Fetch and parse the records of a sheet.

        Args:
            spreadsheet_id: The Google Sheet ID
            sheet_name: Sheet to read (defaults to the configured sheet)

        Returns:
            Records in sheet order; empty if the sheet has no data rows

        Raises:
            IngestionError: If the grid cannot be fetched or lacks required columns
        """
        grid = await self.fetch_grid(spreadsheet_id, sheet_name)
        if not grid:
            logger.warning(f"No data found in sheet: {sheet_name or self.config.sheet_name}")
            return []

        records = parse_grid(grid, self.config.columns)
        logger.info(f"Fetched {len(records)} records from spreadsheet {spreadsheet_id}")
        return records
