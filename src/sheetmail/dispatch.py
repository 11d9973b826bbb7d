"""Submission of records to the dispatch endpoint."""

import asyncio
import logging
from typing import Dict, Iterable, Optional

import httpx

from .exceptions import DispatchError
from .models import DispatchSummary, ProbeResult, Record, RecordStatus, SendOutcome
from .tokens import TokenManager
from .tracker import StatusTracker

logger = logging.getLogger(__name__)

LINKS_LABEL = "Relevant Links:"
BACKUP_LABEL = "Backup Email:"


def compose_body(record: Record) -> str:
    """Message body with the links section and backup contact appended."""
    body = record.body
    if record.links:
        body += f"\n\n{LINKS_LABEL}\n{record.links}"
    if record.backup_recipient and record.backup_recipient != record.primary_recipients:
        body += f"\n\n{BACKUP_LABEL} {record.backup_recipient}"
    return body


def build_form(record: Record, token: Optional[str] = None) -> Dict[str, str]:
    """Form fields posted to the dispatch endpoint."""
    form = {
        "to": ", ".join(record.recipient_list),
        "cc": ", ".join(record.cc_list),
        "subject": record.subject,
        "body": compose_body(record),
    }
    if token:
        form["csrf_token"] = token
    return form


class DispatchEngine:
    """Sends records one at a time and records each outcome in the tracker."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        tracker: StatusTracker,
        tokens: Optional[TokenManager] = None,
        throttle_delay: float = 0.5,
        send_timeout: float = 30.0,
        probe_timeout: float = 5.0,
        probe_preview_chars: int = 200,
    ):
        """Initialize the engine.

        Args:
            client: Shared HTTP client
            endpoint: URL of the dispatch script
            tracker: Tracker that receives every outcome
            tokens: Token manager consulted before sending, if any
            throttle_delay: Pause between consecutive batch sends in seconds
            send_timeout: Timeout for each submission in seconds
            probe_timeout: Timeout for the connectivity probe in seconds
            probe_preview_chars: Characters of the probe response to keep
        """
        self._client = client
        self.endpoint = endpoint
        self.tracker = tracker
        self.tokens = tokens
        self.throttle_delay = throttle_delay
        self.send_timeout = send_timeout
        self.probe_timeout = probe_timeout
        self.probe_preview_chars = probe_preview_chars
        self._sending = False

    @property
    def is_sending(self) -> bool:
        return self._sending

    async def _token(self) -> Optional[str]:
        if self.tokens is None:
            return None
        return await self.tokens.ensure()

    async def send_one(self, record: Record, token: Optional[str] = None) -> SendOutcome:
        """
        Submit one record and store the outcome in the tracker.

        Args:
            record: Record to send
            token: Anti-forgery token; fetched from the token manager if omitted

        Returns:
            Sent on HTTP 200, otherwise Failed with a reason
        """
        if token is None:
            token = await self._token()
        return await self._submit(record, token)

    async def _submit(self, record: Record, token: Optional[str]) -> SendOutcome:
        if not token:
            logger.debug("Sending without anti-forgery token")

        position = record.source_position
        try:
            response = await self._client.post(
                self.endpoint,
                data=build_form(record, token),
                timeout=self.send_timeout,
            )
        except httpx.TimeoutException as e:
            error = DispatchError(
                f"Request timed out after {self.send_timeout}s", cause=e, context={"row": position}
            )
            return self._fail(record, error)
        except httpx.HTTPError as e:
            error = DispatchError(str(e) or type(e).__name__, cause=e, context={"row": position})
            return self._fail(record, error)
        except Exception as e:
            logger.exception(f"Unexpected error sending row {position}")
            return self._fail(record, DispatchError(str(e) or type(e).__name__, cause=e))

        if response.status_code != 200:
            error = DispatchError(
                f"HTTP {response.status_code}",
                context={"row": position, "body": response.text[:200]}
            )
            return self._fail(record, error, status_code=response.status_code)

        self.tracker.update(position, RecordStatus.SENT)
        logger.info(f"Email sent for row {position} to {', '.join(record.recipient_list)}")
        return SendOutcome(position=position, status=RecordStatus.SENT, status_code=200)

    def _fail(self, record: Record, error: DispatchError, status_code: Optional[int] = None) -> SendOutcome:
        position = record.source_position
        self.tracker.update(position, RecordStatus.FAILED, reason=error.message)
        logger.error(
            f"Failed to send row {position}: {error.message}",
            extra={"context": error.context, "cause": str(error.cause) if error.cause else None}
        )
        return SendOutcome(
            position=position,
            status=RecordStatus.FAILED,
            reason=error.message,
            status_code=status_code,
        )

    def _current_status(self, record: Record) -> RecordStatus:
        tracked = self.tracker.get(record.source_position)
        return tracked.status if tracked is not None else record.status

    async def send_all(self, records: Optional[Iterable[Record]] = None) -> DispatchSummary:
        """
        Send every record not already sent, one after another.

        A call made while a batch is running returns an empty summary without
        doing anything. Failures do not stop the batch.

        Args:
            records: Records to consider (defaults to the tracker snapshot)

        Returns:
            Counts of sent and failed records; skipped records are not counted
        """
        if self._sending:
            logger.warning("Batch send already in progress; ignoring request")
            return DispatchSummary()

        self._sending = True
        try:
            candidates = self.tracker.snapshot() if records is None else list(records)
            pending = [r for r in candidates if self._current_status(r) is not RecordStatus.SENT]
            summary = DispatchSummary()
            if not pending:
                logger.info("No pending records to send")
                return summary

            logger.info(f"Sending {len(pending)} of {len(candidates)} records")
            token = await self._token()
            for i, record in enumerate(pending):
                summary.record(await self._submit(record, token))
                if i < len(pending) - 1 and self.throttle_delay > 0:
                    await asyncio.sleep(self.throttle_delay)

            logger.info(f"Bulk send completed: {summary.sent} sent, {summary.failed} failed")
            return summary
        finally:
            self._sending = False

    def base_url(self) -> str:
        """Directory of the dispatch script."""
        return str(httpx.URL(self.endpoint).join("./"))

    async def probe(self) -> ProbeResult:
        """Check that the dispatch host answers; never raises on network errors."""
        url = self.base_url()
        try:
            response = await self._client.get(url, timeout=self.probe_timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Connection test to {url} failed: {e}")
            return ProbeResult(url=url, error=str(e) or type(e).__name__)

        logger.info(f"Connection test to {url}: HTTP {response.status_code}")
        return ProbeResult(
            url=url,
            status_code=response.status_code,
            body_preview=response.text[:self.probe_preview_chars],
        )
