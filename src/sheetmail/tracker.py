"""In-memory delivery status of the records of one ingestion pass."""

import dataclasses
import logging
from typing import Callable, Dict, Iterable, List, Optional

from .models import Record, RecordStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[Record], None]


class StatusTracker:
    """Authoritative mapping from sheet position to the current record.

    All status changes go through :meth:`update`; snapshots hand out the
    immutable records themselves, so callers cannot change them behind the
    tracker's back.
    """

    def __init__(self, records: Optional[Iterable[Record]] = None):
        self._records: Dict[int, Record] = {}
        self._reasons: Dict[int, str] = {}
        self._listeners: List[StatusListener] = []
        if records is not None:
            self.load(records)

    def load(self, records: Iterable[Record]) -> None:
        """Replace every tracked record with the result of a new ingestion pass."""
        self._records = {record.source_position: record for record in records}
        self._reasons = {}
        logger.debug(f"Tracking {len(self._records)} records")

    def update(self, position: int, new_status: RecordStatus, reason: Optional[str] = None) -> None:
        """Set the status of the record at ``position``; unknown positions are ignored."""
        record = self._records.get(position)
        if record is None:
            logger.debug(f"Ignoring status update for unknown row {position}")
            return

        updated = dataclasses.replace(record, status=RecordStatus.normalize(new_status))
        self._records[position] = updated
        if updated.status is RecordStatus.FAILED and reason:
            self._reasons[position] = reason
        else:
            self._reasons.pop(position, None)

        for listener in list(self._listeners):
            try:
                listener(updated)
            except Exception:
                logger.exception(f"Status listener failed for row {position}")

    def get(self, position: int) -> Optional[Record]:
        return self._records.get(position)

    def reason(self, position: int) -> Optional[str]:
        """Failure reason recorded by the last failed send, if any."""
        return self._reasons.get(position)

    def snapshot(self) -> List[Record]:
        """Current records in sheet order."""
        return [self._records[position] for position in sorted(self._records)]

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, position: object) -> bool:
        return position in self._records
