"""Data models for sheetmail records and dispatch results."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Any, Dict


UNKNOWN_RECIPIENT_NAME = "Unknown Recipient"

_ADDRESS_SEPARATORS = re.compile(r"[,\s]+")


class RecordStatus(str, Enum):
    """Delivery status of a record."""

    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"

    @classmethod
    def normalize(cls, value: Any) -> "RecordStatus":
        """Map a raw sheet value to a status; blank or unknown values become PENDING."""
        if isinstance(value, RecordStatus):
            return value
        text = str(value or "").strip().lower()
        for status in cls:
            if status.value.lower() == text:
                return status
        return cls.PENDING


_COLOR_CLASSES = {
    "sent": "success",
    "failed": "error",
}


def status_color_class(status: Any) -> str:
    """Return the presentation class for a status value (case-insensitive)."""
    if isinstance(status, RecordStatus):
        status = status.value
    return _COLOR_CLASSES.get(str(status or "").strip().lower(), "warning")


def split_addresses(raw: str) -> List[str]:
    """Split a raw address field on runs of commas and whitespace."""
    if not raw:
        return []
    return [token.strip() for token in _ADDRESS_SEPARATORS.split(raw) if token.strip()]


@dataclass(frozen=True)
class Record:
    """One dispatchable message read from a sheet row.

    Records are immutable; the status tracker swaps in a copy with the new
    status when a send completes.
    """

    primary_recipients: str
    subject: str
    body: str
    source_position: int
    backup_recipient: str = ""
    links: str = ""
    cc_recipients: str = ""
    status: RecordStatus = RecordStatus.PENDING

    def __post_init__(self):
        # frozen dataclass, so normalize through object.__setattr__
        object.__setattr__(self, "status", RecordStatus.normalize(self.status))

    @property
    def recipient_list(self) -> List[str]:
        return split_addresses(self.primary_recipients)

    @property
    def cc_list(self) -> List[str]:
        return split_addresses(self.cc_recipients)

    @property
    def display_name(self) -> str:
        """Readable name derived from the local part of the first recipient."""
        recipients = self.recipient_list
        if not recipients:
            return UNKNOWN_RECIPIENT_NAME
        local_part = recipients[0].split("@", 1)[0]
        words = [segment.capitalize() for segment in local_part.split(".") if segment]
        return " ".join(words) or UNKNOWN_RECIPIENT_NAME

    @property
    def status_color_class(self) -> str:
        return status_color_class(self.status)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "primary_recipients": self.primary_recipients,
            "backup_recipient": self.backup_recipient,
            "subject": self.subject,
            "links": self.links,
            "body": self.body,
            "cc_recipients": self.cc_recipients,
            "status": self.status.value,
            "source_position": self.source_position,
        }


@dataclass
class SendOutcome:
    """Result of submitting one record."""

    position: int
    status: RecordStatus
    reason: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def sent(self) -> bool:
        return self.status is RecordStatus.SENT


@dataclass
class DispatchSummary:
    """Aggregate counts for a batch run."""

    sent: int = 0
    failed: int = 0
    outcomes: List[SendOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.sent + self.failed

    def record(self, outcome: SendOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.sent:
            self.sent += 1
        else:
            self.failed += 1


@dataclass
class ProbeResult:
    """Outcome of the connectivity probe against the dispatch endpoint."""

    url: str
    status_code: Optional[int] = None
    body_preview: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code == 200
