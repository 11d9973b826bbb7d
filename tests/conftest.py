"""Shared test fixtures."""

from typing import Callable, List
from urllib.parse import parse_qs

import httpx
import pytest

from sheetmail.models import Record, RecordStatus
from sheetmail.tracker import StatusTracker


ENDPOINT = "http://mail.test/redbox/send_mail.php"
TOKEN_URL = "http://mail.test/redbox/get_csrf.php"


class RecordingHandler:
    """Mock transport handler that records requests and replies via a callback."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def posts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def forms(self) -> List[dict]:
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode(), keep_blank_values=True).items()}
            for r in self.posts()
        ]


@pytest.fixture
def make_client():
    """Build an AsyncClient backed by httpx.MockTransport."""
    def factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


@pytest.fixture
def sample_grid():
    """A grid with every supported column."""
    return [
        ["Emails", "Emails backup", "Subject", "Links", "Body", "cc", "Status"],
        ["alice.smith@example.com", "", "Hello Alice", "", "Hi Alice", "", "Sent"],
        ["bob@example.com, carol@example.com", "backup@example.com", "Hello Bob", "http://a", "Hi Bob", "dave@example.com", ""],
        ["erin@example.com", "", "Hello Erin", "", "Hi Erin", ""],
    ]


@pytest.fixture
def sample_records():
    """Three pending records at sheet rows 2-4."""
    return [
        Record(primary_recipients=f"user{i}@example.com", subject=f"Subject {i}",
               body=f"Body {i}", source_position=i + 2)
        for i in range(3)
    ]


@pytest.fixture
def tracker(sample_records):
    return StatusTracker(sample_records)
