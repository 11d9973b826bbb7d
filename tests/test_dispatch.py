"""Tests for the dispatch engine."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from sheetmail.dispatch import DispatchEngine, build_form, compose_body
from sheetmail.models import Record, RecordStatus
from sheetmail.tokens import TokenManager
from sheetmail.tracker import StatusTracker

from conftest import ENDPOINT, TOKEN_URL, RecordingHandler


def make_record(**overrides):
    fields = dict(primary_recipients="a@x.com", subject="Hi", body="Hi", source_position=2)
    fields.update(overrides)
    return Record(**fields)


def endpoint_handler(post_status=200, token="tok-1"):
    """Token endpoint answers with ``token``; POSTs answer with ``post_status``.

    ``post_status`` may be a callable taking the POST index.
    """
    counter = {"posts": 0}

    def respond(request):
        if request.method == "GET":
            if token is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"csrf_token": token})
        index = counter["posts"]
        counter["posts"] += 1
        status = post_status(index) if callable(post_status) else post_status
        return httpx.Response(status, text="ok" if status == 200 else "error")

    return RecordingHandler(respond)


def make_engine(client, tracker, with_tokens=True, throttle_delay=0):
    tokens = TokenManager(client, TOKEN_URL) if with_tokens else None
    return DispatchEngine(client, ENDPOINT, tracker, tokens=tokens, throttle_delay=throttle_delay)


class TestComposeBody:

    def test_links_and_backup(self):
        record = make_record(body="Hi", links="http://a, http://b", backup_recipient="c@x.com")
        assert compose_body(record) == (
            "Hi\n\nRelevant Links:\nhttp://a, http://b\n\nBackup Email: c@x.com"
        )

    def test_body_only(self):
        assert compose_body(make_record(body="Hello")) == "Hello"

    def test_backup_equal_to_primary_is_omitted(self):
        record = make_record(backup_recipient="a@x.com")
        assert compose_body(record) == "Hi"

    def test_links_only(self):
        assert compose_body(make_record(links="http://a")) == "Hi\n\nRelevant Links:\nhttp://a"

    def test_build_form(self):
        record = make_record(primary_recipients="a@x.com b@x.com", cc_recipients="c@x.com,d@x.com")

        form = build_form(record, "tok")

        assert form == {
            "to": "a@x.com, b@x.com",
            "cc": "c@x.com, d@x.com",
            "subject": "Hi",
            "body": "Hi",
            "csrf_token": "tok",
        }
        assert "csrf_token" not in build_form(record, None)


class TestSendOne:

    @pytest.mark.asyncio
    async def test_sent_on_200(self, make_client):
        record = make_record()
        tracker = StatusTracker([record])
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), tracker)

        outcome = await engine.send_one(record)

        assert outcome.sent
        assert outcome.status_code == 200
        assert tracker.get(2).status is RecordStatus.SENT
        post = handler.posts()[0]
        assert str(post.url) == ENDPOINT
        assert post.headers["content-type"] == "application/x-www-form-urlencoded"
        assert handler.forms()[0]["csrf_token"] == "tok-1"

    @pytest.mark.asyncio
    async def test_explicit_token(self, make_client):
        record = make_record()
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), StatusTracker([record]))

        await engine.send_one(record, token="given")

        assert handler.forms()[0]["csrf_token"] == "given"
        assert [r.method for r in handler.requests] == ["POST"]

    @pytest.mark.asyncio
    async def test_without_token_when_unavailable(self, make_client):
        record = make_record()
        handler = endpoint_handler(token=None)
        engine = make_engine(make_client(handler), StatusTracker([record]))

        outcome = await engine.send_one(record)

        assert outcome.sent
        assert "csrf_token" not in handler.forms()[0]

    @pytest.mark.asyncio
    async def test_failed_on_non_200(self, make_client):
        record = make_record()
        tracker = StatusTracker([record])
        engine = make_engine(make_client(endpoint_handler(post_status=500)), tracker)

        outcome = await engine.send_one(record)

        assert outcome.status is RecordStatus.FAILED
        assert outcome.status_code == 500
        assert "500" in outcome.reason
        assert tracker.get(2).status is RecordStatus.FAILED
        assert tracker.reason(2) == outcome.reason

    @pytest.mark.asyncio
    async def test_201_is_failure(self, make_client):
        record = make_record()
        engine = make_engine(make_client(endpoint_handler(post_status=201)), StatusTracker([record]))

        outcome = await engine.send_one(record)

        assert outcome.status is RecordStatus.FAILED

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, make_client):
        def respond(request):
            raise httpx.ConnectError("connection refused", request=request)

        record = make_record()
        tracker = StatusTracker([record])
        engine = make_engine(make_client(RecordingHandler(respond)), tracker, with_tokens=False)

        outcome = await engine.send_one(record)

        assert outcome.status is RecordStatus.FAILED
        assert "connection refused" in outcome.reason
        assert tracker.get(2).status is RecordStatus.FAILED

    @pytest.mark.asyncio
    async def test_send_timeout_passed_to_request(self, make_client):
        seen = {}

        def respond(request):
            seen.update(request.extensions["timeout"])
            return httpx.Response(200)

        record = make_record()
        engine = make_engine(make_client(RecordingHandler(respond)), StatusTracker([record]), with_tokens=False)
        await engine.send_one(record)

        assert seen["read"] == 30.0

    @pytest.mark.asyncio
    async def test_position_is_never_changed(self, make_client):
        record = make_record(source_position=7)
        tracker = StatusTracker([record])
        engine = make_engine(make_client(endpoint_handler()), tracker)

        await engine.send_one(record)

        assert tracker.get(7).source_position == 7


class TestSendAll:

    @pytest.mark.asyncio
    async def test_partial_failure(self, make_client, sample_records, tracker):
        handler = endpoint_handler(post_status=lambda i: 500 if i == 1 else 200)
        engine = make_engine(make_client(handler), tracker)

        summary = await engine.send_all(sample_records)

        assert (summary.sent, summary.failed) == (2, 1)
        assert len(handler.posts()) == 3
        assert [r.status for r in tracker.snapshot()] == [
            RecordStatus.SENT, RecordStatus.FAILED, RecordStatus.SENT
        ]

    @pytest.mark.asyncio
    async def test_sends_in_order(self, make_client, tracker):
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), tracker)

        await engine.send_all()

        assert [f["to"] for f in handler.forms()] == [
            "user0@example.com", "user1@example.com", "user2@example.com"
        ]

    @pytest.mark.asyncio
    async def test_skips_sent_and_retries_failed(self, make_client, sample_records, tracker):
        tracker.update(2, RecordStatus.SENT)
        tracker.update(3, RecordStatus.FAILED, reason="HTTP 500")
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), tracker)

        summary = await engine.send_all(sample_records)

        assert (summary.sent, summary.failed) == (2, 0)
        assert [f["to"] for f in handler.forms()] == ["user1@example.com", "user2@example.com"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_batch(self, make_client, tracker):
        def listener(record):
            if record.source_position == 2:
                raise RuntimeError("ui refresh failed")

        tracker.subscribe(listener)
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), tracker)

        summary = await engine.send_all()

        assert len(handler.posts()) == 3
        assert (summary.sent, summary.failed) == (3, 0)
        assert all(r.status is RecordStatus.SENT for r in tracker.snapshot())

    @pytest.mark.asyncio
    async def test_second_run_sends_nothing(self, make_client, tracker):
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), tracker)

        await engine.send_all()
        requests_after_first = len(handler.requests)
        summary = await engine.send_all()

        assert (summary.sent, summary.failed) == (0, 0)
        assert len(handler.requests) == requests_after_first

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_requests(self, make_client):
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), StatusTracker())

        summary = await engine.send_all([])

        assert (summary.sent, summary.failed) == (0, 0)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_token_fetched_once_per_batch(self, make_client, tracker):
        handler = endpoint_handler()
        engine = make_engine(make_client(handler), tracker)

        await engine.send_all()

        assert [r.method for r in handler.requests] == ["GET", "POST", "POST", "POST"]
        assert {f["csrf_token"] for f in handler.forms()} == {"tok-1"}

    @pytest.mark.asyncio
    async def test_throttle_between_sends_only(self, make_client, tracker):
        engine = make_engine(make_client(endpoint_handler()), tracker, throttle_delay=0.5)

        with patch("sheetmail.dispatch.asyncio.sleep", new=AsyncMock()) as sleep:
            await engine.send_all()

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_concurrent_call_is_noop(self, make_client, tracker):
        started = asyncio.Event()
        release = asyncio.Event()
        posts = []

        async def respond(request):
            if request.method == "POST":
                posts.append(request)
                started.set()
                await release.wait()
            return httpx.Response(200, json={"csrf_token": "tok"})

        engine = make_engine(make_client(respond), tracker)

        first = asyncio.create_task(engine.send_all())
        await started.wait()
        assert engine.is_sending

        second = await engine.send_all()
        assert (second.sent, second.failed) == (0, 0)
        assert len(posts) == 1

        release.set()
        summary = await first

        assert (summary.sent, summary.failed) == (3, 0)
        assert len(posts) == 3
        assert not engine.is_sending

    @pytest.mark.asyncio
    async def test_flag_reset_after_error(self, make_client, tracker):
        engine = make_engine(make_client(endpoint_handler()), tracker)

        with patch.object(engine, "_submit", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await engine.send_all()

        assert not engine.is_sending


class TestProbe:

    @pytest.mark.asyncio
    async def test_probe_base_url(self, make_client, tracker):
        handler = RecordingHandler(lambda r: httpx.Response(200, text="x" * 500))
        engine = make_engine(make_client(handler), tracker)

        result = await engine.probe()

        assert result.ok
        assert result.url == "http://mail.test/redbox/"
        assert str(handler.requests[0].url) == "http://mail.test/redbox/"
        assert len(result.body_preview) == 200

    @pytest.mark.asyncio
    async def test_probe_timeout_passed_to_request(self, make_client, tracker):
        seen = {}

        def respond(request):
            seen.update(request.extensions["timeout"])
            return httpx.Response(200, text="It works")

        engine = make_engine(make_client(RecordingHandler(respond)), tracker)
        await engine.probe()

        assert seen["read"] == 5.0

    @pytest.mark.asyncio
    async def test_probe_error(self, make_client, tracker):
        def respond(request):
            raise httpx.ConnectError("unreachable", request=request)

        engine = make_engine(make_client(RecordingHandler(respond)), tracker)

        result = await engine.probe()

        assert not result.ok
        assert result.status_code is None
        assert "unreachable" in result.error

    @pytest.mark.asyncio
    async def test_probe_non_200(self, make_client, tracker):
        engine = make_engine(make_client(RecordingHandler(lambda r: httpx.Response(404, text="nope"))), tracker)

        result = await engine.probe()

        assert not result.ok
        assert result.status_code == 404
        assert result.body_preview == "nope"
