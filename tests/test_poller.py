"""
Tests for the long-running operation poller.
"""

from dataclasses import dataclass

import httpx
import pytest

from cogbatch.exceptions import (
    MissingStatusLocation,
    OperationStateError,
    PollingTimeout,
    UnknownRemoteStatus,
)
from cogbatch.http.poller import (
    STATUS_FIELD_PATHS,
    LROPoller,
    Operation,
    OperationState,
    StatusCheck,
    classify_status,
)
from cogbatch.http.sender import RetrySender
from tests.mocks.services import RecordingSleep, make_sequence_transport

LOCATION = "https://test.api.example.com/operations/op-1"


@dataclass(frozen=True)
class _Target:
    accepted_status_codes: tuple[int, ...] = (201, 202)
    status_paths: tuple[tuple[str, ...], ...] = STATUS_FIELD_PATHS

    def build_poll_url(self, *, location: str) -> str:
        return location


def _poller(*, sleep: RecordingSleep, max_tries: int = 3) -> LROPoller:
    return LROPoller(
        sender=RetrySender(backoff_schedule=(0.01,), sleep=sleep),
        max_tries=max_tries,
        polling_delay=0.25,
        sleep=sleep,
    )


def _accepted() -> httpx.Response:
    return httpx.Response(status_code=202, headers={"Location": LOCATION})


def _status(status: str, **extra) -> httpx.Response:
    return httpx.Response(status_code=200, json={"status": status, **extra})


def _submit_request(client: httpx.AsyncClient) -> httpx.Request:
    return client.build_request(
        method="POST",
        url="https://test.api.example.com/analyze",
        headers={"Ocp-Apim-Subscription-Key": "secret"},
        json={"documents": []},
    )


@pytest.mark.asyncio
async def test_synchronous_response_is_returned_directly(recording_sleep: RecordingSleep):
    """Test that a non-accepted response bypasses polling."""
    transport, seen = make_sequence_transport(httpx.Response(status_code=200, json={"ok": 1}))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await _poller(sleep=recording_sleep).submit(
            client=client, request=_submit_request(client), target=_Target()
        )

    assert result.state is OperationState.READY
    assert result.deferred is False
    assert result.checks == 0
    assert result.response.json() == {"ok": 1}
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_synchronous_error_response_is_failed(recording_sleep: RecordingSleep):
    """Test that a synchronous client error is a failed terminal result, not an exception."""
    transport, _ = make_sequence_transport(httpx.Response(status_code=400))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await _poller(sleep=recording_sleep).submit(
            client=client, request=_submit_request(client), target=_Target()
        )

    assert result.state is OperationState.FAILED
    assert not result.succeeded


@pytest.mark.asyncio
async def test_pending_then_ready(recording_sleep: RecordingSleep):
    """Test polling until the operation succeeds."""
    transport, seen = make_sequence_transport(
        _accepted(),
        _status("notStarted"),
        _status("running"),
        _status("succeeded", documents=[]),
    )
    async with httpx.AsyncClient(transport=transport) as client:
        result = await _poller(sleep=recording_sleep).submit(
            client=client, request=_submit_request(client), target=_Target()
        )

    assert result.state is OperationState.READY
    assert result.deferred is True
    assert result.checks == 3
    assert result.response.json()["status"] == "succeeded"
    assert recording_sleep.delays == [0.25, 0.25]
    assert [request.method for request in seen] == ["POST", "GET", "GET", "GET"]
    assert all(str(object=request.url) == LOCATION for request in seen[1:])


@pytest.mark.asyncio
async def test_status_checks_forward_subscription_key(recording_sleep: RecordingSleep):
    """Test that status checks carry the subscription key of the submission."""
    transport, seen = make_sequence_transport(_accepted(), _status("succeeded"))
    async with httpx.AsyncClient(transport=transport) as client:
        await _poller(sleep=recording_sleep).submit(
            client=client, request=_submit_request(client), target=_Target()
        )

    assert seen[1].headers["Ocp-Apim-Subscription-Key"] == "secret"


@pytest.mark.asyncio
async def test_failed_is_returned_as_data(recording_sleep: RecordingSleep):
    """Test that a remote failure is a terminal result rather than an exception."""
    transport, _ = make_sequence_transport(_accepted(), _status("running"), _status("Failed"))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await _poller(sleep=recording_sleep).submit(
            client=client, request=_submit_request(client), target=_Target()
        )

    assert result.state is OperationState.FAILED
    assert result.checks == 2


@pytest.mark.asyncio
async def test_timeout_after_exactly_max_tries(recording_sleep: RecordingSleep):
    """Test that two pending checks with max_tries=2 time out after two checks."""
    transport, seen = make_sequence_transport(_accepted(), _status("running"), _status("running"))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(expected_exception=PollingTimeout) as info:
            await _poller(sleep=recording_sleep, max_tries=2).submit(
                client=client, request=_submit_request(client), target=_Target()
            )

    assert info.value.tries == 2
    assert len(seen) == 3
    assert recording_sleep.delays == [0.25]


@pytest.mark.asyncio
async def test_unknown_status_raises(recording_sleep: RecordingSleep):
    """Test that an unknown status is never treated as pending."""
    transport, _ = make_sequence_transport(_accepted(), _status("paused"))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(expected_exception=UnknownRemoteStatus, match="paused"):
            await _poller(sleep=recording_sleep).submit(
                client=client, request=_submit_request(client), target=_Target()
            )


@pytest.mark.asyncio
async def test_accepted_without_location_raises(recording_sleep: RecordingSleep):
    """Test that an accepted response must point at a status location."""
    transport, _ = make_sequence_transport(httpx.Response(status_code=201))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(expected_exception=MissingStatusLocation):
            await _poller(sleep=recording_sleep).submit(
                client=client, request=_submit_request(client), target=_Target()
            )


@pytest.mark.asyncio
async def test_status_check_http_error_raises(recording_sleep: RecordingSleep):
    """Test that a failing status check surfaces as an HTTP error."""
    transport, _ = make_sequence_transport(_accepted(), httpx.Response(status_code=404))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(expected_exception=httpx.HTTPStatusError):
            await _poller(sleep=recording_sleep).submit(
                client=client, request=_submit_request(client), target=_Target()
            )


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"modelInfo": {"status": "READY"}, "status": "running"}, StatusCheck.READY),
        ({"summary": {"status": "RUNNING"}}, StatusCheck.PENDING),
        ({"modelInfo": {"status": "CREATED"}}, StatusCheck.PENDING),
        ({"status": "partiallyCompleted"}, StatusCheck.READY),
        ({"summary": {"status": "FAILED"}, "status": "succeeded"}, StatusCheck.FAILED),
    ],
)
def test_classify_status_priority(payload, expected):
    """Test that nested status shapes are checked in priority order."""
    assert classify_status(payload=payload) is expected


def test_classify_status_without_known_field_raises():
    with pytest.raises(expected_exception=UnknownRemoteStatus):
        classify_status(payload={"state": "ready"})


def test_terminal_operation_is_immutable():
    """Test that a terminal operation rejects further transitions."""
    operation = Operation(location=LOCATION, tries_remaining=2)
    operation.record_check()
    operation.mark_running()
    operation.finish(state=OperationState.READY)

    assert operation.is_terminal
    assert operation.tries_remaining == 1
    with pytest.raises(expected_exception=OperationStateError):
        operation.record_check()
    with pytest.raises(expected_exception=OperationStateError):
        operation.finish(state=OperationState.FAILED)
