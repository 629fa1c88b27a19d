"""
Long-running operation (LRO) client.

Submits a request through ``RetrySender`` and, when the service defers the
work, polls the status location until the operation reaches a terminal state.
"""

from __future__ import annotations

import asyncio
import typing as t
from dataclasses import dataclass, field
from enum import StrEnum

import httpx
import structlog

from cogbatch.exceptions import (
    MissingStatusLocation,
    OperationStateError,
    PollingTimeout,
    UnknownRemoteStatus,
)
from cogbatch.http.sender import RetrySender, SleepFunc

log = structlog.get_logger(__name__)

SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"

# Checked in order, first match wins.
STATUS_FIELD_PATHS: tuple[tuple[str, ...], ...] = (
    ("modelInfo", "status"),
    ("summary", "status"),
    ("status",),
)


class OperationState(StrEnum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset(
    {OperationState.READY, OperationState.FAILED, OperationState.TIMED_OUT}
)


class StatusCheck(StrEnum):
    READY = "ready"
    FAILED = "failed"
    PENDING = "pending"


STATUS_VOCABULARY: dict[str, StatusCheck] = {
    "ready": StatusCheck.READY,
    "succeeded": StatusCheck.READY,
    "partiallycompleted": StatusCheck.READY,
    "partiallysucceeded": StatusCheck.READY,
    "failed": StatusCheck.FAILED,
    "created": StatusCheck.PENDING,
    "notstarted": StatusCheck.PENDING,
    "running": StatusCheck.PENDING,
}


def find_status(
    *,
    payload: t.Any,
    paths: t.Sequence[tuple[str, ...]] = STATUS_FIELD_PATHS,
) -> str | None:
    """
    Find the raw status value in a status-check body.

    Parameters
    ----------
    payload : typing.Any
        Decoded JSON body.
    paths : typing.Sequence[tuple[str, ...]]
        Candidate key paths, checked in priority order.

    Returns
    -------
    str | None
        Status value of the first matching path, ``None`` if no path matches.
    """
    for path in paths:
        node = payload
        for key in path:
            if not isinstance(node, dict) or key not in node:
                node = None
                break
            node = node[key]
        if isinstance(node, str):
            return node
    return None


def classify_status(
    *,
    payload: t.Any,
    paths: t.Sequence[tuple[str, ...]] = STATUS_FIELD_PATHS,
) -> StatusCheck:
    """
    Map a status-check body onto ready, failed or pending.

    Raises
    ------
    UnknownRemoteStatus
        If no status is found or the value is outside the vocabulary.
    """
    status = find_status(payload=payload, paths=paths)
    if status is None:
        raise UnknownRemoteStatus(status=None)
    check = STATUS_VOCABULARY.get(status.lower())
    if check is None:
        raise UnknownRemoteStatus(status=status)
    return check


class PollTarget(t.Protocol):
    """
    Endpoint hooks used by the poller.
    """

    accepted_status_codes: t.Collection[int]
    status_paths: t.Sequence[tuple[str, ...]]

    def build_poll_url(self, *, location: str) -> str: ...


@dataclass
class Operation:
    """
    Lifecycle of one long-running operation.

    Only ``location`` and ``tries_remaining`` change while the operation runs.
    A terminal operation rejects further transitions.
    """

    location: str
    tries_remaining: int
    state: OperationState = OperationState.SUBMITTED
    checks: int = field(default=0)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, *, state: OperationState) -> None:
        if self.is_terminal:
            raise OperationStateError(
                f"Operation at {self.location} is already {self.state}, cannot move to {state}"
            )
        self.state = state

    def record_check(self) -> None:
        if self.is_terminal:
            raise OperationStateError(f"Operation at {self.location} is already {self.state}")
        self.tries_remaining -= 1
        self.checks += 1

    def mark_running(self) -> None:
        self._transition(state=OperationState.RUNNING)

    def finish(self, *, state: OperationState) -> None:
        if state not in TERMINAL_STATES:
            raise ValueError(f"{state} is not a terminal state")
        self._transition(state=state)


@dataclass(frozen=True)
class OperationResult:
    """
    Terminal response of a submitted request.

    Parameters
    ----------
    state : OperationState
        ``READY`` or ``FAILED``. Synchronous responses are ``READY`` when
        successful and ``FAILED`` otherwise.
    response : httpx.Response
        Terminal response.
    deferred : bool
        Whether the service deferred the work and the result was polled.
    checks : int
        Number of status checks performed.
    """

    state: OperationState
    response: httpx.Response
    deferred: bool = False
    checks: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is OperationState.READY


class LROPoller:
    """
    Drive a request to a terminal state.
    """

    def __init__(
        self,
        *,
        sender: RetrySender,
        max_tries: int = 1000,
        polling_delay: float = 0.3,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the poller.

        Parameters
        ----------
        sender : RetrySender
            Sender used for the initial request and every status check.
        max_tries : int
            Maximum number of status checks.
        polling_delay : float
            Seconds waited between two status checks.
        sleep : SleepFunc
            Coroutine function used to wait between checks.
        """
        if max_tries < 1:
            raise ValueError("max_tries must be >= 1")
        self._sender = sender
        self._max_tries = max_tries
        self._polling_delay = polling_delay
        self._sleep = sleep

    async def submit(
        self,
        *,
        client: httpx.AsyncClient,
        request: httpx.Request,
        target: PollTarget,
    ) -> OperationResult:
        """
        Submit a request and wait for its terminal response.

        Parameters
        ----------
        client : httpx.AsyncClient
            Client shared by the submission and the status checks.
        request : httpx.Request
            Initial request.
        target : PollTarget
            Endpoint hooks for accepted codes, poll URL and status paths.

        Returns
        -------
        OperationResult
            Terminal response, ready or failed.

        Raises
        ------
        PollingTimeout
            If the operation is still pending after ``max_tries`` checks.
        UnknownRemoteStatus
            If a status check returns an unknown status.
        MissingStatusLocation
            If the service accepted the request without a ``Location`` header.
        """
        response = await self._sender.send(client=client, request=request)
        if response.status_code not in target.accepted_status_codes:
            log.debug(
                event="Request completed synchronously",
                status_code=response.status_code,
            )
            return OperationResult(
                state=OperationState.READY if response.is_success else OperationState.FAILED,
                response=response,
            )

        location = response.headers.get("Location")
        if not location:
            raise MissingStatusLocation(status_code=response.status_code)

        operation = Operation(
            location=target.build_poll_url(location=location),
            tries_remaining=self._max_tries,
        )
        log.info(
            event="Request accepted, polling for result",
            status_code=response.status_code,
            location=operation.location,
            max_tries=self._max_tries,
        )
        headers = {}
        key = request.headers.get(SUBSCRIPTION_KEY_HEADER)
        if key:
            headers[SUBSCRIPTION_KEY_HEADER] = key
        return await self._poll(
            client=client,
            operation=operation,
            headers=headers,
            status_paths=target.status_paths,
        )

    async def _poll(
        self,
        *,
        client: httpx.AsyncClient,
        operation: Operation,
        headers: dict[str, str],
        status_paths: t.Sequence[tuple[str, ...]],
    ) -> OperationResult:
        while operation.tries_remaining > 0:
            if operation.checks > 0:
                await self._sleep(self._polling_delay)
            operation.record_check()
            response = await self._sender.send(
                client=client,
                request=client.build_request(
                    method="GET",
                    url=operation.location,
                    headers=headers,
                ),
            )
            response.raise_for_status()
            check = classify_status(payload=response.json(), paths=status_paths)
            log.debug(
                event="Status check",
                location=operation.location,
                check=check,
                checks=operation.checks,
                tries_remaining=operation.tries_remaining,
            )
            if check is StatusCheck.PENDING:
                if operation.state is OperationState.SUBMITTED:
                    operation.mark_running()
                continue

            state = OperationState.READY if check is StatusCheck.READY else OperationState.FAILED
            operation.finish(state=state)
            log.info(
                event="Operation reached terminal state",
                location=operation.location,
                state=state,
                checks=operation.checks,
            )
            return OperationResult(
                state=state,
                response=response,
                deferred=True,
                checks=operation.checks,
            )

        operation.finish(state=OperationState.TIMED_OUT)
        log.error(
            event="Operation timed out",
            location=operation.location,
            checks=operation.checks,
        )
        raise PollingTimeout(tries=operation.checks, location=operation.location)
