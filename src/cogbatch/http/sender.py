"""
Single-request sender with a finite, ordered backoff schedule.
"""

from __future__ import annotations

import asyncio
import typing as t

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from cogbatch.config import DEFAULT_RETRYABLE_STATUS_CODES
from cogbatch.exceptions import TransientTransportError

log = structlog.get_logger(__name__)

SleepFunc = t.Callable[[float], t.Awaitable[None]]


def _give_up(retry_state: RetryCallState) -> httpx.Response:
    """
    Surface the last attempt once the schedule is exhausted.

    Parameters
    ----------
    retry_state : RetryCallState
        State of the final attempt.

    Returns
    -------
    httpx.Response
        Last retryable response.

    Raises
    ------
    TransientTransportError
        If the last attempt failed at the transport level.
    """
    outcome = retry_state.outcome
    assert outcome is not None
    if outcome.failed:
        error = outcome.exception()
        log.error(
            event="Transport retries exhausted",
            attempts=retry_state.attempt_number,
            error=str(object=error),
        )
        raise TransientTransportError(
            attempts=retry_state.attempt_number,
            message=f"Request failed after {retry_state.attempt_number} attempt(s): {error}",
        ) from error
    response = outcome.result()
    log.warning(
        event="Status retries exhausted",
        attempts=retry_state.attempt_number,
        status_code=response.status_code,
    )
    return response


class RetrySender:
    """
    Send one HTTP request, retrying transient failures.

    A transport error or a retryable status code triggers a retry after the
    next delay of ``backoff_schedule``. Once the schedule is exhausted the last
    response is returned, or the last transport error is raised as
    ``TransientTransportError``. Anything else returns or raises immediately.
    """

    def __init__(
        self,
        *,
        backoff_schedule: t.Sequence[float] = (0.1, 0.5, 1.0),
        retryable_status_codes: t.Collection[int] = DEFAULT_RETRYABLE_STATUS_CODES,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the sender.

        Parameters
        ----------
        backoff_schedule : typing.Sequence[float]
            Delays in seconds waited before each retry, in order.
        retryable_status_codes : typing.Collection[int]
            Response status codes treated as transient.
        sleep : SleepFunc
            Coroutine function used to wait between attempts.
        """
        self._backoff_schedule = tuple(backoff_schedule)
        self._retryable_status_codes = frozenset(retryable_status_codes)
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return len(self._backoff_schedule) + 1

    def _is_retryable_response(self, response: httpx.Response) -> bool:
        return response.status_code in self._retryable_status_codes

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        next_action = retry_state.next_action
        log.debug(
            event="Retrying request",
            attempt=retry_state.attempt_number,
            delay=next_action.sleep if next_action else None,
            status_code=(
                None if outcome is None or outcome.failed else outcome.result().status_code
            ),
            error=(
                str(object=outcome.exception()) if outcome is not None and outcome.failed else None
            ),
        )

    def _build_retrying(self) -> AsyncRetrying:
        if self._backoff_schedule:
            wait = wait_chain(*(wait_fixed(wait=delay) for delay in self._backoff_schedule))
        else:
            wait = wait_none()
        return AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(max_attempt_number=self.max_attempts),
            wait=wait,
            retry=(
                retry_if_exception_type(exception_types=httpx.TransportError)
                | retry_if_result(predicate=self._is_retryable_response)
            ),
            before_sleep=self._log_retry,
            retry_error_callback=_give_up,
        )

    async def send(self, *, client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
        """
        Send a request with retries.

        Parameters
        ----------
        client : httpx.AsyncClient
            Client used for every attempt.
        request : httpx.Request
            Request to send. Its body must be replayable.

        Returns
        -------
        httpx.Response
            First non-retryable response, or the last retryable one.
        """
        log.debug(
            event="Sending request",
            method=request.method,
            url=str(object=request.url),
            max_attempts=self.max_attempts,
        )
        return await self._build_retrying()(client.send, request)
