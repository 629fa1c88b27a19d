"""
Batch client running rows through one endpoint.

Rows are split into batches, each batch is encoded, submitted and driven to a
terminal state, and the response is correlated back to one result per row.
Batches run concurrently up to the configured limit.
"""

from __future__ import annotations

import asyncio
import json
import typing as t
from dataclasses import dataclass, field

import httpx
import pydantic
import structlog

from cogbatch.batching.decoder import decode, error_message
from cogbatch.batching.encoder import Row
from cogbatch.batching.fanin import TaskSlot, merge_tasks
from cogbatch.config import ServiceSettings
from cogbatch.exceptions import CogbatchError
from cogbatch.http.poller import LROPoller, OperationResult
from cogbatch.http.sender import RetrySender, SleepFunc
from cogbatch.services.base import Endpoint, ParamValue
from cogbatch.services.text_analytics import AnalyzeEndpoint
from cogbatch.utils.logging import logging_context

log = structlog.get_logger(__name__)

ALL_TASKS_FAILED = "All analysis tasks failed"


@dataclass(frozen=True)
class RowResult:
    """
    Result for one input row.

    Parameters
    ----------
    index : int
        Position of the row in the input.
    result : dict[str, typing.Any] | None
        Service result for the row.
    error : str | None
        Error message, set by the service or for a failed batch.
    task_results : tuple[TaskSlot | None, ...] | None
        Per-kind task slots for multi-task endpoints, in task order.
    gap : bool
        ``True`` when the service returned nothing for this row.
    extra : typing.Mapping[str, typing.Any]
        Caller fields of the input row, returned unchanged.
    """

    index: int
    result: dict[str, t.Any] | None = None
    error: str | None = None
    task_results: tuple[TaskSlot | None, ...] | None = None
    gap: bool = False
    extra: t.Mapping[str, t.Any] = field(default_factory=dict)


def chunk_rows(*, rows: t.Sequence[Row], size: int) -> list[t.Sequence[Row]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    return [rows[start : start + size] for start in range(0, len(rows), size)]


def describe_failure(*, response: httpx.Response) -> str:
    """
    Build a message for a failed terminal response.

    Parameters
    ----------
    response : httpx.Response
        Terminal response of a failed operation.

    Returns
    -------
    str
        Service error message when the body carries one.
    """
    prefix = f"Remote operation failed with status {response.status_code}"
    try:
        body = response.json()
    except json.JSONDecodeError:
        return prefix
    if isinstance(body, dict):
        if "error" in body:
            return f"{prefix}: {error_message(item=body)}"
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return f"{prefix}: {error_message(item=errors[0])}"
    return prefix


class BatchClient:
    """
    Run rows through an endpoint with one result per row, in input order.
    """

    def __init__(
        self,
        *,
        endpoint: Endpoint,
        settings: ServiceSettings,
        client_factory: t.Callable[[], httpx.AsyncClient] | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the client.

        Parameters
        ----------
        endpoint : Endpoint
            Endpoint every batch is sent to.
        settings : ServiceSettings
            Connection, retry, polling and batching settings.
        client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
            Factory for the HTTP client used by each batch.
        sleep : SleepFunc
            Coroutine function used for backoff and polling waits.
        """
        self._endpoint = endpoint
        self._settings = settings
        self._client_factory: t.Callable[[], httpx.AsyncClient] = client_factory or (
            lambda: httpx.AsyncClient(timeout=settings.timeout)
        )
        sender = RetrySender(
            backoff_schedule=settings.backoff_schedule,
            retryable_status_codes=settings.retryable_status_codes,
            sleep=sleep,
        )
        self._poller = LROPoller(
            sender=sender,
            max_tries=settings.max_polling_tries,
            polling_delay=settings.polling_delay,
            sleep=sleep,
        )
        log.debug(
            event="Initialized BatchClient",
            endpoint=endpoint.name,
            batch_size=settings.batch_size,
            concurrency=settings.concurrency,
            max_polling_tries=settings.max_polling_tries,
        )

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    async def analyze(
        self,
        texts: t.Sequence[str | None],
        *,
        language: str | None = None,
        params: t.Mapping[str, ParamValue] | None = None,
    ) -> list[RowResult]:
        """Run plain texts through the endpoint."""
        return await self.process(
            rows=[Row(text=text) for text in texts],
            language=language,
            params=params,
        )

    async def process(
        self,
        *,
        rows: t.Sequence[Row],
        language: str | None = None,
        params: t.Mapping[str, ParamValue] | None = None,
    ) -> list[RowResult]:
        """
        Process rows in concurrent batches.

        Parameters
        ----------
        rows : typing.Sequence[Row]
            Input rows.
        language : str | None, optional
            Scalar language hint, defaults to ``settings.language``.
        params : typing.Mapping[str, ParamValue] | None, optional
            Query parameters for the endpoint.

        Returns
        -------
        list[RowResult]
            One result per row, in input order.

        Raises
        ------
        ValueError
            If the settings or parameters are invalid for this endpoint.
        """
        base_url = self._settings.resolve_base_url()
        subscription_key = self._settings.get_subscription_key()
        # fail fast on unsupported parameters
        self._endpoint.build_url(base_url=base_url, params=params)
        hint = language if language is not None else self._settings.language

        batches = chunk_rows(rows=rows, size=self._settings.batch_size)
        semaphore = asyncio.Semaphore(value=self._settings.concurrency)
        log.info(
            event="Processing rows",
            endpoint=self._endpoint.name,
            row_count=len(rows),
            batch_count=len(batches),
        )

        async def run(batch_index: int, batch: t.Sequence[Row]) -> list[RowResult]:
            async with semaphore:
                return await self.process_batch(
                    rows=batch,
                    offset=batch_index * self._settings.batch_size,
                    batch_index=batch_index,
                    base_url=base_url,
                    subscription_key=subscription_key,
                    language=hint,
                    params=params,
                )

        results = await asyncio.gather(
            *(run(batch_index, batch) for batch_index, batch in enumerate(batches))
        )
        return [row for batch_results in results for row in batch_results]

    async def process_batch(
        self,
        *,
        rows: t.Sequence[Row],
        base_url: str,
        subscription_key: str,
        offset: int = 0,
        batch_index: int = 0,
        language: str | None = None,
        params: t.Mapping[str, ParamValue] | None = None,
    ) -> list[RowResult]:
        """
        Send one batch and correlate its response.

        Failures fatal to the batch are reported on each of its rows.

        Parameters
        ----------
        rows : typing.Sequence[Row]
            Rows of the batch.
        base_url : str
            Service root.
        subscription_key : str
            Subscription key.
        offset : int, optional
            Input position of the first row.
        batch_index : int, optional
            Batch number, for logging.
        language : str | None, optional
            Scalar language hint.
        params : typing.Mapping[str, ParamValue] | None, optional
            Query parameters.

        Returns
        -------
        list[RowResult]
            One result per row of the batch.
        """
        if not rows:
            return []
        if all(row.text is None for row in rows):
            log.debug(event="Skipping batch without text", batch_index=batch_index)
            return [RowResult(index=offset + i, extra=row.extra) for i, row in enumerate(rows)]

        with logging_context(endpoint=self._endpoint.name, batch_index=batch_index):
            try:
                async with self._client_factory() as client:
                    request = self._endpoint.build_request(
                        client=client,
                        base_url=base_url,
                        subscription_key=subscription_key,
                        rows=rows,
                        language=language,
                        params=params,
                    )
                    outcome = await self._poller.submit(
                        client=client,
                        request=request,
                        target=self._endpoint,
                    )
                return self._collect(rows=rows, offset=offset, outcome=outcome)
            except (
                CogbatchError,
                httpx.HTTPError,
                json.JSONDecodeError,
                pydantic.ValidationError,
            ) as error:
                log.error(
                    event="Batch failed",
                    row_count=len(rows),
                    error_type=type(error).__name__,
                    error=str(object=error),
                )
                return self._fail_rows(rows=rows, offset=offset, message=str(object=error))

    def _collect(
        self,
        *,
        rows: t.Sequence[Row],
        offset: int,
        outcome: OperationResult,
    ) -> list[RowResult]:
        if not outcome.succeeded:
            message = describe_failure(response=outcome.response)
            log.error(
                event="Remote operation failed",
                status_code=outcome.response.status_code,
                deferred=outcome.deferred,
            )
            return self._fail_rows(rows=rows, offset=offset, message=message)

        payload = outcome.response.json()
        if isinstance(self._endpoint, AnalyzeEndpoint):
            merged = merge_tasks(
                per_task=self._endpoint.parse_tasks(payload=payload),
                document_count=len(rows),
            )
            if not merged:
                return self._fail_rows(rows=rows, offset=offset, message=ALL_TASKS_FAILED)
            return [
                RowResult(
                    index=offset + row.index,
                    task_results=row.slots,
                    extra=rows[row.index].extra,
                )
                for row in merged
            ]

        reconciled = decode(
            response=self._endpoint.parse_batch(payload=payload),
            expected_count=len(rows),
        )
        return [
            RowResult(
                index=offset + row.index,
                result=row.result,
                error=row.error,
                gap=row.gap,
                extra=rows[row.index].extra,
            )
            for row in reconciled
        ]

    @staticmethod
    def _fail_rows(*, rows: t.Sequence[Row], offset: int, message: str) -> list[RowResult]:
        return [
            RowResult(index=offset + i, error=message, extra=row.extra)
            for i, row in enumerate(rows)
        ]
