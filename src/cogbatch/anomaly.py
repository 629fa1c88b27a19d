"""
Multivariate anomaly detection: model training and detection.

Both operations stage the time series as a zip of per-feature CSV files in
object storage, submit the signed URL and poll the resulting long-running
operation. Training polls ``modelInfo.status``, detection ``summary.status``.
"""

from __future__ import annotations

import asyncio
import csv
import io
import typing as t
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cogbatch.config import ServiceSettings
from cogbatch.exceptions import RemoteOperationFailed
from cogbatch.http.poller import SUBSCRIPTION_KEY_HEADER, LROPoller, OperationResult
from cogbatch.http.sender import RetrySender, SleepFunc

log = structlog.get_logger(__name__)

MODELS_PATH = "/anomalydetector/v1.1-preview/multivariate/models"
ALIGN_MODES = ("inner", "outer")
FILL_NA_METHODS = ("previous", "subsequent", "linear", "zero", "fixed")


class Uploader(t.Protocol):
    """
    Object storage collaborator.

    ``upload`` stores ``data`` under ``name`` and returns a time-limited
    signed URL the service can read.
    """

    async def upload(self, data: bytes, *, name: str) -> str: ...


def to_utc(value: str | datetime) -> datetime:
    """Parse a timestamp as an aware UTC datetime. Naive values are taken as UTC."""
    moment = datetime.fromisoformat(value) if isinstance(value, str) else value
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_iso_instant(value: str | datetime) -> str:
    """
    Normalise a timestamp to an ISO-8601 UTC instant such as ``2021-01-01T00:00:00Z``.
    """
    moment = to_utc(value)
    if moment.microsecond:
        return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def pack_series_archive(
    rows: t.Sequence[t.Mapping[str, t.Any]],
    *,
    timestamp_field: str,
    feature_fields: t.Sequence[str],
) -> bytes:
    """
    Pack rows into the zip layout expected by the service.

    Each feature becomes ``series_{i}.csv`` with a ``timestamp,value`` header,
    ``i`` being the feature position in ``feature_fields``.

    Parameters
    ----------
    rows : typing.Sequence[typing.Mapping[str, typing.Any]]
        Rows holding the timestamp and every feature.
    timestamp_field : str
        Name of the timestamp field.
    feature_fields : typing.Sequence[str]
        Feature fields, in series order.

    Returns
    -------
    bytes
        Zip archive content.
    """
    if not feature_fields:
        raise ValueError("At least one feature field is required")
    buffer = io.BytesIO()
    with zipfile.ZipFile(file=buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for series_index, feature in enumerate(feature_fields):
            content = io.StringIO()
            writer = csv.writer(content, lineterminator="\n")
            writer.writerow(["timestamp", "value"])
            for row in rows:
                writer.writerow([to_iso_instant(row[timestamp_field]), row[feature]])
            archive.writestr(f"series_{series_index}.csv", content.getvalue())
    log.debug(
        event="Packed series archive",
        row_count=len(rows),
        series_count=len(feature_fields),
        bytes=buffer.tell(),
    )
    return buffer.getvalue()


class FitParameters(BaseModel):
    """
    Training options of a multivariate model.
    """

    model_config = ConfigDict(frozen=True)

    start_time: str
    end_time: str
    sliding_window: int | None = Field(default=None, ge=28, le=2880)
    align_mode: str | None = None
    fill_na_method: str | None = None
    padding_value: int | None = None
    display_name: str | None = None

    @field_validator("align_mode")
    @classmethod
    def check_align_mode(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if value.lower() not in ALIGN_MODES:
            raise ValueError("align_mode must be either `inner` or `outer`.")
        return value.lower().capitalize()

    @field_validator("fill_na_method")
    @classmethod
    def check_fill_na_method(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if value.lower() not in FILL_NA_METHODS:
            raise ValueError(
                "fill_na_method must be one of {Previous, Subsequent, Linear, Zero, Fixed}."
            )
        return value.lower().capitalize()

    def to_body(self, *, source: str) -> dict[str, t.Any]:
        body: dict[str, t.Any] = {
            "source": source,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }
        if self.sliding_window is not None:
            body["slidingWindow"] = self.sliding_window
        align_policy = {
            key: value
            for key, value in (
                ("alignMode", self.align_mode),
                ("fillNAMethod", self.fill_na_method),
                ("paddingValue", self.padding_value),
            )
            if value is not None
        }
        if align_policy:
            body["alignPolicy"] = align_policy
        if self.display_name is not None:
            body["displayName"] = self.display_name
        return body


@dataclass(frozen=True)
class TrainedModel:
    model_id: str
    diagnostics_info: dict[str, t.Any] | None = None


@dataclass(frozen=True)
class AnomalyRow:
    """
    Detection result joined back to an input row.

    ``result``, ``is_anomaly`` and ``error`` stay ``None`` when the service
    returned nothing for the row's timestamp.
    """

    timestamp: str
    values: t.Mapping[str, t.Any]
    result: dict[str, t.Any] | None = None
    is_anomaly: bool | None = None
    error: t.Any = None


@dataclass(frozen=True)
class _AnomalyTarget:
    accepted_status_codes: tuple[int, ...] = (201, 202)
    status_paths: tuple[tuple[str, ...], ...] = (
        ("modelInfo", "status"),
        ("summary", "status"),
    )

    def build_poll_url(self, *, location: str) -> str:
        return location


class AnomalyClient:
    """
    Train multivariate models and detect anomalies with them.
    """

    def __init__(
        self,
        *,
        settings: ServiceSettings,
        uploader: Uploader,
        intermediate_save_dir: str = "intermediate",
        client_factory: t.Callable[[], httpx.AsyncClient] | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._uploader = uploader
        self._intermediate_save_dir = intermediate_save_dir.strip("/")
        self._client_factory: t.Callable[[], httpx.AsyncClient] = client_factory or (
            lambda: httpx.AsyncClient(timeout=settings.timeout)
        )
        self._target = _AnomalyTarget()
        self._poller = LROPoller(
            sender=RetrySender(
                backoff_schedule=settings.backoff_schedule,
                retryable_status_codes=settings.retryable_status_codes,
                sleep=sleep,
            ),
            max_tries=settings.max_polling_tries,
            polling_delay=settings.polling_delay,
            sleep=sleep,
        )

    async def _stage(
        self,
        rows: t.Sequence[t.Mapping[str, t.Any]],
        *,
        timestamp_field: str,
        feature_fields: t.Sequence[str],
    ) -> str:
        archive = pack_series_archive(
            rows,
            timestamp_field=timestamp_field,
            feature_fields=feature_fields,
        )
        name = f"{self._intermediate_save_dir}/{uuid.uuid4()}.zip"
        url = await self._uploader.upload(archive, name=name)
        log.info(event="Staged series archive", blob_name=name, bytes=len(archive))
        return url

    async def _run(self, *, url: str, body: dict[str, t.Any]) -> dict[str, t.Any]:
        async with self._client_factory() as client:
            request = client.build_request(
                method="POST",
                url=url,
                headers={
                    SUBSCRIPTION_KEY_HEADER: self._settings.get_subscription_key(),
                    "Content-Type": "application/json",
                },
                json=body,
            )
            outcome: OperationResult = await self._poller.submit(
                client=client,
                request=request,
                target=self._target,
            )
        if not outcome.succeeded:
            try:
                failure_body = outcome.response.json()
            except ValueError:
                failure_body = outcome.response.text
            raise RemoteOperationFailed(
                status_code=outcome.response.status_code,
                body=failure_body,
            )
        return outcome.response.json()

    async def fit(
        self,
        rows: t.Sequence[t.Mapping[str, t.Any]],
        *,
        parameters: FitParameters,
        feature_fields: t.Sequence[str],
        timestamp_field: str = "timestamp",
    ) -> TrainedModel:
        """
        Train a model on ``rows``.

        Parameters
        ----------
        rows : typing.Sequence[typing.Mapping[str, typing.Any]]
            Training rows.
        parameters : FitParameters
            Training options.
        feature_fields : typing.Sequence[str]
            Feature fields used as series.
        timestamp_field : str, optional
            Timestamp field name.

        Returns
        -------
        TrainedModel
            Identifier and diagnostics of the trained model.

        Raises
        ------
        RemoteOperationFailed
            If training ends in a failed state.
        """
        source = await self._stage(
            rows,
            timestamp_field=timestamp_field,
            feature_fields=feature_fields,
        )
        payload = await self._run(
            url=f"{self._settings.resolve_base_url()}{MODELS_PATH}",
            body=parameters.to_body(source=source),
        )
        model_info = payload.get("modelInfo") or {}
        model = TrainedModel(
            model_id=payload["modelId"],
            diagnostics_info=model_info.get("diagnosticsInfo"),
        )
        log.info(event="Trained model", model_id=model.model_id)
        return model

    async def detect(
        self,
        model_id: str,
        rows: t.Sequence[t.Mapping[str, t.Any]],
        *,
        start_time: str,
        end_time: str,
        feature_fields: t.Sequence[str],
        timestamp_field: str = "timestamp",
    ) -> list[AnomalyRow]:
        """
        Detect anomalies in ``rows`` with a trained model.

        Parameters
        ----------
        model_id : str
            Trained model identifier.
        rows : typing.Sequence[typing.Mapping[str, typing.Any]]
            Rows to score.
        start_time : str
            Start of the detection range.
        end_time : str
            End of the detection range.
        feature_fields : typing.Sequence[str]
            Feature fields, in the order used for training.
        timestamp_field : str, optional
            Timestamp field name.

        Returns
        -------
        list[AnomalyRow]
            One row per input row, sorted by timestamp.
        """
        ordered = sorted(
            rows,
            key=lambda row: to_utc(row[timestamp_field]),
        )
        source = await self._stage(
            ordered,
            timestamp_field=timestamp_field,
            feature_fields=feature_fields,
        )
        payload = await self._run(
            url=f"{self._settings.resolve_base_url()}{MODELS_PATH}/{model_id}/detect",
            body={"source": source, "startTime": start_time, "endTime": end_time},
        )

        by_timestamp: dict[str, dict[str, t.Any]] = {}
        for item in payload.get("results") or []:
            by_timestamp.setdefault(to_iso_instant(item["timestamp"]), item)

        joined: list[AnomalyRow] = []
        for row in ordered:
            timestamp = to_iso_instant(row[timestamp_field])
            item = by_timestamp.get(timestamp)
            if item is None:
                joined.append(AnomalyRow(timestamp=timestamp, values=row))
                continue
            value = item.get("value")
            joined.append(
                AnomalyRow(
                    timestamp=timestamp,
                    values=row,
                    result=value,
                    is_anomaly=value.get("isAnomaly") if isinstance(value, dict) else None,
                    error=item.get("errors") or None,
                )
            )
        log.info(
            event="Detected anomalies",
            model_id=model_id,
            row_count=len(joined),
            matched_count=sum(1 for row in joined if row.result is not None),
        )
        return joined
