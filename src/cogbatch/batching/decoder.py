"""
Batch response correlation.

Restores the input order of a batch response using the document ids assigned
by the encoder. Ids missing from the response produce placeholder rows.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass

import structlog
from pydantic import BaseModel, ConfigDict, Field

log = structlog.get_logger(__name__)


class BatchResponse(BaseModel):
    """
    Parsed batch response.

    Items are kept as raw mappings since each service returns its own result
    shape. Only ``id`` is required on every item.
    """

    model_config = ConfigDict(extra="allow")

    documents: list[dict[str, t.Any]] = Field(default_factory=list)
    errors: list[dict[str, t.Any]] = Field(default_factory=list)


@dataclass(frozen=True)
class ReconciledRow:
    """
    Result for one input position.

    At most one of ``result`` and ``error`` is set. When neither is set the
    service returned nothing for this position and ``gap`` is ``True``.
    """

    index: int
    result: dict[str, t.Any] | None = None
    error: str | None = None
    gap: bool = False


def error_message(*, item: t.Mapping[str, t.Any]) -> str:
    """
    Extract the message of an error item.

    Handles both the flat ``{"id", "message"}`` shape and the nested
    ``{"id", "error": {"code", "message"}}`` shape.
    """
    message = item.get("message")
    if message is not None:
        return str(object=message)
    nested = item.get("error")
    if isinstance(nested, dict):
        inner = nested.get("innererror")
        if isinstance(inner, dict) and inner.get("message"):
            return str(object=inner["message"])
        if nested.get("message") is not None:
            return str(object=nested["message"])
    if nested is not None:
        return str(object=nested)
    return "Unknown error"


def index_by_id(*, items: t.Iterable[t.Mapping[str, t.Any]]) -> dict[int, t.Mapping[str, t.Any]]:
    """
    Map response items by their integer correlation id.

    Items without an integer id cannot be correlated and are skipped.
    """
    indexed: dict[int, t.Mapping[str, t.Any]] = {}
    for item in items:
        raw_id = item.get("id")
        try:
            key = int(raw_id)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            log.warning(event="Response item has no usable id", item_id=raw_id)
            continue
        if key in indexed:
            log.warning(event="Duplicate response id, keeping first", item_id=raw_id)
            continue
        indexed[key] = item
    return indexed


def lookup(
    *,
    index: int,
    documents: t.Mapping[int, t.Mapping[str, t.Any]],
    errors: t.Mapping[int, t.Mapping[str, t.Any]],
) -> tuple[dict[str, t.Any] | None, str | None]:
    """
    Find the result or error for one position, documents first.

    Returns
    -------
    tuple[dict[str, typing.Any] | None, str | None]
        ``(result, error)``. Both are ``None`` when the id is absent.
    """
    document = documents.get(index)
    if document is not None:
        return {key: value for key, value in document.items() if key != "id"}, None
    error = errors.get(index)
    if error is not None:
        return None, error_message(item=error)
    return None, None


def decode(*, response: BatchResponse, expected_count: int) -> list[ReconciledRow]:
    """
    Align a batch response with the input rows.

    Parameters
    ----------
    response : BatchResponse
        Parsed response.
    expected_count : int
        Number of rows sent in the batch.

    Returns
    -------
    list[ReconciledRow]
        Exactly ``expected_count`` rows ordered by index.
    """
    documents = index_by_id(items=response.documents)
    errors = index_by_id(items=response.errors)

    rows: list[ReconciledRow] = []
    gaps: list[int] = []
    for index in range(expected_count):
        result, error = lookup(index=index, documents=documents, errors=errors)
        if result is None and error is None:
            gaps.append(index)
            rows.append(ReconciledRow(index=index, gap=True))
        else:
            rows.append(ReconciledRow(index=index, result=result, error=error))

    unexpected = sorted(
        key for key in set(documents) | set(errors) if not 0 <= key < expected_count
    )
    if unexpected:
        log.warning(event="Response ids outside the batch ignored", ids=unexpected)
    if gaps:
        log.warning(
            event="Correlation gap in batch response",
            expected_count=expected_count,
            gap_count=len(gaps),
            gap_indices=gaps,
        )
    log.debug(
        event="Decoded batch",
        expected_count=expected_count,
        document_count=len(documents),
        error_count=len(errors),
    )
    return rows
