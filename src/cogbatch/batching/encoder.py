"""
Batch request encoding with positional correlation ids.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Row:
    """
    One input unit. Its position in the input sequence is its identity.
    """

    text: str | None
    language: str | None = None
    extra: t.Mapping[str, t.Any] = field(default_factory=dict)


class Document(BaseModel):
    """Wire form of a row."""

    id: str
    text: str
    language: str | None = None


class BatchRequest(BaseModel):
    documents: list[Document] = Field(default_factory=list)

    def to_payload(self) -> dict[str, t.Any]:
        return self.model_dump(exclude_none=True)


def expand_languages(
    *,
    rows: t.Sequence[Row],
    language: str | None = None,
) -> list[str | None]:
    """
    Expand the language hint into one value per row.

    Rows carrying their own language keep it; the others get the single
    configured ``language``.

    Parameters
    ----------
    rows : typing.Sequence[Row]
        Rows to expand.
    language : str | None, optional
        Scalar language broadcast to rows without one.

    Returns
    -------
    list[str | None]
        Language per row, aligned with ``rows``.
    """
    return [row.language if row.language is not None else language for row in rows]


def encode(*, rows: t.Sequence[Row], language: str | None = None) -> BatchRequest:
    """
    Build the batch request for ``rows``.

    Document ids are the row positions rendered as strings, starting at
    ``"0"``. Missing text is sent as an empty string.

    Parameters
    ----------
    rows : typing.Sequence[Row]
        Rows in input order.
    language : str | None, optional
        Scalar language hint broadcast to rows without a language.

    Returns
    -------
    BatchRequest
        Request with one document per row.
    """
    languages = expand_languages(rows=rows, language=language)
    documents = [
        Document(id=str(index), text=row.text or "", language=row_language)
        for index, (row, row_language) in enumerate(zip(rows, languages, strict=True))
    ]
    log.debug(
        event="Encoded batch",
        document_count=len(documents),
        empty_text_count=sum(1 for row in rows if row.text is None),
    )
    return BatchRequest(documents=documents)
