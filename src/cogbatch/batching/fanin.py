"""
Per-document merge of multi-task results.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass
from enum import StrEnum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cogbatch.batching.decoder import BatchResponse, index_by_id, lookup

log = structlog.get_logger(__name__)

SUCCEEDED_STATE = "succeeded"


class TaskKind(StrEnum):
    """Analysis task kinds, in merge order."""

    ENTITY_RECOGNITION = "entityRecognitionTasks"
    ENTITY_LINKING = "entityLinkingTasks"
    ENTITY_RECOGNITION_PII = "entityRecognitionPiiTasks"
    KEY_PHRASE_EXTRACTION = "keyPhraseExtractionTasks"
    SENTIMENT_ANALYSIS = "sentimentAnalysisTasks"


TASK_ORDER: tuple[TaskKind, ...] = tuple(TaskKind)


class TaskGroupResponse(BaseModel):
    """
    Outcome of one task kind. ``results`` is only meaningful when succeeded.
    """

    model_config = ConfigDict(extra="allow")

    state: str
    results: BatchResponse | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == SUCCEEDED_STATE


class AnalyzeTasks(BaseModel):
    """
    Task groups of an analyze response, one list per kind.

    Counters such as ``completed`` or ``total`` are kept as extra fields.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    entity_recognition: list[TaskGroupResponse] = Field(
        default_factory=list, alias=TaskKind.ENTITY_RECOGNITION.value
    )
    entity_linking: list[TaskGroupResponse] = Field(
        default_factory=list, alias=TaskKind.ENTITY_LINKING.value
    )
    entity_recognition_pii: list[TaskGroupResponse] = Field(
        default_factory=list, alias=TaskKind.ENTITY_RECOGNITION_PII.value
    )
    key_phrase_extraction: list[TaskGroupResponse] = Field(
        default_factory=list, alias=TaskKind.KEY_PHRASE_EXTRACTION.value
    )
    sentiment_analysis: list[TaskGroupResponse] = Field(
        default_factory=list, alias=TaskKind.SENTIMENT_ANALYSIS.value
    )

    def groups(self, kind: TaskKind) -> list[TaskGroupResponse]:
        return getattr(self, kind.name.lower())


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str | None = None
    tasks: AnalyzeTasks = Field(default_factory=AnalyzeTasks)


@dataclass(frozen=True)
class TaskSlot:
    result: dict[str, t.Any] | None = None
    error: str | None = None


@dataclass(frozen=True)
class MergedRow:
    """
    Combined task results for one document.

    ``slots`` follows ``TASK_ORDER``. A kind that was not requested or whose
    task group failed has no slot (``None``).
    """

    index: int
    slots: tuple[TaskSlot | None, ...]

    def slot(self, kind: TaskKind) -> TaskSlot | None:
        return self.slots[TASK_ORDER.index(kind)]

    def as_dict(self) -> dict[str, TaskSlot]:
        return {
            kind.value: slot
            for kind, slot in zip(TASK_ORDER, self.slots, strict=True)
            if slot is not None
        }


def merge_tasks(
    *,
    per_task: t.Mapping[TaskKind, TaskGroupResponse | None],
    document_count: int,
) -> list[MergedRow]:
    """
    Merge per-task results per document id.

    Parameters
    ----------
    per_task : typing.Mapping[TaskKind, TaskGroupResponse | None]
        Task group response per kind, ``None`` or missing when not requested.
    document_count : int
        Number of documents sent.

    Returns
    -------
    list[MergedRow]
        One row per document in id order, or an empty list when no task
        group succeeded.
    """
    indexes: dict[TaskKind, tuple[dict[int, t.Any], dict[int, t.Any]]] = {}
    for kind in TASK_ORDER:
        group = per_task.get(kind)
        if group is None:
            continue
        if not group.succeeded:
            log.warning(event="Task group failed, dropping it", task=kind.value, state=group.state)
            continue
        results = group.results or BatchResponse()
        indexes[kind] = (
            index_by_id(items=results.documents),
            index_by_id(items=results.errors),
        )

    if not indexes:
        log.error(event="No task group succeeded", requested=[k.value for k in per_task])
        return []

    merged: list[MergedRow] = []
    for index in range(document_count):
        slots: list[TaskSlot | None] = []
        for kind in TASK_ORDER:
            if kind not in indexes:
                slots.append(None)
                continue
            documents, errors = indexes[kind]
            result, error = lookup(index=index, documents=documents, errors=errors)
            slots.append(TaskSlot(result=result, error=error))
        merged.append(MergedRow(index=index, slots=tuple(slots)))

    log.debug(
        event="Merged task results",
        document_count=document_count,
        succeeded_tasks=[kind.value for kind in indexes],
    )
    return merged
