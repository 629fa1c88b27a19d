"""
Text analytics endpoints, v2, v3.1 and the multi-task analyze job.
"""

from __future__ import annotations

import dataclasses
import typing as t
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

import structlog

from cogbatch.batching.encoder import Row, encode
from cogbatch.batching.fanin import TASK_ORDER, AnalyzeResponse, TaskGroupResponse, TaskKind
from cogbatch.services.base import Endpoint

log = structlog.get_logger(__name__)

V3_PARAMS = ("model-version", "showStats", "stringIndexType")

# The analyze API pages results by 20 by default and accepts up to 25 documents.
ANALYZE_PAGE_SIZE = 25

SENTIMENT_V2 = Endpoint(name="sentiment-v2", url_path="/text/analytics/v2.0/sentiment")
LANGUAGES_V2 = Endpoint(name="languages-v2", url_path="/text/analytics/v2.0/languages")
ENTITIES_V2 = Endpoint(name="entities-v2", url_path="/text/analytics/v2.0/entities")
NER_V2 = Endpoint(name="ner-v2", url_path="/text/analytics/v2.1/entities")
KEY_PHRASES_V2 = Endpoint(name="key-phrases-v2", url_path="/text/analytics/v2.0/keyPhrases")

SENTIMENT = Endpoint(
    name="sentiment",
    url_path="/text/analytics/v3.1/sentiment",
    url_params=(*V3_PARAMS, "opinionMining"),
)
KEY_PHRASES = Endpoint(
    name="key-phrases",
    url_path="/text/analytics/v3.1/keyPhrases",
    url_params=V3_PARAMS,
)
NER = Endpoint(
    name="ner",
    url_path="/text/analytics/v3.1/entities/recognition/general",
    url_params=V3_PARAMS,
)
PII = Endpoint(
    name="pii",
    url_path="/text/analytics/v3.1/entities/recognition/pii",
    url_params=(*V3_PARAMS, "domain", "piiCategories"),
)
LANGUAGES = Endpoint(
    name="languages",
    url_path="/text/analytics/v3.1/languages",
    url_params=("model-version", "showStats"),
)
ENTITY_LINKING = Endpoint(
    name="entity-linking",
    url_path="/text/analytics/v3.1/entities/linking",
    url_params=V3_PARAMS,
)


def with_page_size(*, location: str, top: int = ANALYZE_PAGE_SIZE) -> str:
    """
    Prefix the query of a status URL with ``$top``.

    The service honours the first ``$top`` it sees, so it goes first.
    """
    parts = urlsplit(location)
    query = f"$top={top}" if not parts.query else f"$top={top}&{parts.query}"
    return urlunsplit(parts._replace(query=query))


@dataclass(frozen=True)
class AnalyzeEndpoint(Endpoint):
    """
    Multi-task analysis endpoint.

    One task per requested kind is submitted over the same documents. The
    service always defers the work and every task reports its own state.
    """

    display_name: str = "cogbatch"
    tasks: t.Mapping[TaskKind, t.Mapping[str, str]] = field(default_factory=dict)

    def with_tasks(self, tasks: t.Mapping[TaskKind | str, t.Mapping[str, str]]) -> AnalyzeEndpoint:
        """
        Return a copy requesting ``tasks``.

        Parameters
        ----------
        tasks : typing.Mapping[TaskKind | str, typing.Mapping[str, str]]
            Task parameters per kind, e.g.
            ``{TaskKind.SENTIMENT_ANALYSIS: {"model-version": "latest"}}``.

        Returns
        -------
        AnalyzeEndpoint
            Endpoint requesting the given tasks.
        """
        normalized = {
            TaskKind(kind): {key: str(object=value) for key, value in parameters.items()}
            for kind, parameters in tasks.items()
        }
        return dataclasses.replace(self, tasks=normalized)

    def build_payload(self, *, rows: t.Sequence[Row], language: str | None) -> dict[str, t.Any]:
        if not self.tasks:
            raise ValueError(f"Endpoint {self.name} requires at least one task")
        documents = encode(rows=rows, language=language).to_payload()["documents"]
        return {
            "displayName": self.display_name,
            "analysisInput": {"documents": documents},
            "tasks": {
                kind.value: [{"parameters": dict(self.tasks[kind])}]
                for kind in TASK_ORDER
                if kind in self.tasks
            },
        }

    def build_poll_url(self, *, location: str) -> str:
        return with_page_size(location=location)

    def parse_tasks(self, *, payload: t.Any) -> dict[TaskKind, TaskGroupResponse | None]:
        """
        Read the per-kind task groups out of a terminal analyze response.

        Parameters
        ----------
        payload : typing.Any
            Decoded terminal response.

        Returns
        -------
        dict[TaskKind, TaskGroupResponse | None]
            Task group per kind, ``None`` for kinds absent from the response.

        Raises
        ------
        pydantic.ValidationError
            If the response does not have the analyze shape.
        """
        tasks = AnalyzeResponse.model_validate(obj=payload).tasks
        per_task: dict[TaskKind, TaskGroupResponse | None] = {}
        for kind in TASK_ORDER:
            groups = tasks.groups(kind)
            if not groups:
                per_task[kind] = None
                if kind in self.tasks:
                    log.warning(event="Requested task missing from response", task=kind.value)
                continue
            if len(groups) > 1:
                log.debug(event="Several task groups for kind, using first", task=kind.value)
            per_task[kind] = groups[0]
        return per_task


ANALYZE = AnalyzeEndpoint(
    name="analyze",
    url_path="/text/analytics/v3.1/analyze",
    tasks={kind: {"model-version": "latest"} for kind in TASK_ORDER},
)
