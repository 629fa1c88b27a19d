"""
Registry of the endpoints available by name.
"""

from __future__ import annotations

from cogbatch.exceptions import UnknownEndpointError
from cogbatch.services.base import Endpoint
from cogbatch.services.text_analytics import (
    ANALYZE,
    ENTITIES_V2,
    ENTITY_LINKING,
    KEY_PHRASES,
    KEY_PHRASES_V2,
    LANGUAGES,
    LANGUAGES_V2,
    NER,
    NER_V2,
    PII,
    SENTIMENT,
    SENTIMENT_V2,
    AnalyzeEndpoint,
)

__all__ = [
    "ANALYZE",
    "ENDPOINTS",
    "AnalyzeEndpoint",
    "Endpoint",
    "get_endpoint",
]


def _build_registry(*endpoints: Endpoint) -> dict[str, Endpoint]:
    registry: dict[str, Endpoint] = {}
    for endpoint in endpoints:
        if endpoint.name in registry:
            raise ValueError(f"Duplicate endpoint name: {endpoint.name}")
        registry[endpoint.name] = endpoint
    return registry


ENDPOINTS: dict[str, Endpoint] = _build_registry(
    SENTIMENT_V2,
    LANGUAGES_V2,
    ENTITIES_V2,
    NER_V2,
    KEY_PHRASES_V2,
    SENTIMENT,
    KEY_PHRASES,
    NER,
    PII,
    LANGUAGES,
    ENTITY_LINKING,
    ANALYZE,
)


def get_endpoint(name: str) -> Endpoint:
    """
    Resolve a registered endpoint by name.

    Parameters
    ----------
    name : str
        Endpoint name, e.g. ``"sentiment"``.

    Returns
    -------
    Endpoint
        Registered endpoint.

    Raises
    ------
    UnknownEndpointError
        If no endpoint has this name.
    """
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise UnknownEndpointError(
            f"Unknown endpoint: {name}. Known endpoints: {sorted(ENDPOINTS)}"
        ) from None
