"""
Endpoint strategy shared by every text analytics service.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field
from urllib.parse import urlencode

import httpx
import structlog

from cogbatch.batching.decoder import BatchResponse
from cogbatch.batching.encoder import Row, encode
from cogbatch.http.poller import STATUS_FIELD_PATHS, SUBSCRIPTION_KEY_HEADER

log = structlog.get_logger(__name__)

ParamValue = str | bool | int | t.Sequence[str]


def format_param(*, value: ParamValue) -> str:
    """
    Render a query parameter value the way the services expect it.

    Booleans are lower-cased and sequences are comma separated.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int)):
        return str(object=value)
    return ",".join(value)


@dataclass(frozen=True)
class Endpoint:
    """
    Request and response shaping for one remote endpoint.

    The poller and the correlator are shared by every endpoint; an endpoint
    only decides how the request looks, where to poll and how to read the
    batch out of the terminal response.
    """

    name: str
    url_path: str
    url_params: tuple[str, ...] = ()
    accepted_status_codes: tuple[int, ...] = (201, 202)
    status_paths: tuple[tuple[str, ...], ...] = STATUS_FIELD_PATHS
    default_params: t.Mapping[str, ParamValue] = field(default_factory=dict)

    def build_url(self, *, base_url: str, params: t.Mapping[str, ParamValue] | None = None) -> str:
        """
        Build the request URL.

        Parameters
        ----------
        base_url : str
            Service root without trailing slash.
        params : typing.Mapping[str, ParamValue] | None, optional
            Query parameters. Names must be listed in ``url_params``.

        Returns
        -------
        str
            Absolute URL including the query string.

        Raises
        ------
        ValueError
            If a parameter is not supported by this endpoint.
        """
        merged = {**self.default_params, **(params or {})}
        unsupported = sorted(set(merged) - set(self.url_params))
        if unsupported:
            raise ValueError(f"Endpoint {self.name} does not support parameters: {unsupported}")
        url = f"{base_url.rstrip('/')}{self.url_path}"
        if not merged:
            return url
        query = urlencode({key: format_param(value=value) for key, value in merged.items()})
        return f"{url}?{query}"

    def build_payload(self, *, rows: t.Sequence[Row], language: str | None) -> dict[str, t.Any]:
        return encode(rows=rows, language=language).to_payload()

    def build_request(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        subscription_key: str,
        rows: t.Sequence[Row],
        language: str | None = None,
        params: t.Mapping[str, ParamValue] | None = None,
    ) -> httpx.Request:
        """
        Build the batch request for ``rows``.

        Parameters
        ----------
        client : httpx.AsyncClient
            Client used to build the request.
        base_url : str
            Service root.
        subscription_key : str
            Key sent in the subscription header.
        rows : typing.Sequence[Row]
            Rows of the batch, in order.
        language : str | None, optional
            Scalar language hint.
        params : typing.Mapping[str, ParamValue] | None, optional
            Query parameters.

        Returns
        -------
        httpx.Request
            POST request carrying the encoded batch.
        """
        url = self.build_url(base_url=base_url, params=params)
        payload = self.build_payload(rows=rows, language=language)
        log.debug(
            event="Built endpoint request",
            endpoint=self.name,
            url=url,
            row_count=len(rows),
        )
        return client.build_request(
            method="POST",
            url=url,
            headers={
                SUBSCRIPTION_KEY_HEADER: subscription_key,
                "Content-Type": "application/json",
            },
            json=payload,
        )

    def build_poll_url(self, *, location: str) -> str:
        return location

    def parse_batch(self, *, payload: t.Any) -> BatchResponse:
        return BatchResponse.model_validate(obj=payload)
