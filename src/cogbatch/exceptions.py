"""
Cogbatch-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class CogbatchError(RuntimeError):
    """
    Base class for errors raised by the batching core.

    Notes
    -----
    Every subclass is fatal to the batch it was raised for and is reported
    per row by ``BatchClient``. Sibling batches are not affected.
    """


class TransientTransportError(CogbatchError):
    """
    Raised when a request keeps failing at the transport level.

    Parameters
    ----------
    attempts : int
        Number of attempts performed before giving up.
    message : str
        Human readable description.
    """

    def __init__(self, *, attempts: int, message: str) -> None:
        self.attempts = attempts
        super().__init__(message)


class PollingTimeout(CogbatchError):
    """
    Raised when a long-running operation is still pending after all tries.

    Parameters
    ----------
    tries : int
        Number of status checks performed.
    location : str
        Status URL that was polled.
    """

    def __init__(self, *, tries: int, location: str) -> None:
        self.tries = tries
        self.location = location
        super().__init__(f"Querying for results did not complete within {tries} tries")


class UnknownRemoteStatus(CogbatchError):
    """
    Raised when a status check returns a status outside the known vocabulary.

    Parameters
    ----------
    status : str | None
        Status value received, ``None`` when no status field was found.
    """

    def __init__(self, *, status: str | None) -> None:
        self.status = status
        if status is None:
            message = "Status check response carries no known status field"
        else:
            message = f"Received unknown status code: {status}"
        super().__init__(message)


class MissingStatusLocation(CogbatchError):
    """
    Raised when the service accepts a request without a ``Location`` header.
    """

    def __init__(self, *, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(
            f"Service accepted the request with status {status_code} but sent no Location header"
        )


class OperationStateError(CogbatchError):
    """
    Raised when a terminal operation is mutated.
    """


class RemoteOperationFailed(CogbatchError):
    """
    Raised by callers that cannot express a failed remote operation per row.

    Parameters
    ----------
    status_code : int
        HTTP status code of the terminal response.
    body : typing.Any
        Decoded terminal response body.
    """

    def __init__(self, *, status_code: int, body: t.Any) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Remote operation failed with status {status_code}")


class UnknownEndpointError(KeyError):
    """
    Raised when an endpoint name is not registered.
    """
