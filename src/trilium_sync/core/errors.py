"""Exceptions raised by the ETAPI client.

HTTP failures are mapped onto a small hierarchy so callers can branch on
the kind of failure without inspecting status codes.
"""

from __future__ import annotations


class EtapiError(Exception):
    """Base class for every ETAPI failure.

    Attributes:
        status: HTTP status code, or ``None`` for transport failures.
        code: ETAPI error code from the response body, when present.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class EtapiConnectionError(EtapiError):
    """The server could not be reached or the request timed out."""


class EtapiAuthError(EtapiError):
    """401/403: token missing, wrong, or lacking permission."""


class EtapiValidationError(EtapiError):
    """400: the request payload was rejected."""


class EtapiNotFoundError(EtapiError):
    """404: the note, attribute or attachment does not exist."""


class EtapiRateLimitError(EtapiError):
    """429: too many requests."""


class EtapiServerError(EtapiError):
    """5xx: the server failed to handle the request."""


_STATUS_MAP: dict[int, type[EtapiError]] = {
    400: EtapiValidationError,
    401: EtapiAuthError,
    403: EtapiAuthError,
    404: EtapiNotFoundError,
    429: EtapiRateLimitError,
}


def error_for_status(
    status: int, message: str, code: str | None = None
) -> EtapiError:
    """Build the exception matching an HTTP status code."""
    if status in _STATUS_MAP:
        return _STATUS_MAP[status](message, status=status, code=code)
    if status >= 500:
        return EtapiServerError(message, status=status, code=code)
    return EtapiError(message, status=status, code=code)
