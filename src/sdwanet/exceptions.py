r"""Contain the exceptions raised by the vManage client."""

from __future__ import annotations

__all__ = [
    "ApplicationError",
    "AuthenticationError",
    "AuthenticationTransportError",
    "ClientError",
    "HttpRequestError",
    "InvalidCredentialsError",
    "RateLimitedError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "ServerError",
    "TransportError",
]

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from sdwanet.result import Result


class HttpRequestError(RuntimeError):
    r"""Base exception for a request that could not be completed.

    The last observed response and its parsed payload are attached when
    the controller answered, so callers can inspect the error body.

    Args:
        method: The HTTP method of the failed request.
        url: The URL of the failed request.
        message: The error message.
        status_code: The HTTP status code of the last response, if any.
        response: The last ``httpx.Response``, if any.
        result: The parsed payload of the last response, if any.
        cause: The underlying exception, if any.

    Example:
        ```pycon
        >>> from sdwanet import HttpRequestError
        >>> exc = HttpRequestError("GET", "https://vmanage/dataservice/device", "boom")
        >>> exc.status_code

        ```
    """

    def __init__(
        self,
        method: str,
        url: str,
        message: str,
        status_code: int | None = None,
        response: httpx.Response | None = None,
        result: Result | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.response = response
        self.result = result
        self.__cause__ = cause


class TransportError(HttpRequestError):
    r"""Raised when the connection failed on every attempt."""


class RequestTimeoutError(TransportError):
    r"""Raised when the per-attempt timeout expired on every attempt."""


class RateLimitedError(HttpRequestError):
    r"""Raised when the controller kept answering 429 until retries ran
    out."""


class ServerError(HttpRequestError):
    r"""Raised when the controller kept answering 408 or 5xx until
    retries ran out."""


class ClientError(HttpRequestError):
    r"""Raised immediately for a non-retryable non-2xx status."""


class ApplicationError(HttpRequestError):
    r"""Raised when a 2xx payload carries an ``error.code`` value."""


class RequestCancelledError(HttpRequestError):
    r"""Raised when the cancellation event of a call is set."""


class AuthenticationError(HttpRequestError):
    r"""Base exception for a failed login handshake."""


class InvalidCredentialsError(AuthenticationError):
    r"""Raised when the login endpoint rejects the credentials after all
    retries."""


class AuthenticationTransportError(AuthenticationError):
    r"""Raised when the login or token endpoint cannot be reached or
    answers with an unexpected status or payload."""
