r"""sdwanet - Resilient HTTP session client for the Cisco SD-WAN vManage
REST API.

This package provides an authenticated HTTP client for vManage
controllers. Built on top of the httpx library, it logs in lazily,
caches the session token, and survives transient network and server
failures with a bounded, jittered exponential backoff.

Key Features:
    - Lazy login with a single login in flight per session, even across threads
    - Automatic retry on connection errors, timeouts, 408 and 5xx responses
    - Jittered exponential backoff between a minimum and a maximum delay
    - Retry-After header support for rate-limited (429) responses
    - Identical request bodies across retries
    - Application error detection from the ``error.code`` payload field
    - Optional cancellation of pending retries with a ``threading.Event``

Example:
    ```pycon
    >>> from sdwanet import SdwanClient
    >>> with SdwanClient("https://10.0.0.1", "admin", "secret") as client:  # doctest: +SKIP
    ...     result = client.get("/device")
    ...

    ```
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_BACKOFF_DELAY_FACTOR",
    "DEFAULT_BACKOFF_MAX_DELAY",
    "DEFAULT_BACKOFF_MIN_DELAY",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT",
    "ApplicationError",
    "AuthenticationError",
    "AuthenticationTransportError",
    "Body",
    "ClientError",
    "HttpRequestError",
    "InvalidCredentialsError",
    "OutboundRequest",
    "RateLimitedError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "Result",
    "RetryPolicy",
    "SdwanClient",
    "ServerError",
    "Session",
    "TransportError",
    "__version__",
    "execute_request",
]

from importlib.metadata import PackageNotFoundError, version

from sdwanet.client import SdwanClient
from sdwanet.config import (
    DEFAULT_BACKOFF_DELAY_FACTOR,
    DEFAULT_BACKOFF_MAX_DELAY,
    DEFAULT_BACKOFF_MIN_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    RetryPolicy,
)
from sdwanet.exceptions import (
    ApplicationError,
    AuthenticationError,
    AuthenticationTransportError,
    ClientError,
    HttpRequestError,
    InvalidCredentialsError,
    RateLimitedError,
    RequestCancelledError,
    RequestTimeoutError,
    ServerError,
    TransportError,
)
from sdwanet.request import OutboundRequest, execute_request
from sdwanet.result import Body, Result
from sdwanet.session import Session

try:
    __version__ = version(__name__)
except PackageNotFoundError:  # pragma: no cover
    # Package is not installed, fallback if needed
    __version__ = "0.0.0"
