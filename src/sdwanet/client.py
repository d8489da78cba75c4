r"""Contain the vManage client: an authenticated HTTP session with
automatic retry logic."""

from __future__ import annotations

__all__ = ["SdwanClient"]

import json
from typing import TYPE_CHECKING, Any

import httpx

from sdwanet.auth import login
from sdwanet.config import (
    API_PREFIX,
    DEFAULT_BACKOFF_DELAY_FACTOR,
    DEFAULT_BACKOFF_MAX_DELAY,
    DEFAULT_BACKOFF_MIN_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    RetryPolicy,
)
from sdwanet.request import OutboundRequest, execute_request
from sdwanet.result import Body
from sdwanet.session import Session
from sdwanet.utils import validate_timeout

if TYPE_CHECKING:
    import threading
    from types import TracebackType

    from sdwanet.result import Result


class SdwanClient:
    r"""Implement a client for the vManage REST API.

    The client logs in lazily on the first request, caches the token
    for all later requests and retries transient failures with a
    jittered exponential backoff. It can be shared between threads.

    Args:
        url: The controller base URL, e.g. ``https://10.0.0.1:8443``.
        username: The controller username.
        password: The controller password.
        insecure: If ``True``, the TLS certificate of the controller is
            not verified.
        timeout: Maximum seconds to wait for each attempt. Only used if
            client is None. Must be > 0.
        max_retries: Maximum number of retries after the first attempt.
            Must be >= 0.
        backoff_min_delay: Minimum delay in seconds between two attempts.
        backoff_max_delay: Maximum delay in seconds between two attempts.
        backoff_delay_factor: Factor of the exponential backoff.
        client: An optional ``httpx.Client`` to use for the requests. It
            must keep cookies between requests. If None, a new client is
            created and closed with this object.

    Raises:
        ValueError: If one of the retry parameters or the timeout is out
            of range.

    Example:
        ```pycon
        >>> from sdwanet import SdwanClient
        >>> with SdwanClient(
        ...     "https://10.0.0.1", "admin", "secret", insecure=True, max_retries=5
        ... ) as client:  # doctest: +SKIP
        ...     devices = client.get("/device")
        ...     devices.get("data.0.host-name")
        ...

        ```
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        *,
        insecure: bool = False,
        timeout: float | None = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_min_delay: float = DEFAULT_BACKOFF_MIN_DELAY,
        backoff_max_delay: float = DEFAULT_BACKOFF_MAX_DELAY,
        backoff_delay_factor: float = DEFAULT_BACKOFF_DELAY_FACTOR,
        client: httpx.Client | None = None,
    ) -> None:
        validate_timeout(timeout)
        policy = RetryPolicy(
            max_retries=max_retries,
            backoff_min_delay=backoff_min_delay,
            backoff_max_delay=backoff_max_delay,
            backoff_delay_factor=backoff_delay_factor,
        )
        self._session = Session(url, username, password, policy)
        self._owns_client = client is None
        self._client = client or httpx.Client(
            verify=not insecure, timeout=timeout, follow_redirects=True
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__qualname__}(session={self._session!r})"

    def __enter__(self) -> SdwanClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def token(self) -> str:
        r"""The current token, or an empty string before the first
        login."""
        return self._session.token

    def close(self) -> None:
        r"""Close the underlying ``httpx.Client`` if it was created by
        this object."""
        if self._owns_client:
            self._client.close()

    def authenticate(self, cancel_event: threading.Event | None = None) -> None:
        r"""Log in if no token is held yet.

        Raises:
            AuthenticationError: If the login handshake fails.
        """
        self._session.ensure_authenticated(
            lambda session: login(self._client, session, cancel_event=cancel_event)
        )

    def request(
        self,
        method: str,
        path: str,
        data: Any = None,
        *,
        headers: dict[str, str] | None = None,
        log_payload: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> Result:
        r"""Send an authenticated request to ``path`` with automatic
        retry logic.

        Unlike the verb methods, ``path`` is not prefixed with
        ``/dataservice``.

        Args:
            method: The HTTP method, e.g. ``"GET"``.
            path: The path relative to the controller base URL.
            data: The request body: a string, a bytes-like object, a
                ``Body`` builder or any JSON-serializable object. ``None``
                sends no body.
            headers: Extra headers sent with every attempt.
            log_payload: If ``False``, the request and response bodies
                are left out of the debug logs.
            cancel_event: An optional event stopping the retries.

        Returns:
            The parsed payload of the successful response.

        Raises:
            HttpRequestError: If the request fails. The parsed payload
                of the last response, if any, is available as
                ``exc.result``.
        """
        body = _encode_body(data)
        request_headers = dict(headers or {})
        if body and not any(key.lower() == "content-type" for key in request_headers):
            request_headers["Content-Type"] = "application/json"
        return execute_request(
            self._client,
            self._session,
            OutboundRequest(
                method=method.upper(),
                path=path,
                body=body,
                headers=request_headers,
                log_payload=log_payload,
            ),
            cancel_event=cancel_event,
        )

    def get(self, path: str, **kwargs: Any) -> Result:
        r"""Send a GET request to ``/dataservice{path}``.

        ``kwargs`` are passed to ``request``.
        """
        return self.request("GET", API_PREFIX + path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Result:
        return self.request("DELETE", API_PREFIX + path, **kwargs)

    def delete_body(self, path: str, data: Any, **kwargs: Any) -> Result:
        r"""Send a DELETE request with a payload to
        ``/dataservice{path}``."""
        return self.request("DELETE", API_PREFIX + path, data, **kwargs)

    def post(self, path: str, data: Any, **kwargs: Any) -> Result:
        return self.request("POST", API_PREFIX + path, data, **kwargs)

    def put(self, path: str, data: Any, **kwargs: Any) -> Result:
        return self.request("PUT", API_PREFIX + path, data, **kwargs)


def _encode_body(data: Any) -> bytes:
    r"""Snapshot a request body as bytes."""
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, Body):
        return data.to_json().encode("utf-8")
    return json.dumps(data).encode("utf-8")
