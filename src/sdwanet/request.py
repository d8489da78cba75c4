r"""Contain the request executor: the retry state machine driving every
authenticated call to the controller."""

from __future__ import annotations

__all__ = ["OutboundRequest", "State", "execute_request"]

import enum
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

import httpx

from sdwanet.auth import login
from sdwanet.backoff import calculate_backoff_delay, wait
from sdwanet.config import DEFAULT_RETRY_AFTER, RETRY_STATUS_CODES, TOKEN_HEADER
from sdwanet.exceptions import (
    ApplicationError,
    ClientError,
    HttpRequestError,
    RateLimitedError,
    RequestCancelledError,
    RequestTimeoutError,
    ServerError,
    TransportError,
)
from sdwanet.result import Result
from sdwanet.utils import get_retry_after_delay, join_url

if TYPE_CHECKING:
    import threading
    from collections.abc import Mapping

    from sdwanet.session import Session

logger: logging.Logger = logging.getLogger(__name__)


class State(enum.Enum):
    r"""Define the states of one logical call.

    ``SENDING`` is the initial state, ``SUCCESS`` and ``DONE`` are
    terminal.
    """

    SENDING = "sending"
    SUCCESS = "success"
    CLASSIFY_RETRY = "classify_retry"
    BACKOFF = "backoff"
    CLASSIFY_FATAL = "classify_fatal"
    DONE = "done"


@dataclass(frozen=True)
class OutboundRequest:
    r"""Implement one logical call to the controller.

    The body is kept as immutable bytes so every attempt sends exactly
    the same payload.

    Args:
        method: The HTTP method, e.g. ``"GET"``.
        path: The path relative to the controller base URL.
        body: The raw request body.
        headers: Extra headers sent with every attempt.
        log_payload: If ``False``, request and response bodies are
            left out of the debug logs.
    """

    method: str
    path: str
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    log_payload: bool = True


@dataclass
class _Failure:
    r"""The last failed attempt of a logical call."""

    error_cls: type[HttpRequestError]
    message: str
    retryable: bool
    status_code: int | None = None
    response: httpx.Response | None = None
    result: Result | None = None
    cause: Exception | None = None
    # Server-directed wait, used instead of the jittered backoff
    retry_after: float | None = None
    # Wait before the next attempt, set once the failure is classified
    delay: float = 0.0


def execute_request(
    client: httpx.Client,
    session: Session,
    request: OutboundRequest,
    *,
    cancel_event: threading.Event | None = None,
) -> Result:
    r"""Send an authenticated request and retry transient failures.

    The session is authenticated first if it holds no token. The call
    then runs the state machine
    ``SENDING -> {SUCCESS, CLASSIFY_RETRY -> BACKOFF -> SENDING,
    CLASSIFY_FATAL -> DONE}``:

    - connection errors, timeouts, 408 and 5xx responses are retried
      after a jittered exponential backoff;
    - 429 responses are retried after the ``Retry-After`` delay (1s for
      ``"0"``, 15s when absent), without jitter;
    - any other non-2xx response fails immediately.

    Every retry consumes one attempt of ``session.policy.max_retries``.
    Once retries are exhausted, the error of the last attempt is raised.
    A 2xx payload holding an ``error.code`` value is reported as an
    application error.

    Args:
        client: The HTTP client used to talk to the controller.
        session: The session holding the token and retry policy.
        request: The logical call to perform.
        cancel_event: An optional event. When set, pending waits return
            early and the call stops before the next attempt.

    Returns:
        The parsed payload of the successful response.

    Raises:
        AuthenticationError: If the session cannot authenticate.
        ClientError: If the controller answers a non-retryable status.
        ApplicationError: If a 2xx payload carries an error code.
        RateLimitedError: If 429 responses exhaust the retries.
        ServerError: If 408 or 5xx responses exhaust the retries.
        TransportError: If connection errors exhaust the retries.
        RequestTimeoutError: If timeouts exhaust the retries.
        RequestCancelledError: If ``cancel_event`` is set.

    Example:
        ```pycon
        >>> import httpx
        >>> from sdwanet import OutboundRequest, Session, execute_request
        >>> session = Session("https://vmanage", "admin", "secret")
        >>> with httpx.Client() as client:
        ...     result = execute_request(
        ...         client, session, OutboundRequest("GET", "/dataservice/device")
        ...     )  # doctest: +SKIP
        ...

        ```
    """
    session.ensure_authenticated(partial(login, client, cancel_event=cancel_event))

    url = join_url(session.url, request.path)
    headers = {**request.headers, TOKEN_HEADER: session.token}
    policy = session.policy

    state = State.SENDING
    attempt = 0
    result: Result | None = None
    failure: _Failure | None = None
    while True:
        _log_transition(state, request, url, attempt, policy.max_retries, failure)

        if state is State.SENDING:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError(
                    method=request.method,
                    url=url,
                    message=f"{request.method} request to {url} was cancelled",
                    result=result,
                )
            result, failure = _send(client, request, url, headers)
            if failure is None:
                state = State.SUCCESS
            elif failure.retryable:
                state = State.CLASSIFY_RETRY
            else:
                state = State.CLASSIFY_FATAL

        elif state is State.CLASSIFY_RETRY:
            if attempt < policy.max_retries:
                failure.delay = (
                    failure.retry_after
                    if failure.retry_after is not None
                    else calculate_backoff_delay(attempt, policy)
                )
                state = State.BACKOFF
            else:
                state = State.CLASSIFY_FATAL

        elif state is State.BACKOFF:
            wait(failure.delay, cancel_event)
            attempt += 1
            state = State.SENDING

        elif state is State.CLASSIFY_FATAL:
            state = State.DONE

        elif state is State.DONE:
            raise _to_error(failure, request.method, url, attempt)

        else:
            return _check_application_error(result, request.method, url)


def _send(
    client: httpx.Client, request: OutboundRequest, url: str, headers: dict[str, str]
) -> tuple[Result | None, _Failure | None]:
    r"""Perform one physical attempt and classify its outcome."""
    # A new request is built for each attempt because the body stream
    # can only be read once.
    http_request = client.build_request(
        request.method, url, content=request.body or None, headers=headers
    )
    try:
        response = client.send(http_request)
    except httpx.TimeoutException as exc:
        return None, _Failure(
            error_cls=RequestTimeoutError,
            message=f"{request.method} request to {url} timed out",
            retryable=True,
            cause=exc,
        )
    except httpx.RequestError as exc:
        return None, _Failure(
            error_cls=TransportError,
            message=f"{request.method} request to {url} failed: {exc}",
            retryable=True,
            cause=exc,
        )

    result = Result.from_bytes(response.content)
    if request.log_payload:
        logger.debug(f"HTTP Response: {result.text}")

    status_code = response.status_code
    if 200 <= status_code <= 299:
        return result, None

    failure = _Failure(
        error_cls=ClientError,
        message=f"{request.method} request to {url} failed with status {status_code}",
        retryable=False,
        status_code=status_code,
        response=response,
        result=result,
    )
    if status_code == 429:
        failure.error_cls = RateLimitedError
        failure.retryable = True
        failure.retry_after = get_retry_after_delay(
            response.headers.get("Retry-After"), default=DEFAULT_RETRY_AFTER
        )
    elif status_code in RETRY_STATUS_CODES:
        failure.error_cls = ServerError
        failure.retryable = True
    return result, failure


def _to_error(failure: _Failure, method: str, url: str, attempt: int) -> HttpRequestError:
    message = failure.message
    if failure.retryable:
        message = f"{message} after {attempt + 1} attempts"
    return failure.error_cls(
        method=method,
        url=url,
        message=message,
        status_code=failure.status_code,
        response=failure.response,
        result=failure.result,
        cause=failure.cause,
    )


def _check_application_error(result: Result, method: str, url: str) -> Result:
    if result.error_code() is not None:
        logger.error(f"JSON error: {result.text}")
        raise ApplicationError(
            method=method,
            url=url,
            message=f"JSON error: {result.text}",
            result=result,
        )
    return result


def _log_transition(
    state: State,
    request: OutboundRequest,
    url: str,
    attempt: int,
    max_retries: int,
    failure: _Failure | None,
) -> None:
    r"""Emit the log record of the state the call is entering."""
    if state is State.SENDING:
        if request.log_payload and request.body:
            logger.debug(
                f"HTTP Request: {request.method}, {url}, "
                f"{request.body.decode('utf-8', errors='replace')}"
            )
        else:
            logger.debug(f"HTTP Request: {request.method}, {url}")
    elif state is State.CLASSIFY_RETRY:
        logger.error(f"{failure.message} (attempt {attempt + 1}/{max_retries + 1})")
    elif state is State.BACKOFF:
        if failure.retry_after is not None:
            logger.warning(f"HTTP Request rate limited, waiting {failure.delay:.0f} seconds")
        else:
            logger.debug(f"Waiting {failure.delay:.2f}s before retry")
    elif state is State.CLASSIFY_FATAL:
        logger.error(failure.message)
    elif state is State.SUCCESS:
        if attempt > 0:
            logger.debug(f"{request.method} request to {url} succeeded on attempt {attempt + 1}")
    elif state is State.DONE:
        logger.debug(f"Exit from {request.method} request to {url} with an error")
