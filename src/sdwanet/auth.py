r"""Contain the login handshake of the vManage controller."""

from __future__ import annotations

__all__ = ["login"]

import logging
from itertools import count
from typing import TYPE_CHECKING, Any

import httpx

from sdwanet.backoff import backoff
from sdwanet.config import LOGIN_PATH, TOKEN_PATH
from sdwanet.exceptions import (
    AuthenticationTransportError,
    InvalidCredentialsError,
    RequestCancelledError,
)
from sdwanet.utils import join_url

if TYPE_CHECKING:
    import threading

    from sdwanet.session import Session

logger: logging.Logger = logging.getLogger(__name__)


def login(
    client: httpx.Client, session: Session, cancel_event: threading.Event | None = None
) -> str:
    r"""Log in to the controller and return a fresh token.

    The handshake posts the credentials as a form to
    ``/j_security_check``. The controller answers 200 with an empty body
    on success and 200 with a login page when the credentials are
    rejected; the latter is retried with backoff because the controller
    also rejects logins while it is busy. The token is then read from
    ``/dataservice/client/token``. Any other failure is fatal and not
    retried.

    The session cookie set by the login is kept by the cookie jar of
    ``client``.

    Args:
        client: The HTTP client used to talk to the controller.
        session: The session holding the credentials and retry policy.
        cancel_event: An optional event interrupting the backoff.

    Returns:
        The token to send in the ``X-XSRF-TOKEN`` header.

    Raises:
        InvalidCredentialsError: If the credentials are still rejected
            after all retries.
        AuthenticationTransportError: If an endpoint cannot be reached or
            answers with an unexpected status or an empty token.
        RequestCancelledError: If ``cancel_event`` is set while waiting.
    """
    login_url = join_url(session.url, LOGIN_PATH)
    form = {"j_username": session.username, "j_password": session.password}
    for attempt in count():
        logger.debug(f"POST {login_url} (login attempt {attempt + 1})")
        response = _send(client, "POST", login_url, data=form)
        if response.status_code != 200:
            logger.error(f"Authentication failed: status code {response.status_code}")
            raise AuthenticationTransportError(
                method="POST",
                url=login_url,
                message=f"authentication failed, status code: {response.status_code}",
                status_code=response.status_code,
                response=response,
            )
        if not response.content:
            break
        if not backoff(attempt, session.policy, cancel_event):
            logger.error("Authentication failed: invalid credentials")
            raise InvalidCredentialsError(
                method="POST",
                url=login_url,
                message=(
                    "authentication failed, invalid credentials "
                    f"({session.policy.max_retries + 1} attempts)"
                ),
                status_code=response.status_code,
                response=response,
            )
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError(
                method="POST", url=login_url, message=f"login to {login_url} was cancelled"
            )
        logger.warning(f"Authentication rejected, retrying (attempt {attempt + 1})")

    return _fetch_token(client, join_url(session.url, TOKEN_PATH))


def _fetch_token(client: httpx.Client, token_url: str) -> str:
    response = _send(client, "GET", token_url)
    if response.status_code != 200:
        logger.error(f"Token retrieval failed: status code {response.status_code}")
        raise AuthenticationTransportError(
            method="GET",
            url=token_url,
            message=(
                f"authentication failed, token retrieval, status code: {response.status_code}"
            ),
            status_code=response.status_code,
            response=response,
        )
    token = response.text
    if not token:
        logger.error("Token retrieval failed: no token in payload")
        raise AuthenticationTransportError(
            method="GET",
            url=token_url,
            message="authentication failed, no token in payload",
            status_code=response.status_code,
            response=response,
        )
    logger.debug("Authentication successful")
    return token


def _send(client: httpx.Client, method: str, url: str, **kwargs: Any) -> httpx.Response:
    try:
        return client.request(method, url, **kwargs)
    except httpx.RequestError as exc:
        logger.error(f"{method} {url} failed: {exc}")
        raise AuthenticationTransportError(
            method=method,
            url=url,
            message=f"authentication failed, {method} {url}: {exc}",
            cause=exc,
        ) from exc
