r"""Contain the session state shared by every request of one client."""

from __future__ import annotations

__all__ = ["Session"]

import logging
import threading
from typing import TYPE_CHECKING

from sdwanet.config import RetryPolicy
from sdwanet.exceptions import AuthenticationError

if TYPE_CHECKING:
    from collections.abc import Callable

logger: logging.Logger = logging.getLogger(__name__)


class Session:
    r"""Hold the credentials, the retry policy and the current token.

    The token is the only mutable state shared between threads. It is
    written only under the authentication lock, so concurrent callers
    trigger a single login.

    Args:
        url: The controller base URL, e.g. ``https://10.0.0.1:8443``.
        username: The controller username.
        password: The controller password.
        policy: The retry policy. The default policy is used if None.

    Example:
        ```pycon
        >>> from sdwanet import Session
        >>> session = Session("https://vmanage", "admin", "secret")
        >>> session.token
        ''

        ```
    """

    def __init__(
        self, url: str, username: str, password: str, policy: RetryPolicy | None = None
    ) -> None:
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.policy = policy or RetryPolicy()
        self._token = ""
        self._lock = threading.Lock()
        # Number of completed logins and the error of the last one
        self._generation = 0
        self._last_error: AuthenticationError | None = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}(url={self.url!r}, username={self.username!r}, "
            f"authenticated={bool(self._token)})"
        )

    @property
    def token(self) -> str:
        r"""The current token, or an empty string before the first
        login."""
        return self._token

    def ensure_authenticated(self, authenticate: Callable[[Session], str]) -> None:
        r"""Log in if no token is held.

        The lock is held for the whole login so that callers arriving
        meanwhile wait and then observe the new token, or the failure
        of that login, instead of starting a second login. The lock is
        released whatever the outcome. A failure is not cached: the
        next call that finds no login in flight tries again.

        Only an ``AuthenticationError`` is shared with the waiting
        callers, each of them receiving its own copy chained to the
        original error. Any other error, e.g. the cancellation of the
        caller running the login, lets the next waiting caller run its
        own login.

        A waiting caller cannot be cancelled: it blocks until the login
        in flight completes, including its backoff waits.

        Args:
            authenticate: The login handshake. It receives this session
                and returns the new token.

        Raises:
            AuthenticationError: If the login handshake fails.
        """
        generation = self._generation
        with self._lock:
            if self._token:
                return
            if self._generation != generation and self._last_error is not None:
                # A login failed while this caller was waiting on the lock.
                error = self._last_error
                raise _copy_error(error) from error
            logger.debug(f"No token held for {self.url}, authenticating")
            try:
                self._token = authenticate(self)
                self._last_error = None
            except AuthenticationError as exc:
                self._last_error = exc
                raise
            except Exception:
                self._last_error = None
                raise
            finally:
                self._generation += 1


def _copy_error(error: AuthenticationError) -> AuthenticationError:
    return type(error)(
        method=error.method,
        url=error.url,
        message=str(error),
        status_code=error.status_code,
        response=error.response,
        result=error.result,
    )
