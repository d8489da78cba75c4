from __future__ import annotations

import threading
from typing import TYPE_CHECKING
from unittest.mock import Mock, patch

import httpx
import pytest

from sdwanet import RetryPolicy, Session

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

TEST_URL = "https://vmanage.example.com"


@pytest.fixture
def mock_sleep() -> Generator[Mock, None, None]:
    """Patch time.sleep to make tests run faster."""
    with patch("time.sleep", return_value=None) as mock:
        yield mock


@pytest.fixture(autouse=True)
def mock_random() -> Generator[Mock, None, None]:
    """Patch random.uniform to make the backoff jitter deterministic.

    With a jitter of 1.0, the backoff delay is exactly the clamped
    exponential value.
    """
    with patch("sdwanet.backoff.random.uniform", return_value=1.0) as mock:
        yield mock


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=3, backoff_min_delay=2.0, backoff_max_delay=60.0, backoff_delay_factor=3.0
    )


@pytest.fixture
def session(policy: RetryPolicy) -> Session:
    return Session(TEST_URL, "admin", "secret", policy)


@pytest.fixture
def authenticated_session(session: Session) -> Session:
    session.ensure_authenticated(lambda _: "tok")
    return session


@pytest.fixture
def make_http_client() -> Generator[Callable[..., httpx.Client], None, None]:
    """Return a factory of httpx clients answering with a handler."""
    clients: list[httpx.Client] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


class CountingLock:
    """Lock reporting how many threads reached it, to synchronize tests
    on callers queued behind the authentication lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cond = threading.Condition()
        self.arrived = 0

    def __enter__(self) -> CountingLock:
        with self._cond:
            self.arrived += 1
            self._cond.notify_all()
        self._lock.acquire()
        return self

    def __exit__(self, *args: object) -> None:
        self._lock.release()

    def wait_for_arrivals(self, count: int, timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self.arrived >= count, timeout=timeout)


@pytest.fixture
def counting_lock() -> CountingLock:
    return CountingLock()
