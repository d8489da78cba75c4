r"""Contain the jittered exponential backoff used between two attempts."""

from __future__ import annotations

__all__ = ["backoff", "calculate_backoff_delay", "wait"]

import logging
import random
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import threading

    from sdwanet.config import RetryPolicy

logger: logging.Logger = logging.getLogger(__name__)


def calculate_backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    r"""Calculate the delay before the next attempt.

    The exponential value ``min * factor ** attempt`` is clamped to
    ``max``, then jittered between 50% and 100% of its distance to
    ``min``. The returned delay is always in ``[min, max]``.

    Args:
        attempt: The current attempt number (0-indexed).
        policy: The retry policy holding the delay bounds and factor.

    Returns:
        The delay in seconds.

    Example:
        ```pycon
        >>> from sdwanet.backoff import calculate_backoff_delay
        >>> from sdwanet.config import RetryPolicy
        >>> policy = RetryPolicy(backoff_min_delay=2.0, backoff_max_delay=60.0)
        >>> 2.0 <= calculate_backoff_delay(1, policy) <= 6.0
        True

        ```
    """
    min_delay = policy.backoff_min_delay
    try:
        raw = min_delay * policy.backoff_delay_factor**attempt
    except OverflowError:
        raw = policy.backoff_max_delay
    raw = min(raw, policy.backoff_max_delay)
    return min_delay + random.uniform(0.5, 1.0) * (raw - min_delay)  # noqa: S311


def wait(delay: float, cancel_event: threading.Event | None = None) -> None:
    r"""Block the calling thread for ``delay`` seconds.

    When a cancellation event is given, the wait returns as soon as the
    event is set.
    """
    if cancel_event is None:
        time.sleep(delay)
    else:
        cancel_event.wait(delay)


def backoff(
    attempt: int, policy: RetryPolicy, cancel_event: threading.Event | None = None
) -> bool:
    r"""Wait before the next attempt, or signal that retries are
    exhausted.

    Args:
        attempt: The current attempt number (0-indexed).
        policy: The retry policy.
        cancel_event: An optional event interrupting the wait.

    Returns:
        ``False`` without sleeping if ``attempt >= policy.max_retries``,
        otherwise ``True`` after sleeping.
    """
    logger.debug(f"Backoff requested on attempt {attempt}/{policy.max_retries}")
    if attempt >= policy.max_retries:
        return False
    delay = calculate_backoff_delay(attempt, policy)
    logger.debug(f"Waiting {delay:.2f}s before retry")
    wait(delay, cancel_event)
    return True
