r"""Contain utility functions shared by the authenticator and the request
executor."""

from __future__ import annotations

__all__ = [
    "get_retry_after_delay",
    "join_url",
    "parse_retry_after",
    "validate_retry_params",
    "validate_timeout",
]

import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

logger: logging.Logger = logging.getLogger(__name__)


def validate_retry_params(
    max_retries: int,
    backoff_min_delay: float,
    backoff_max_delay: float,
    backoff_delay_factor: float,
) -> None:
    """Validate retry parameters.

    Args:
        max_retries: Maximum number of retry attempts for failed requests.
            Must be >= 0.
        backoff_min_delay: Minimum delay in seconds between two attempts.
            Must be >= 0.
        backoff_max_delay: Maximum delay in seconds between two attempts.
            Must be >= backoff_min_delay.
        backoff_delay_factor: Factor of the exponential backoff.
            Must be >= 1.

    Raises:
        ValueError: If one of the parameters is out of range.

    Example:
        ```pycon
        >>> from sdwanet.utils import validate_retry_params
        >>> validate_retry_params(3, 2.0, 60.0, 3.0)
        >>> validate_retry_params(-1, 2.0, 60.0, 3.0)  # doctest: +SKIP

        ```
    """
    if max_retries < 0:
        msg = f"max_retries must be >= 0, got {max_retries}"
        raise ValueError(msg)
    if backoff_min_delay < 0:
        msg = f"backoff_min_delay must be >= 0, got {backoff_min_delay}"
        raise ValueError(msg)
    if backoff_max_delay < backoff_min_delay:
        msg = (
            f"backoff_max_delay must be >= backoff_min_delay ({backoff_min_delay}), "
            f"got {backoff_max_delay}"
        )
        raise ValueError(msg)
    if backoff_delay_factor < 1:
        msg = f"backoff_delay_factor must be >= 1, got {backoff_delay_factor}"
        raise ValueError(msg)


def validate_timeout(timeout: float | None) -> None:
    """Validate the per-request timeout.

    Args:
        timeout: Maximum seconds to wait for the server response, or
            ``None`` to disable the timeout.

    Raises:
        ValueError: If timeout is non-positive.
    """
    if timeout is not None and timeout <= 0:
        msg = f"timeout must be > 0, got {timeout}"
        raise ValueError(msg)


def parse_retry_after(retry_after_header: str | None) -> float | None:
    """Parse the Retry-After header value from an HTTP response.

    The Retry-After header can be specified in two formats:
    1. A number of seconds to wait
    2. An HTTP-date in RFC 5322 format

    Args:
        retry_after_header: The value of the Retry-After header, or None
            if the header is not present.

    Returns:
        The number of seconds to wait before retrying, or None if the
        header is absent or cannot be parsed.

    Example:
        ```pycon
        >>> from sdwanet.utils import parse_retry_after
        >>> parse_retry_after("120")
        120.0
        >>> parse_retry_after("0")
        0.0
        >>> parse_retry_after(None)
        >>> parse_retry_after("invalid")
        >>> parse_retry_after("inf")

        ```
    """
    if retry_after_header is None:
        return None

    try:
        seconds = float(retry_after_header)
    except ValueError:
        pass
    else:
        if math.isfinite(seconds):
            return max(0.0, seconds)
        logger.debug(f"Ignoring non-finite Retry-After header: {retry_after_header!r}")
        return None

    try:
        retry_date: datetime = parsedate_to_datetime(retry_after_header)
        now = datetime.now(timezone.utc)
        delta_seconds = (retry_date - now).total_seconds()
        return max(0.0, delta_seconds)
    except (ValueError, TypeError, OverflowError):
        logger.debug(f"Failed to parse Retry-After header: {retry_after_header!r}")
        return None


def get_retry_after_delay(retry_after_header: str | None, default: float) -> float:
    """Return how long to wait after a rate-limited (429) response.

    A zero wait is turned into one second so a rate-limited client
    never hammers the controller. A missing or unparsable header
    falls back to ``default``.

    Args:
        retry_after_header: The value of the Retry-After header, or None.
        default: The wait in seconds used when the header gives no usable
            value.

    Returns:
        The number of seconds to wait before the next attempt.

    Example:
        ```pycon
        >>> from sdwanet.utils import get_retry_after_delay
        >>> get_retry_after_delay("5", default=15.0)
        5.0
        >>> get_retry_after_delay("0", default=15.0)
        1.0
        >>> get_retry_after_delay(None, default=15.0)
        15.0

        ```
    """
    delay = parse_retry_after(retry_after_header)
    if delay is None:
        return default
    if delay == 0:
        return 1.0
    return delay


def join_url(base_url: str, path: str) -> str:
    """Join the controller base URL and a request path.

    Example:
        ```pycon
        >>> from sdwanet.utils import join_url
        >>> join_url("https://10.0.0.1/", "/dataservice/device")
        'https://10.0.0.1/dataservice/device'

        ```
    """
    return base_url.rstrip("/") + "/" + path.lstrip("/")
