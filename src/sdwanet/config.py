r"""Contain the default configurations and the retry policy used to talk
to a vManage controller."""

from __future__ import annotations

__all__ = [
    "API_PREFIX",
    "DEFAULT_BACKOFF_DELAY_FACTOR",
    "DEFAULT_BACKOFF_MAX_DELAY",
    "DEFAULT_BACKOFF_MIN_DELAY",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_AFTER",
    "DEFAULT_TIMEOUT",
    "LOGIN_PATH",
    "RETRY_STATUS_CODES",
    "TOKEN_HEADER",
    "TOKEN_PATH",
    "RetryPolicy",
]

from dataclasses import dataclass

from sdwanet.utils import validate_retry_params

DEFAULT_TIMEOUT = 60.0

# Constants for retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_MIN_DELAY = 2.0
DEFAULT_BACKOFF_MAX_DELAY = 60.0
DEFAULT_BACKOFF_DELAY_FACTOR = 3.0
# Wait used for a 429 response without Retry-After header
DEFAULT_RETRY_AFTER = 15.0
RETRY_STATUS_CODES = (408, 429, *range(500, 600))

# vManage endpoints
API_PREFIX = "/dataservice"
LOGIN_PATH = "/j_security_check"
TOKEN_PATH = "/dataservice/client/token"
TOKEN_HEADER = "X-XSRF-TOKEN"


@dataclass(frozen=True)
class RetryPolicy:
    r"""Bound the retry loops of the authenticator and of the request
    executor.

    Both loops share the same policy but keep separate attempt counters.

    Args:
        max_retries: Maximum number of retries after the first attempt.
            Must be >= 0.
        backoff_min_delay: Lower bound of the backoff delay in seconds.
            Must be >= 0.
        backoff_max_delay: Upper bound of the backoff delay in seconds.
            Must be >= ``backoff_min_delay``.
        backoff_delay_factor: Growth factor of the exponential backoff.
            Must be >= 1.

    Raises:
        ValueError: If one of the values is out of range.

    Example:
        ```pycon
        >>> from sdwanet.config import RetryPolicy
        >>> RetryPolicy(max_retries=5, backoff_min_delay=1.0)
        RetryPolicy(max_retries=5, backoff_min_delay=1.0, backoff_max_delay=60.0, backoff_delay_factor=3.0)

        ```
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_min_delay: float = DEFAULT_BACKOFF_MIN_DELAY
    backoff_max_delay: float = DEFAULT_BACKOFF_MAX_DELAY
    backoff_delay_factor: float = DEFAULT_BACKOFF_DELAY_FACTOR

    def __post_init__(self) -> None:
        validate_retry_params(
            max_retries=self.max_retries,
            backoff_min_delay=self.backoff_min_delay,
            backoff_max_delay=self.backoff_max_delay,
            backoff_delay_factor=self.backoff_delay_factor,
        )
