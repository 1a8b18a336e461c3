"""
Exponential backoff for remote calls.

Every call made against a replica goes through call_with_backoff(). The
delay starts small, doubles after each retryable failure and is capped,
but the number of attempts is unbounded by default: giving up in the
middle of a multi-replica mutation would leave the accounts diverged.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from googleapiclient.errors import HttpError

# Backoff defaults (seconds)
DEFAULT_INITIAL_DELAY = 0.5
DEFAULT_MAX_DELAY = 30.0
DEFAULT_MULTIPLIER = 2.0

# HTTP statuses that are always worth retrying
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

# 403 reasons that mean "slow down" rather than "forbidden"
RATE_LIMIT_REASONS = frozenset(
    {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay schedule for retried calls.

    Attributes:
        initial_delay: Delay before the first retry
        multiplier: Factor applied to the delay after each retry
        max_delay: Ceiling for the delay
        max_attempts: Total attempts before giving up, None for no limit
    """

    initial_delay: float = DEFAULT_INITIAL_DELAY
    multiplier: float = DEFAULT_MULTIPLIER
    max_delay: float = DEFAULT_MAX_DELAY
    max_attempts: int | None = None

    def delays(self):
        """Yield the successive sleep durations of this policy."""
        delay = self.initial_delay
        while True:
            yield delay
            delay = min(delay * self.multiplier, self.max_delay)


DEFAULT_POLICY = BackoffPolicy()


def http_status(error: BaseException) -> int | None:
    """Return the HTTP status of an HttpError, or None for anything else."""
    if isinstance(error, HttpError):
        return int(error.resp.status)
    return None


def _error_reasons(error: HttpError) -> set[str]:
    try:
        details = error.error_details
    except AttributeError:
        return set()
    if not isinstance(details, list):
        return set()
    return {d.get("reason", "") for d in details if isinstance(d, dict)}


def is_transient_http_error(error: BaseException) -> bool:
    """
    Check whether an error is a transient API failure.

    Rate limiting (429, or 403 with a quota reason) and server-side
    errors are transient. Conflicts (409) are not retried here because
    retrying them blindly would reuse a stale revision token.
    """
    status = http_status(error)
    if status is None:
        return False
    if status in RETRYABLE_STATUSES or status >= 500:
        return True
    if status == 403:
        return bool(_error_reasons(error) & RATE_LIMIT_REASONS)
    return False


def is_revision_conflict(error: BaseException) -> bool:
    """
    Check whether an error means the etag sent with a write is stale.

    Groups answer 409; contacts answer 400 with a failedPrecondition reason.
    """
    status = http_status(error)
    if status in (409, 412):
        return True
    if status == 400 and isinstance(error, HttpError):
        content = error.content if isinstance(error.content, bytes) else b""
        return (
            "failedPrecondition" in _error_reasons(error)
            or b"FAILED_PRECONDITION" in content
        )
    return False


def call_with_backoff(
    operation: Callable[[], T],
    operation_name: str,
    policy: BackoffPolicy = DEFAULT_POLICY,
    should_retry: Callable[[BaseException], bool] = is_transient_http_error,
    on_retry: Callable[[BaseException], Any] | None = None,
) -> T:
    """
    Execute an operation, retrying with exponential backoff.

    Args:
        operation: Callable to execute
        operation_name: Name for logging purposes
        policy: Delay schedule to follow
        should_retry: Classifier deciding whether a failure is retryable
        on_retry: Called with the failure before each sleep, e.g. to
                  re-read state the next attempt depends on

    Returns:
        Result of the operation

    Raises:
        The first non-retryable failure, or the last failure once
        policy.max_attempts is reached
    """
    attempt = 0
    delays = policy.delays()

    while True:
        attempt += 1
        try:
            return operation()
        except Exception as e:
            if not should_retry(e):
                raise
            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                logger.error(
                    f"{operation_name} still failing after {attempt} attempts: {e}"
                )
                raise

            delay = next(delays)
            logger.warning(
                f"{operation_name} failed ({type(e).__name__}), "
                f"retrying in {delay:.1f}s (attempt {attempt})"
            )
            if on_retry is not None:
                on_retry(e)
            time.sleep(delay)
