"""
Infrastructure-specific retry helpers, providing exponential backoff for
network operations with a pluggable error classifier.
"""

import dataclasses
import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..application.exceptions import PostalRegistryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorClassifier = Callable[[BaseException], bool]


@dataclasses.dataclass(frozen=True)
class BackoffPolicy:
    """
    How many times to retry and how long to wait in between.

    The wait before retry ``n`` (0-based) is ``min(base * 2**n, cap)``.
    """

    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        return min(self.base_delay * 2 ** retry_number, self.max_delay)


def is_retryable(error: BaseException) -> bool:
    """
    Classifies an error as transient (worth repeating) or fatal.

    Connection refused/reset, timeouts, DNS failures and HTTP 5xx responses
    are transient. Everything else, including HTTP 4xx, is fatal.
    """
    if isinstance(error, PostalRegistryError):
        return error.retryable
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(
        error,
        (
            httpx.NetworkError,
            httpx.TimeoutException,
            httpx.RemoteProtocolError,
            ConnectionError,
            TimeoutError,
        ),
    )


def _log_before_retry(retry_state):
    """Log the retry attempt with details about the exception and wait time."""
    exception = retry_state.outcome.exception()
    next_attempt_in = retry_state.next_action.sleep
    name = getattr(retry_state.fn, "__name__", "operation")
    logger.warning(
        f"Retrying {name} in {next_attempt_in:.2f}s due to "
        f"{type(exception).__name__}: {exception} "
        f"(attempt {retry_state.attempt_number})..."
    )


def build_retrying(
    policy: BackoffPolicy, classifier: ErrorClassifier = is_retryable
) -> AsyncRetrying:
    """Builds a tenacity controller that follows a backoff policy."""
    return AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay, max=policy.max_delay, exp_base=2
        ),
        retry=retry_if_exception(classifier),
        before_sleep=_log_before_retry,
        reraise=True,
    )


async def call_with_backoff(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    policy: BackoffPolicy,
    classifier: ErrorClassifier = is_retryable,
    **kwargs: Any,
) -> T:
    """
    Runs an async operation, repeating it while it fails with transient errors.

    Args:
        operation: The coroutine function to run.
        policy: Attempt budget and delay schedule.
        classifier: Decides whether a raised error is worth retrying.

    Returns:
        Whatever the operation returns on its first successful attempt.

    Raises:
        Exception: A fatal error on its first occurrence, or the last
            transient error once ``policy.max_attempts`` is exhausted.
    """
    retrying = build_retrying(policy, classifier)
    return await retrying(operation, *args, **kwargs)


def retry_with_backoff(
    policy: BackoffPolicy, classifier: ErrorClassifier = is_retryable
):
    """Decorator form of :func:`call_with_backoff`."""

    def decorator(operation):
        @functools.wraps(operation)
        async def wrapper(*args, **kwargs):
            return await call_with_backoff(
                operation, *args, policy=policy, classifier=classifier, **kwargs
            )

        return wrapper

    return decorator
