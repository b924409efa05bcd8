"""Retry policy for transient upstream failures."""

import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from .errors import RateLimitError, TransientUpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(error: BaseException, attempt: int,
                  rate_limit_delay: float = 1.0, timeout_delay: float = 0.5) -> float:
    """Seconds to wait after a transient failure on the given attempt (1-based)."""
    if isinstance(error, RateLimitError):
        return rate_limit_delay * attempt
    if isinstance(error, UpstreamTimeoutError):
        return timeout_delay
    return timeout_delay


def create_retry_strategy(
    max_attempts: int = 2,
    description: str = "upstream call",
    rate_limit_delay: float = 1.0,
    timeout_delay: float = 0.5,
) -> AsyncRetrying:
    """Build the retrying controller used for model and transcription calls.

    Only ``TransientUpstreamError`` is retried; anything else propagates on
    the first attempt. The last transient error is re-raised once attempts
    run out.
    """

    def wait(retry_state: RetryCallState) -> float:
        return backoff_delay(retry_state.outcome.exception(), retry_state.attempt_number,
                             rate_limit_delay, timeout_delay)

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(f"{description} attempt {retry_state.attempt_number} failed "
                       f"({retry_state.outcome.exception()}), retrying in {retry_state.next_action.sleep:.1f}s")

    return AsyncRetrying(
        retry=retry_if_exception_type(TransientUpstreamError),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait,
        before_sleep=log_retry,
        reraise=True,
    )


async def call_with_retries(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    description: str = "upstream call",
    rate_limit_delay: float = 1.0,
    timeout_delay: float = 0.5,
) -> T:
    """Run ``operation`` retrying only on transient upstream errors.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt
        max_attempts: Total number of attempts, including the first
        description: Label used in log messages
        rate_limit_delay: Base backoff for rate limits, multiplied by attempt number
        timeout_delay: Fixed backoff after a timeout

    Returns:
        The operation's result

    Raises:
        TransientUpstreamError: If every attempt failed transiently
        Exception: Any non-transient error, immediately
    """
    retrying = create_retry_strategy(max_attempts, description, rate_limit_delay, timeout_delay)
    try:
        return await retrying(operation)
    except TransientUpstreamError as e:
        attempts = retrying.statistics.get("attempt_number", max_attempts)
        logger.error(f"{description} failed after {attempts} attempts: {e}")
        raise
