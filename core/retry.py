"""
Exponential backoff retry for Socrata requests.

Only rate limiting (429), server errors (5xx) and network failures without
a status code are retried. Any other 4xx means the query itself is wrong and
fails on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import requests
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from core.errors import TransientFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff tuning.

    delay(attempt) = min(base_delay * backoff_factor ** attempt, max_delay),
    perturbed by +/- jitter_fraction of itself. Delays are in seconds.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter_fraction: float = 0.1


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an exception, if any."""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status


def is_retryable(exc: BaseException) -> bool:
    status = status_code_of(exc)
    if status is not None:
        return status == 429 or 500 <= status < 600
    return isinstance(
        exc,
        (TransientFailure, requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError),
    )


def backoff_delay(attempt: int, policy: RetryPolicy, rng: Callable[[float, float], float] = random.uniform) -> float:
    """Delay before retrying after failed attempt number ``attempt`` (0-based)."""
    delay = min(policy.base_delay * policy.backoff_factor ** attempt, policy.max_delay)
    jitter = delay * policy.jitter_fraction * rng(-1.0, 1.0)
    return max(0.0, delay + jitter)


def _log_retry(policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"Request failed (attempt {state.attempt_number}/{policy.max_attempts}), "
            f"retrying in {delay:.2f}s... status={status_code_of(exc)} error={exc}"
        )
    return log


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[float, float], float] = random.uniform,
) -> Any:
    """
    Run ``operation`` with exponential backoff.

    Args:
        operation: Zero-argument coroutine function performing one attempt
        policy: Backoff tuning (defaults to RetryPolicy())
        sleep: Awaitable sleep used between attempts
        rng: Uniform random source for jitter

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error immediately.
    """
    policy = policy or RetryPolicy()

    def wait(state: RetryCallState) -> float:
        return backoff_delay(state.attempt_number - 1, policy, rng)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry(policy),
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)
