"""Start-up retries.

Only the cursor table creation before the first poll is retried. Inside a
cycle a failed blob simply keeps its cursor and the next poll reads it again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

import tenacity

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "retry_operation"]

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """How often and how patiently a start-up call is retried.

    The wait doubles from ``backoff_seconds`` after each failure, plus up to
    half of ``backoff_seconds`` of random jitter when ``jitter`` is set.
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    jitter: bool = True
    retry_exceptions: Tuple[Type[BaseException], ...] = (Exception,)

    @classmethod
    def none(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    @classmethod
    def default(cls) -> "RetryConfig":
        return cls()


def retry_operation(
    operation: Callable[[], T],
    config: RetryConfig,
    operation_name: str = "operation",
) -> T:
    """Call ``operation`` until it succeeds or ``config.max_attempts`` is used up.

    The last exception is re-raised unchanged.

    Example:
        retry_operation(store.ensure_table, RetryConfig.default(), "create cursor table")
    """
    wait = tenacity.wait_exponential(multiplier=config.backoff_seconds, min=config.backoff_seconds)
    if config.jitter:
        wait = wait + tenacity.wait_random(0, config.backoff_seconds * 0.5)

    def log_retry(retry_state: tenacity.RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=wait,
        retry=tenacity.retry_if_exception_type(config.retry_exceptions),
        before_sleep=log_retry,
        reraise=True,
    )

    try:
        return retryer(operation)
    except Exception:
        logger.error("%s failed after %d attempt(s)", operation_name, config.max_attempts)
        raise
