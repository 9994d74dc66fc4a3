"""Retry-on-conflict for version-checked writes.

The one retry primitive used for every write in a reconcile: re-run the
whole read-modify-write when the store reports a version conflict, with
exponential backoff, up to a fixed number of attempts. Anything other than a
conflict fails immediately.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from webhook_ca.metrics import ca_metrics
from webhook_ca.repository.store import ConflictError

logger = logging.getLogger(__name__)
T = TypeVar("T")


class ConflictExhaustedError(Exception):
    """Raised when a write still conflicts after the last allowed attempt."""

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation}: still conflicting after {attempts} attempts")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule shared by all conflict retry loops.

    Delay before retry ``n`` is ``base_delay * factor ** (n - 1)`` capped at
    ``max_delay``, plus up to ``jitter * base_delay`` of random noise.
    """

    max_attempts: int = 4
    base_delay: float = 0.01
    factor: float = 5.0
    jitter: float = 0.1
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.CONFLICT_RETRY_ATTEMPTS,
            base_delay=settings.CONFLICT_RETRY_BASE_DELAY_SECONDS,
            factor=settings.CONFLICT_RETRY_FACTOR,
            jitter=settings.CONFLICT_RETRY_JITTER,
            max_delay=settings.CONFLICT_RETRY_MAX_DELAY_SECONDS,
        )


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> T:
    """Run ``operation`` until it completes without a version conflict.

    ``operation`` must perform the full read-modify-write so every attempt
    starts from the latest stored version.

    Raises:
        ConflictExhaustedError: If every attempt hit a conflict.
        Exception: Any non-conflict error from ``operation``, unchanged.
    """

    def _before_sleep(retry_state: RetryCallState) -> None:
        ca_metrics.record_conflict_retry(description)
        log.info(
            "conflict_retry",
            extra={
                "operation": description,
                "attempt": retry_state.attempt_number,
                "delay_seconds": retry_state.next_action.sleep if retry_state.next_action else None,
            },
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay, exp_base=policy.factor, max=policy.max_delay
        )
        + wait_random(0, policy.base_delay * policy.jitter),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=_before_sleep,
    )

    try:
        return await retrying(operation)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        log.warning(
            "conflict_retries_exhausted",
            extra={"operation": description, "attempts": policy.max_attempts},
        )
        raise ConflictExhaustedError(description, policy.max_attempts) from last_error
