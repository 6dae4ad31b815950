"""Bounded retry with exponential backoff.

One ``RetryPolicy`` abstraction is shared by every path that retries:
event application (via ``RetryOrchestrator``), stock writes that lose a
version race, and email dispatch. The policy owns the attempt budget, the
backoff function, and the predicate deciding which errors are worth another
attempt.

Delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TypeVar

import structlog

from reconciliation.exceptions import ProcessingError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def exponential_backoff(base_delay: float, attempt: int, error: BaseException | None = None) -> float:  # noqa: ARG001
    return base_delay * 2 ** (attempt - 1)


def _always(error: BaseException) -> bool:  # noqa: ARG001
    return True


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff: Callable[[float, int, BaseException | None], float] = exponential_backoff
    retryable: Callable[[BaseException], bool] = _always
    retry_on: tuple[type[BaseException], ...] = field(default=(Exception,))

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.backoff(self.base_delay, attempt, error)

    def run(
        self,
        fn: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        operation: str = "operation",
        **log_context,
    ) -> T:
        """Call ``fn`` until it succeeds or the attempt budget is spent.

        The last error is re-raised unchanged on exhaustion, and immediately
        for errors the ``retryable`` predicate rejects.
        """
        attempt = 1
        while True:
            try:
                return fn()
            except self.retry_on as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    raise
                delay = self.delay_for(attempt, exc)
                logger.warning(
                    "Attempt failed, backing off",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay=delay,
                    error=str(exc),
                    **log_context,
                )
                sleep(delay)
                attempt += 1


class RetryOrchestrator:
    """Applies one gateway event with bounded retries and commits it to the ledger.

    The ledger entry is written exactly once, after the first successful
    attempt. When every attempt fails the event stays unrecorded: the
    gateway delivers at least once, so its next redelivery is the retry of
    last resort.
    """

    def __init__(self, ledger, policy: RetryPolicy | None = None, sleep: Callable[[float], None] = time.sleep):
        self.ledger = ledger
        self.policy = policy or RetryPolicy()
        self.sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    def run(self, event, apply: Callable[[object], T], received_at: datetime | None = None) -> T:
        attempts = 0

        def _attempt():
            nonlocal attempts
            attempts += 1
            return apply(event)

        try:
            result = self.policy.run(
                _attempt,
                sleep=self.sleep,
                operation="apply_event",
                event_id=event.id,
                event_type=event.type,
            )
        except Exception as exc:
            logger.error(
                "Event application failed after all attempts, leaving it unrecorded",
                event_id=event.id,
                event_type=event.type,
                attempts=attempts,
                error=str(exc),
            )
            raise ProcessingError(
                f"Event {event.id} failed after {attempts} attempts: {exc}",
                event_id=event.id,
                attempts=attempts,
            ) from exc

        self.ledger.record(event.id, event.type, received_at or datetime.now(UTC))
        if attempts > 1:
            logger.info("Event applied after retries", event_id=event.id, attempts=attempts)
        return result
