"""Correlation lock — best-effort single-flight gate per payment intent.

Events about the same payment intent can arrive together (``succeeded`` and
``checkout.session.completed`` are often delivered within milliseconds of each
other). Only one of them is applied at a time: a second arrival waits once
for a bounded interval, re-checks, and gives up if the key is still held.
The engine then defers that event, relying on the gateway to redeliver it.

The lock is not reentrant, lives in process memory only and is not shared
between running instances.
"""

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LockHolder:
    owner_id: str
    acquired_at: float


class CorrelationLock:
    def __init__(
        self,
        wait_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.wait_seconds = wait_seconds
        self.sleep = sleep
        self.clock = clock
        self._mutex = threading.Lock()
        self._held: dict[str, LockHolder] = {}

    def _claim(self, key: str, owner_id: str) -> bool:
        with self._mutex:
            if key in self._held:
                return False
            self._held[key] = LockHolder(owner_id=owner_id, acquired_at=self.clock())
            return True

    def try_acquire(self, key: str, owner_id: str) -> bool:
        if self._claim(key, owner_id):
            return True

        holder = self.holder(key)
        logger.info(
            "Correlation key busy, waiting",
            key=key,
            owner_id=owner_id,
            held_by=holder.owner_id if holder else None,
            wait_seconds=self.wait_seconds,
        )
        self.sleep(self.wait_seconds)

        if self._claim(key, owner_id):
            return True

        logger.warning("Correlation key still busy, giving up", key=key, owner_id=owner_id)
        return False

    def release(self, key: str, owner_id: str) -> bool:
        """Release ``key`` if ``owner_id`` holds it; returns whether anything was released."""
        with self._mutex:
            holder = self._held.get(key)
            if holder is None or holder.owner_id != owner_id:
                return False
            del self._held[key]
            return True

    def holder(self, key: str) -> LockHolder | None:
        with self._mutex:
            return self._held.get(key)

    @contextmanager
    def hold(self, key: str, owner_id: str) -> Iterator[bool]:
        """Yield whether the key was acquired; releases on exit when it was."""
        acquired = self.try_acquire(key, owner_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key, owner_id)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._held)
