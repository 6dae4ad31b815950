"""Guarded read-modify-write for aggregate records.

Every mutation follows the same shape: hold the per-record guard, load the
aggregate, change it, save it. The guard serializes writers inside this
process; across processes, Protean's aggregate ``_version`` check rejects a
save that was computed from a stale read, and that rejection surfaces as
``StaleRecordError`` so the caller's retry policy can reload and try again.
"""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain
from protean.utils.reflection import id_field

from reconciliation.exceptions import StaleRecordError

logger = structlog.get_logger(__name__)


class KeyedMutex:
    """Blocking mutual exclusion per key; idle keys are dropped from memory."""

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._mutex:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._mutex:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)


_record_guard = KeyedMutex()


@contextmanager
def guarded(aggregate_cls: type, identifier) -> Iterator[None]:
    """Serialize read-modify-write cycles on one record within this process."""
    with _record_guard.hold((aggregate_cls.__name__, str(identifier))):
        yield


def save(aggregate) -> None:
    """Persist an aggregate, translating a lost version race into ``StaleRecordError``."""
    repo = current_domain.repository_for(type(aggregate))
    try:
        repo.add(aggregate)
    except ExpectedVersionError as exc:
        name = type(aggregate).__name__
        identifier = getattr(aggregate, id_field(aggregate).field_name)
        logger.warning("Stale write rejected", aggregate=name, identifier=str(identifier), error=str(exc))
        raise StaleRecordError(f"{name} {identifier} was modified concurrently") from exc
