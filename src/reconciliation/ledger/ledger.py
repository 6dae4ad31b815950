"""Event ledger — existence check and idempotent insert over ProcessedEvent."""

import threading
from datetime import datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from reconciliation.ledger.processed_event import ProcessedEvent

logger = structlog.get_logger(__name__)


class EventLedger:
    """Durable record of gateway events that have already been applied."""

    def __init__(self) -> None:
        self._write_lock = threading.Lock()

    def exists(self, event_id: str) -> bool:
        try:
            current_domain.repository_for(ProcessedEvent).get(event_id)
        except ObjectNotFoundError:
            return False
        return True

    def record(self, event_id: str, event_type: str, received_at: datetime | None = None) -> None:
        """Insert the ledger row; recording an event twice is a no-op."""
        with self._write_lock:
            if self.exists(event_id):
                logger.info("Event already in ledger, skipping insert", event_id=event_id)
                return

            current_domain.repository_for(ProcessedEvent).add(
                ProcessedEvent.create(
                    event_id=event_id,
                    event_type=event_type,
                    received_at=received_at,
                )
            )
        logger.info("Event recorded in ledger", event_id=event_id, event_type=event_type)

    def recent(self, limit: int = 20) -> list[ProcessedEvent]:
        """Most recently processed events, newest first."""
        return (
            current_domain.repository_for(ProcessedEvent)
            ._dao.query.order_by("-processed_at")
            .limit(limit)
            .all()
            .items
        )
