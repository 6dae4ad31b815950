"""ProcessedEvent aggregate — the idempotency ledger row.

One record per gateway event id, written only after the event has been fully
applied. Presence of the record is the sole "already handled" marker, so rows
are never updated or deleted by the engine. The table doubles as an
append-only audit log for operators replaying or debugging webhook traffic.
"""

from datetime import UTC, datetime

from protean.fields import DateTime, String

from reconciliation.domain import reconciliation


@reconciliation.aggregate
class ProcessedEvent:
    event_id = String(identifier=True, required=True, max_length=255)
    event_type = String(required=True, max_length=100)
    received_at = DateTime()
    processed_at = DateTime()

    @classmethod
    def create(cls, event_id, event_type, received_at=None):
        now = datetime.now(UTC)
        return cls(
            event_id=event_id,
            event_type=event_type,
            received_at=received_at or now,
            processed_at=now,
        )
