"""PaymentIntentRecord aggregate — local snapshot of a gateway payment intent.

Keyed by the gateway transaction id. Webhooks for the same intent arrive
many times over its life, so ``observe()`` only changes the record when a
tracked field actually moved; callers skip the write otherwise.
"""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, Integer, String, Text

from reconciliation.domain import reconciliation

_TRACKED_FIELDS = ("status", "amount", "currency", "payment_method", "last4", "voucher_url", "payment_status")


@reconciliation.aggregate
class PaymentIntentRecord:
    transaction_id = String(identifier=True, required=True, max_length=255)
    status = String(max_length=50)
    amount = Integer()  # Minor units
    currency = String(max_length=3)
    payment_method = String(max_length=50)
    last4 = String(max_length=4)
    voucher_url = String(max_length=2000)
    payment_status = String(max_length=50)
    details = Text()  # JSON snapshot of the last gateway object seen
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, transaction_id: str, **values):
        now = datetime.now(UTC)
        record = cls(transaction_id=transaction_id, created_at=now, updated_at=now)
        record.observe(**values)
        return record

    def observe(self, details: dict | None = None, **values) -> bool:
        """Apply newly observed values; returns whether the record needs saving.

        ``None`` means "not observed" and never overwrites a known value. The
        first snapshot of ``details`` counts as a change.
        """
        changed = False
        for name in _TRACKED_FIELDS:
            value = values.get(name)
            if value is not None and getattr(self, name) != value:
                setattr(self, name, value)
                changed = True

        if details is not None and (changed or self.details is None):
            self.details = json.dumps(details, sort_keys=True, default=str)
            changed = True

        if changed:
            self.updated_at = datetime.now(UTC)
        return changed

    @property
    def snapshot(self) -> dict:
        return json.loads(self.details) if self.details else {}
