"""Idempotent upsert of PaymentIntentRecord."""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from reconciliation.payment_intent.payment_intent import PaymentIntentRecord
from reconciliation.records import guarded, save

logger = structlog.get_logger(__name__)


def upsert_payment_intent(transaction_id: str, details: dict | None = None, **values) -> tuple[PaymentIntentRecord, bool]:
    """Create or update the record for ``transaction_id``; returns ``(record, written)``."""
    repo = current_domain.repository_for(PaymentIntentRecord)

    with guarded(PaymentIntentRecord, transaction_id):
        try:
            record = repo.get(transaction_id)
        except ObjectNotFoundError:
            record = PaymentIntentRecord.create(transaction_id, details=details, **values)
            save(record)
            logger.info("Payment intent recorded", transaction_id=transaction_id, status=record.status)
            return record, True

        if not record.observe(details=details, **values):
            return record, False

        save(record)
        logger.info("Payment intent updated", transaction_id=transaction_id, status=record.status)
        return record, True
