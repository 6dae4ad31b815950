"""Reconciliation bounded context — payment gateway notifications applied to orders.

Consumes the payment gateway's webhook stream and applies every notification
exactly once: deduplicates by event id, serializes events per payment intent,
drives the order status state machine, reconciles stock counters, and sends
the transactional emails (order confirmation, cash-voucher notice).
"""

import structlog
from protean.domain import Domain

from reconciliation.utils.logging import configure_logging

# Configure logging for the application
configure_logging()

logger = structlog.get_logger(__name__)

# Domain Composition Root
reconciliation = Domain(name="reconciliation")
