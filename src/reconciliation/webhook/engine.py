"""Reconciliation engine — one webhook delivery from raw bytes to acknowledgment.

    verify -> ledger check -> correlation lock -> retried apply -> ledger commit -> unlock

The gateway delivers at least once, sometimes twice at the same moment and
sometimes out of order. Exactly-once application rests on three things:

- the ledger, checked before any work and again once the correlation lock
  is held, so a duplicate that waited behind the original is still caught
- the correlation lock, so two events about the same payment intent never
  interleave inside one process
- the retry orchestrator, which writes the ledger entry only after a
  successful application

Every outcome except a bad signature is acknowledged to the gateway the
same way. An event that exhausts its retries stays out of the ledger, so
the gateway's own redelivery becomes the next retry. So does an event that
fails outside the retried application, for instance because the ledger
itself cannot be read or written.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

import structlog

from reconciliation.domain import reconciliation
from reconciliation.exceptions import ProcessingError
from reconciliation.gateway.port import PaymentGateway
from reconciliation.inventory.reconciler import StockReconciler
from reconciliation.ledger.ledger import EventLedger
from reconciliation.notification.dispatcher import NotificationDispatcher
from reconciliation.order.fulfillment import OrderFulfillment
from reconciliation.order.state_machine import OrderStateMachine
from reconciliation.retry import RetryOrchestrator, RetryPolicy
from reconciliation.settings import EngineSettings
from reconciliation.utils.logging import bind_event_context, clear_event_context
from reconciliation.webhook.correlation_lock import CorrelationLock
from reconciliation.webhook.envelope import GatewayEvent
from reconciliation.webhook.handlers import ApplicationResult, EventApplier
from reconciliation.webhook.verifier import EventVerifier

logger = structlog.get_logger(__name__)


class Outcome(Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    DEFERRED = "deferred"
    EXHAUSTED = "exhausted"
    FAILED = "failed"  # Ledger or store unavailable outside the retried application


@dataclass(frozen=True)
class Acknowledgement:
    event_id: str
    event_type: str
    outcome: Outcome
    result: ApplicationResult | None = None
    attempts: int | None = None

    def to_response(self) -> dict:
        """Wire body; the same for every accepted delivery."""
        return {"received": True}


class ReconciliationEngine:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        gateway: PaymentGateway | None = None,
        ledger: EventLedger | None = None,
        lock: CorrelationLock | None = None,
        applier: EventApplier | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings if settings is not None else EngineSettings.from_env()
        self.verifier = EventVerifier(self.settings.webhook_secret, gateway)
        self.ledger = ledger if ledger is not None else EventLedger()
        self.lock = (
            lock
            if lock is not None
            else CorrelationLock(self.settings.correlation_lock_wait_seconds, sleep=sleep, clock=clock)
        )
        self.applier = applier if applier is not None else self._build_applier(gateway, sleep, clock)
        self.orchestrator = RetryOrchestrator(
            self.ledger,
            RetryPolicy(
                max_attempts=self.settings.event_max_attempts,
                base_delay=self.settings.event_retry_base_seconds,
            ),
            sleep=sleep,
        )

    def _build_applier(self, gateway, sleep, clock) -> EventApplier:
        dispatcher = NotificationDispatcher(
            sender=self.settings.email_sender,
            max_attempts=self.settings.email_max_attempts,
            base_delay=self.settings.email_retry_base_seconds,
            voucher_window_seconds=self.settings.voucher_rate_limit_seconds,
            sleep=sleep,
            clock=clock,
        )
        state_machine = OrderStateMachine(StockReconciler(sleep=sleep))
        return EventApplier(OrderFulfillment(state_machine=state_machine, dispatcher=dispatcher, gateway=gateway))

    @property
    def fulfillment(self) -> OrderFulfillment:
        return self.applier.fulfillment

    def handle(self, raw_body: bytes, signature: str | None) -> Acknowledgement:
        """Verify and process one delivery.

        Raises:
            SignatureVerificationError: the delivery is not authentic; nothing was processed.
        """
        received_at = datetime.now(UTC)
        event = self.verifier.verify(raw_body, signature)
        return self.process(event, received_at=received_at)

    def process(self, event: GatewayEvent, received_at: datetime | None = None) -> Acknowledgement:
        received_at = received_at or datetime.now(UTC)
        bind_event_context(event_id=event.id, event_type=event.type)
        try:
            with reconciliation.domain_context():
                return self._process(event, received_at)
        except Exception as exc:
            logger.exception("Event could not be processed, awaiting redelivery", error=str(exc))
            return Acknowledgement(event.id, event.type, Outcome.FAILED)
        finally:
            clear_event_context()

    def _process(self, event: GatewayEvent, received_at: datetime) -> Acknowledgement:
        if self.ledger.exists(event.id):
            logger.info("Duplicate event acknowledged without processing")
            return Acknowledgement(event.id, event.type, Outcome.DUPLICATE)

        key = event.correlation_key
        if key is None:
            return self._apply(event, received_at)

        with self.lock.hold(key, event.id) as acquired:
            if not acquired:
                logger.warning("Event deferred, correlation key busy", correlation_key=key)
                return Acknowledgement(event.id, event.type, Outcome.DEFERRED)

            # A concurrent delivery of this same event may have finished while we waited
            if self.ledger.exists(event.id):
                logger.info("Duplicate event acknowledged after lock wait", correlation_key=key)
                return Acknowledgement(event.id, event.type, Outcome.DUPLICATE)

            return self._apply(event, received_at)

    def _apply(self, event: GatewayEvent, received_at: datetime) -> Acknowledgement:
        try:
            result = self.orchestrator.run(event, self.applier.apply, received_at=received_at)
        except ProcessingError as exc:
            logger.error("Event processing failed, awaiting redelivery", attempts=exc.attempts, error=str(exc))
            return Acknowledgement(event.id, event.type, Outcome.EXHAUSTED, attempts=exc.attempts)

        logger.info("Event processed", handled=result.handled, order_id=result.order_id)
        return Acknowledgement(event.id, event.type, Outcome.PROCESSED, result=result)
