"""Event application — what each gateway event type does to local state.

Routing table:

    payment_intent.created                     record the intent
    payment_intent.processing                  record; order -> processing
    payment_intent.requires_action             record; cash-voucher notice for voucher payments
    payment_intent.succeeded                   record; order -> completed
    payment_intent.payment_failed              record; order -> failed
    payment_intent.canceled                    record; order -> canceled
    checkout.session.completed                 link intent; order -> completed when paid
    checkout.session.async_payment_succeeded   order -> completed
    checkout.session.async_payment_failed      order -> failed
    checkout.session.expired                   order -> expired
    charge.refunded                            order -> refunded (full refunds only)

Any other type is logged and left alone; the engine still records it in
the ledger. An event whose order cannot be found is logged and treated as
applied, since redelivering it would not make the order appear.

Everything here may run more than once for the same event (retries), so
every write is either idempotent or guarded by the order state machine.
"""

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from reconciliation.gateway.objects import ChargeObject, CheckoutSessionObject, PaymentIntentObject
from reconciliation.notification.dispatcher import DispatchOutcome
from reconciliation.order.fulfillment import OrderFulfillment
from reconciliation.order.lookup import find_by_correlation_id, find_by_payment_intent, update_order
from reconciliation.order.order import Order, OrderStatus
from reconciliation.order.state_machine import TransitionResult
from reconciliation.payment_intent.method_detection import DetectedMethod
from reconciliation.payment_intent.recording import upsert_payment_intent
from reconciliation.webhook.envelope import GatewayEvent

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ApplicationResult:
    event_type: str
    handled: bool
    order_id: str | None = None
    transition: TransitionResult | None = None
    notification: DispatchOutcome | None = None


def _format_amount(amount: int | None) -> str:
    return f"{(amount or 0) / 100:.2f}"


class EventApplier:
    def __init__(self, fulfillment: OrderFulfillment | None = None):
        self.fulfillment = fulfillment if fulfillment is not None else OrderFulfillment()
        self._routes: dict[str, Callable[[GatewayEvent], ApplicationResult]] = {
            "payment_intent.created": self._intent_created,
            "payment_intent.processing": self._intent_processing,
            "payment_intent.requires_action": self._intent_requires_action,
            "payment_intent.succeeded": self._intent_succeeded,
            "payment_intent.payment_failed": self._intent_failed,
            "payment_intent.canceled": self._intent_canceled,
            "checkout.session.completed": self._session_completed,
            "checkout.session.async_payment_succeeded": self._session_async_succeeded,
            "checkout.session.async_payment_failed": self._session_async_failed,
            "checkout.session.expired": self._session_expired,
            "charge.refunded": self._charge_refunded,
        }

    @property
    def state_machine(self):
        return self.fulfillment.state_machine

    @property
    def detector(self):
        return self.fulfillment.detector

    @property
    def dispatcher(self):
        return self.fulfillment.dispatcher

    @property
    def handled_types(self) -> frozenset[str]:
        return frozenset(self._routes)

    def apply(self, event: GatewayEvent) -> ApplicationResult:
        route = self._routes.get(event.type)
        if route is None:
            logger.info("Unhandled event type", event_id=event.id, event_type=event.type)
            return ApplicationResult(event.type, handled=False)

        expected = _EXPECTED_PAYLOADS.get(event.type.rsplit(".", 1)[0])
        if expected is not None and not isinstance(event.payload, expected):
            logger.warning(
                "Event payload does not match its type, ignoring",
                event_id=event.id,
                event_type=event.type,
                payload=type(event.payload).__name__,
            )
            return ApplicationResult(event.type, handled=False)

        return route(event)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _record_intent(self, intent: PaymentIntentObject, payment_status: str | None = None) -> DetectedMethod:
        detection = self.detector.detect(payment_intent=intent)
        upsert_payment_intent(
            intent.id,
            details=intent.model_dump(mode="json"),
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            payment_method=detection.method,
            last4=detection.last4,
            voucher_url=intent.voucher_url,
            payment_status=payment_status,
        )
        return detection

    def _transition(self, event: GatewayEvent, order: Order | None, target: OrderStatus) -> ApplicationResult:
        if order is None:
            logger.warning(
                "No order found for event",
                event_id=event.id,
                event_type=event.type,
                object_id=event.object_id,
            )
            return ApplicationResult(event.type, handled=True)

        result = self.state_machine.apply(order, target)
        return ApplicationResult(event.type, handled=True, order_id=str(order.id), transition=result)

    def _intent_order(self, intent: PaymentIntentObject) -> Order | None:
        return find_by_payment_intent(intent.id, intent.metadata)

    # -------------------------------------------------------------------
    # payment_intent.*
    # -------------------------------------------------------------------
    def _intent_created(self, event: GatewayEvent) -> ApplicationResult:
        self._record_intent(event.payload)
        return ApplicationResult(event.type, handled=True)

    def _intent_processing(self, event: GatewayEvent) -> ApplicationResult:
        intent = event.payload
        self._record_intent(intent)
        return self._transition(event, self._intent_order(intent), OrderStatus.PROCESSING)

    def _intent_requires_action(self, event: GatewayEvent) -> ApplicationResult:
        intent = event.payload
        detection = self._record_intent(intent)
        order = self._intent_order(intent)

        if not (detection.is_special_case and intent.voucher_url):
            return ApplicationResult(event.type, handled=True, order_id=str(order.id) if order else None)

        outcome = self.dispatcher.send_cash_voucher(
            transaction_id=intent.id,
            recipient=(order.customer_email if order else None) or intent.receipt_email,
            voucher_url=intent.voucher_url,
            amount=_format_amount(intent.amount),
            currency=intent.currency,
            customer_name=order.customer_name if order else None,
            expires_at=str(intent.voucher_expires_at) if intent.voucher_expires_at else None,
        )
        return ApplicationResult(
            event.type,
            handled=True,
            order_id=str(order.id) if order else None,
            notification=outcome,
        )

    def _intent_succeeded(self, event: GatewayEvent) -> ApplicationResult:
        intent = event.payload
        self._record_intent(intent, payment_status="paid")
        order = self._intent_order(intent)
        if order is None:
            return self._transition(event, None, OrderStatus.COMPLETED)

        detailed = self.fulfillment.load_transaction(intent.id, fallback=intent)
        result = self.fulfillment.fulfill(order, transaction_id=intent.id, intent=detailed)
        return ApplicationResult(event.type, handled=True, order_id=str(order.id), transition=result)

    def _intent_failed(self, event: GatewayEvent) -> ApplicationResult:
        intent = event.payload
        self._record_intent(intent)
        return self._transition(event, self._intent_order(intent), OrderStatus.FAILED)

    def _intent_canceled(self, event: GatewayEvent) -> ApplicationResult:
        intent = event.payload
        self._record_intent(intent)
        return self._transition(event, self._intent_order(intent), OrderStatus.CANCELED)

    # -------------------------------------------------------------------
    # checkout.session.*
    # -------------------------------------------------------------------
    def _session_order(self, session: CheckoutSessionObject) -> Order | None:
        return find_by_correlation_id(session.id) or find_by_payment_intent(session.payment_intent_id, session.metadata)

    def _session_completed(self, event: GatewayEvent) -> ApplicationResult:
        session = event.payload
        if session.payment_intent_id:
            upsert_payment_intent(session.payment_intent_id, payment_status=session.payment_status)

        order = self._session_order(session)
        if order is None:
            return self._transition(event, None, OrderStatus.COMPLETED)

        order = update_order(
            order.id,
            lambda current: current.link_payment_intent(session.payment_intent_id)
            | current.record_customer(session.customer_name, session.email),
        )

        if not session.is_paid:
            # Delayed-settlement payment: the async_payment_* event decides the outcome
            logger.info(
                "Checkout completed, awaiting payment",
                order_id=str(order.id),
                payment_status=session.payment_status,
            )
            return ApplicationResult(event.type, handled=True, order_id=str(order.id))

        return self._fulfill_session(event, session, order)

    def _session_async_succeeded(self, event: GatewayEvent) -> ApplicationResult:
        session = event.payload
        order = self._session_order(session)
        if order is None:
            return self._transition(event, None, OrderStatus.COMPLETED)
        return self._fulfill_session(event, session, order)

    def _fulfill_session(self, event: GatewayEvent, session: CheckoutSessionObject, order: Order) -> ApplicationResult:
        detailed = self.fulfillment.load_session(session.id, fallback=session)
        result = self.fulfillment.fulfill(
            order,
            transaction_id=detailed.payment_intent_id,
            session=detailed,
            intent=detailed.expanded_intent,
        )
        return ApplicationResult(event.type, handled=True, order_id=str(order.id), transition=result)

    def _session_async_failed(self, event: GatewayEvent) -> ApplicationResult:
        return self._transition(event, self._session_order(event.payload), OrderStatus.FAILED)

    def _session_expired(self, event: GatewayEvent) -> ApplicationResult:
        return self._transition(event, self._session_order(event.payload), OrderStatus.EXPIRED)

    # -------------------------------------------------------------------
    # charge.*
    # -------------------------------------------------------------------
    def _charge_refunded(self, event: GatewayEvent) -> ApplicationResult:
        charge = event.payload
        if not charge.refunded:
            logger.info(
                "Partial refund, order status unchanged",
                charge_id=charge.id,
                amount_refunded=charge.amount_refunded,
            )
            return ApplicationResult(event.type, handled=True)

        order = find_by_payment_intent(charge.payment_intent, charge.metadata)
        return self._transition(event, order, OrderStatus.REFUNDED)


_EXPECTED_PAYLOADS = {
    "payment_intent": PaymentIntentObject,
    "checkout.session": CheckoutSessionObject,
    "charge": ChargeObject,
}
