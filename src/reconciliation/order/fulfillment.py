"""Order fulfillment — driving a paid order to ``completed``.

Shared by the webhook handlers and the status check the storefront calls
after redirecting the customer back from checkout. Both may race for the
same order; the state machine makes the second one a no-op. The confirmation
email is claimed on the order before sending, so whichever call finds a
completed, unconfirmed order sends it exactly once, including a retry that
finishes an interrupted fulfillment.
"""

from collections.abc import Sequence

import structlog

from reconciliation.exceptions import GatewayError
from reconciliation.gateway import get_gateway
from reconciliation.gateway.objects import CheckoutSessionObject, PaymentIntentObject
from reconciliation.gateway.port import PaymentGateway
from reconciliation.notification.dispatcher import DispatchOutcome, NotificationDispatcher
from reconciliation.order.lookup import find_by_correlation_id, update_order
from reconciliation.order.order import Order, OrderStatus
from reconciliation.order.state_machine import OrderStateMachine, TransitionResult
from reconciliation.payment_intent.method_detection import DetectedMethod, PaymentMethodDetector

logger = structlog.get_logger(__name__)

SESSION_EXPANSIONS = ("line_items", "payment_intent", "payment_intent.latest_charge")


class OrderFulfillment:
    def __init__(
        self,
        state_machine: OrderStateMachine | None = None,
        dispatcher: NotificationDispatcher | None = None,
        detector: PaymentMethodDetector | None = None,
        gateway: PaymentGateway | None = None,
    ):
        self.state_machine = state_machine if state_machine is not None else OrderStateMachine()
        self.dispatcher = dispatcher if dispatcher is not None else NotificationDispatcher()
        self.detector = detector if detector is not None else PaymentMethodDetector()
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway if self._gateway is not None else get_gateway()

    def load_session(
        self, session_id: str, fallback: CheckoutSessionObject | None = None, expand: Sequence[str] = SESSION_EXPANSIONS
    ) -> CheckoutSessionObject | None:
        """Fetch the full session; on a gateway failure return ``fallback`` instead."""
        try:
            return self.gateway.retrieve_session(session_id, expand=expand)
        except GatewayError as exc:
            logger.warning("Session lookup failed, continuing with webhook data", session_id=session_id, error=str(exc))
            return fallback

    def load_transaction(
        self, transaction_id: str, fallback: PaymentIntentObject | None = None
    ) -> PaymentIntentObject | None:
        try:
            return self.gateway.retrieve_transaction(transaction_id)
        except GatewayError as exc:
            logger.warning(
                "Payment intent lookup failed, continuing with webhook data",
                transaction_id=transaction_id,
                error=str(exc),
            )
            return fallback

    def fulfill(
        self,
        order: Order,
        transaction_id: str | None = None,
        session: CheckoutSessionObject | None = None,
        intent: PaymentIntentObject | None = None,
    ) -> TransitionResult:
        """Record what the gateway told us about the payment, then complete the order."""
        detection = self.detector.detect(session=session, payment_intent=intent, order=order)
        transaction_id = transaction_id or (session.payment_intent_id if session else None) or order.payment_intent_id

        def _bookkeeping(current: Order) -> bool:
            changed = current.link_payment_intent(transaction_id) if transaction_id else False
            changed = current.record_payment_method(detection.method) or changed
            if session is not None:
                changed = current.record_customer(session.customer_name, session.email) or changed
            return changed

        order = update_order(order.id, _bookkeeping)
        result = self.state_machine.apply(order, OrderStatus.COMPLETED)
        if result.order.current_status == OrderStatus.COMPLETED and not result.order.confirmation_sent:
            self._confirm(result.order, transaction_id, detection)
        return result

    def _confirm(self, order: Order, transaction_id: str | None, detection: DetectedMethod) -> None:
        claimed = False

        def _claim(current: Order) -> bool:
            nonlocal claimed
            claimed = current.claim_confirmation()
            return claimed

        update_order(order.id, _claim)
        if not claimed:
            return

        outcome = self.dispatcher.send_order_confirmation(
            order,
            transaction_id,
            special_case=detection.is_special_case,
        )
        if outcome == DispatchOutcome.FAILED:
            # Unclaimed, so the next event or status check for this order tries again
            update_order(order.id, lambda current: current.release_confirmation())
        logger.info(
            "Order confirmation dispatched",
            order_id=str(order.id),
            payment_method=detection.method,
            outcome=outcome.value,
        )

    def settle_session(self, session_id: str) -> bool:
        """Check a checkout session and complete its order when paid; returns whether it was paid.

        Raises:
            GatewayError: the session could not be retrieved.
        """
        session = self.gateway.retrieve_session(session_id, expand=SESSION_EXPANSIONS)
        if not session.is_paid:
            logger.info("Checkout session not paid", session_id=session_id, payment_status=session.payment_status)
            return False

        order = find_by_correlation_id(session.id)
        if order is None:
            logger.warning("No order for paid checkout session", session_id=session_id)
            return True

        self.fulfill(order, session=session, intent=session.expanded_intent)
        return True
