"""What each gateway event type does to orders, stock, payment records and email."""

import pytest
from protean import current_domain

from reconciliation.notification.dispatcher import DispatchOutcome
from reconciliation.order.state_machine import TransitionOutcome
from reconciliation.payment_intent.payment_intent import PaymentIntentRecord
from reconciliation.webhook.envelope import GatewayEvent

VOUCHER_URL = "https://payments.example.com/voucher/abc"
VOUCHER_ACTION = {
    "type": "oxxo_display_details",
    "oxxo_display_details": {"hosted_voucher_url": VOUCHER_URL, "expires_after": 1_700_259_200},
}


def _event(event_type, data_object, event_id="evt_1"):
    return GatewayEvent.from_envelope({"id": event_id, "type": event_type, "data": {"object": data_object}})


def _intent_record(transaction_id):
    return current_domain.repository_for(PaymentIntentRecord).get(transaction_id)


@pytest.fixture
def applier(engine):
    return engine.applier


@pytest.fixture
def tee(make_stock):
    return make_stock("black-tee", 10)


class TestPaymentIntentEvents:
    def test_created_only_records_intent(self, applier, intent_object):
        created = intent_object("pi_new", status="requires_payment_method")
        result = applier.apply(_event("payment_intent.created", created))

        assert result.handled
        assert result.order_id is None
        record = _intent_record("pi_new")
        assert record.status == "requires_payment_method"
        assert record.amount == 50000
        assert record.snapshot["id"] == "pi_new"

    def test_processing_moves_order(self, applier, intent_object, make_order, reload_order):
        order = make_order(payment_intent_id="pi_123")

        result = applier.apply(_event("payment_intent.processing", intent_object(status="processing")))

        assert result.transition.outcome == TransitionOutcome.APPLIED
        assert reload_order(order.id).order_status == "processing"

    def test_succeeded_completes_order_and_marks_paid(
        self, applier, intent_object, make_order, reload_order, tee, stock_of
    ):
        order = make_order(payment_intent_id="pi_123")

        result = applier.apply(_event("payment_intent.succeeded", intent_object()))

        assert result.transition.entered_completed
        assert reload_order(order.id).order_status == "completed"
        assert stock_of(tee) == 8
        assert _intent_record("pi_123").payment_status == "paid"

    def test_succeeded_uses_gateway_charge_details(self, applier, gateway, intent_object, make_order, reload_order):
        order = make_order(payment_intent_id="pi_123")
        gateway.add_transaction(
            intent_object(
                method_types=("card", "oxxo"),
                latest_charge={"id": "ch_1", "payment_method_details": {"type": "card", "card": {"last4": "4242"}}},
            )
        )

        applier.apply(_event("payment_intent.succeeded", intent_object(method_types=("oxxo",))))

        assert reload_order(order.id).payment_method == "card"
        assert gateway.calls_to("retrieve_transaction")

    def test_order_found_through_metadata(self, applier, intent_object, make_order, reload_order):
        order = make_order()

        intent = intent_object(status="processing", metadata={"order_id": order.id})
        applier.apply(_event("payment_intent.processing", intent))

        assert reload_order(order.id).order_status == "processing"

    def test_payment_failed_after_completion_is_rejected(
        self, applier, intent_object, make_order, reload_order, tee, stock_of
    ):
        order = make_order(payment_intent_id="pi_123")
        applier.apply(_event("payment_intent.succeeded", intent_object(), event_id="evt_1"))

        failed = intent_object(status="requires_payment_method")
        result = applier.apply(_event("payment_intent.payment_failed", failed, event_id="evt_2"))

        assert result.transition.outcome == TransitionOutcome.REJECTED
        assert reload_order(order.id).order_status == "completed"
        assert stock_of(tee) == 8

    def test_cancellation_after_completion_gives_stock_back(
        self, applier, intent_object, make_order, reload_order, tee, stock_of
    ):
        order = make_order(payment_intent_id="pi_123")
        applier.apply(_event("payment_intent.succeeded", intent_object(), event_id="evt_1"))

        applier.apply(_event("payment_intent.canceled", intent_object(status="canceled"), event_id="evt_2"))

        assert reload_order(order.id).order_status == "canceled"
        assert stock_of(tee) == 10

    def test_canceled(self, applier, intent_object, make_order, reload_order):
        order = make_order(payment_intent_id="pi_123")
        applier.apply(_event("payment_intent.canceled", intent_object(status="canceled")))
        assert reload_order(order.id).order_status == "canceled"

    def test_missing_order_is_handled(self, applier, intent_object):
        result = applier.apply(_event("payment_intent.canceled", intent_object("pi_orphan", status="canceled")))
        assert result.handled
        assert result.order_id is None
        assert result.transition is None


class TestVoucherNotice:
    def _requires_action(self, intent_object, intent_id="pi_oxxo", **extra):
        return _event(
            "payment_intent.requires_action",
            intent_object(
                intent_id,
                status="requires_action",
                method_types=("oxxo",),
                next_action=VOUCHER_ACTION,
                **extra,
            ),
        )

    def test_voucher_notice_goes_to_order_email(self, applier, intent_object, make_order, email):
        make_order(payment_intent_id="pi_oxxo", customer_email="ana@example.com")

        result = applier.apply(self._requires_action(intent_object))

        assert result.notification == DispatchOutcome.SENT
        [sent] = email.sent_to("ana@example.com")
        assert VOUCHER_URL in sent["body"]
        assert "MXN 500.00" in sent["body"]
        assert _intent_record("pi_oxxo").voucher_url == VOUCHER_URL

    def test_receipt_email_used_without_order(self, applier, intent_object, email):
        result = applier.apply(self._requires_action(intent_object, receipt_email="guest@example.com"))

        assert result.notification == DispatchOutcome.SENT
        assert len(email.sent_to("guest@example.com")) == 1

    def test_redelivered_notice_is_rate_limited(self, applier, intent_object, make_order, email):
        make_order(payment_intent_id="pi_oxxo")
        applier.apply(self._requires_action(intent_object))

        result = applier.apply(self._requires_action(intent_object))

        assert result.notification == DispatchOutcome.RATE_LIMITED
        assert len(email.sent_emails) == 1

    def test_card_authentication_sends_nothing(self, applier, intent_object, make_order, email):
        make_order(payment_intent_id="pi_123")

        result = applier.apply(_event("payment_intent.requires_action", intent_object(status="requires_action")))

        assert result.handled
        assert result.notification is None
        assert email.sent_emails == []


class TestCheckoutSessionEvents:
    def test_paid_session_links_intent_and_completes(self, applier, session_object, make_order, reload_order, email):
        order = make_order(correlation_id="cs_1", customer_name=None)

        result = applier.apply(_event("checkout.session.completed", session_object("cs_1")))

        assert result.transition.entered_completed
        order = reload_order(order.id)
        assert order.order_status == "completed"
        assert order.payment_intent_id == "pi_123"
        assert order.customer_name == "Ana"
        assert _intent_record("pi_123").payment_status == "paid"
        assert len(email.sent_emails) == 1

    def test_gateway_session_details_are_used(
        self, applier, gateway, session_object, intent_object, make_order, reload_order, email
    ):
        order = make_order(correlation_id="cs_1")
        gateway.add_session(session_object("cs_1", payment_method_types=["card", "oxxo"]))
        gateway.add_transaction(
            intent_object(latest_charge={"id": "ch_1", "payment_method_details": {"type": "card"}})
        )

        applier.apply(
            _event("checkout.session.completed", session_object("cs_1", payment_method_types=["card", "oxxo"]))
        )

        assert reload_order(order.id).payment_method == "card"
        assert email.sent_emails[0]["subject"] == "Order received!"
        [call] = gateway.calls_to("retrieve_session")
        assert "payment_intent" in call["expand"]

    def test_gateway_outage_falls_back_to_webhook_data(
        self, applier, gateway, session_object, make_order, reload_order
    ):
        gateway.configure(should_succeed=False)
        order = make_order(correlation_id="cs_1")

        applier.apply(_event("checkout.session.completed", session_object("cs_1")))

        assert reload_order(order.id).order_status == "completed"

    def test_unpaid_session_waits_for_payment(self, applier, session_object, make_order, reload_order, email):
        order = make_order(correlation_id="cs_1")

        result = applier.apply(
            _event(
                "checkout.session.completed",
                session_object("cs_1", payment_status="unpaid", payment_intent="pi_oxxo"),
            )
        )

        assert result.transition is None
        order = reload_order(order.id)
        assert order.order_status == "pending"
        assert order.payment_intent_id == "pi_oxxo"
        assert email.sent_emails == []

    def test_unpaid_session_does_not_regress_completed_order(self, applier, session_object, make_order, reload_order):
        order = make_order(correlation_id="cs_1", status="completed")
        applier.apply(_event("checkout.session.completed", session_object("cs_1", payment_status="unpaid")))
        assert reload_order(order.id).order_status == "completed"

    def test_async_payment_succeeded_confirms_voucher_payment(
        self, applier, session_object, make_order, reload_order, email, tee, stock_of
    ):
        order = make_order(correlation_id="cs_oxxo")

        applier.apply(
            _event(
                "checkout.session.async_payment_succeeded",
                session_object("cs_oxxo", payment_intent="pi_oxxo", payment_method_types=["oxxo"]),
            )
        )

        order = reload_order(order.id)
        assert order.order_status == "completed"
        assert order.payment_method == "oxxo"
        assert stock_of(tee) == 8
        assert email.sent_emails[0]["subject"] == "Order received! Your payment was credited"

    def test_async_payment_failed(self, applier, session_object, make_order, reload_order):
        order = make_order(correlation_id="cs_1")
        applier.apply(_event("checkout.session.async_payment_failed", session_object("cs_1", payment_status="unpaid")))
        assert reload_order(order.id).order_status == "failed"

    def test_expired(self, applier, session_object, make_order, reload_order):
        order = make_order(correlation_id="cs_1")
        applier.apply(_event("checkout.session.expired", session_object("cs_1", status="expired", payment_intent=None)))
        assert reload_order(order.id).order_status == "expired"


class TestRefunds:
    def _charge(self, refunded, amount_refunded):
        return {
            "id": "ch_1",
            "object": "charge",
            "payment_intent": "pi_123",
            "amount": 50000,
            "amount_refunded": amount_refunded,
            "refunded": refunded,
        }

    def test_full_refund(self, applier, make_order, reload_order, tee, stock_of):
        order = make_order(payment_intent_id="pi_123", status="completed")

        applier.apply(_event("charge.refunded", self._charge(True, 50000)))

        assert reload_order(order.id).order_status == "refunded"
        assert reload_order(order.id).refund_requested is True
        assert stock_of(tee) == 10

    def test_partial_refund_leaves_order_alone(self, applier, make_order, reload_order):
        order = make_order(payment_intent_id="pi_123", status="completed")

        result = applier.apply(_event("charge.refunded", self._charge(False, 10000)))

        assert result.handled
        assert result.transition is None
        assert reload_order(order.id).order_status == "completed"


class TestRouting:
    def test_handled_types(self, applier):
        assert len(applier.handled_types) == 11
        assert "charge.refunded" in applier.handled_types

    def test_unknown_type_is_not_handled(self, applier):
        result = applier.apply(_event("invoice.paid", {"id": "in_1", "object": "invoice"}))
        assert result.handled is False

    def test_mismatched_payload_is_ignored(self, applier, make_order, reload_order):
        order = make_order(payment_intent_id="pi_123")

        charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_123"}
        result = applier.apply(_event("payment_intent.succeeded", charge))

        assert result.handled is False
        assert reload_order(order.id).order_status == "pending"
