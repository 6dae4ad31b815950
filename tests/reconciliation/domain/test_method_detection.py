from types import SimpleNamespace

import pytest

from reconciliation.gateway.objects import CheckoutSessionObject, PaymentIntentObject
from reconciliation.payment_intent.method_detection import PaymentMethodDetector

VOUCHER_ACTION = {
    "type": "oxxo_display_details",
    "oxxo_display_details": {
        "hosted_voucher_url": "https://payments.example.com/voucher/abc",
        "expires_after": 1_700_259_200,
    },
}


@pytest.fixture
def detector():
    return PaymentMethodDetector()


def _intent(**values):
    return PaymentIntentObject(id="pi_123", **values)


def _session(**values):
    values.setdefault("status", "complete")
    values.setdefault("payment_status", "paid")
    return CheckoutSessionObject(id="cs_123", **values)


class TestSignals:
    def test_charge_method_wins(self, detector):
        intent = _intent(
            status="succeeded",
            payment_method_types=["card", "oxxo"],
            latest_charge={
                "id": "ch_1",
                "payment_method_details": {"type": "card", "card": {"last4": "4242"}},
            },
        )
        session = _session(payment_method_types=["card", "oxxo"], payment_intent=intent.model_dump())

        detected = detector.detect(session=session)

        assert detected.method == "card"
        assert detected.is_special_case is False
        assert detected.source == "charge"
        assert detected.last4 == "4242"

    def test_charge_paid_with_voucher_is_special_case(self, detector):
        intent = _intent(
            status="succeeded",
            latest_charge={"id": "ch_1", "payment_method_details": {"type": "oxxo"}},
        )
        detected = detector.detect(payment_intent=intent)
        assert detected.method == "oxxo"
        assert detected.is_special_case is True

    def test_session_offering_voucher_in_plausible_status(self, detector):
        session = _session(payment_method_types=["oxxo"], status="open", payment_status="unpaid")
        detected = detector.detect(session=session)
        assert (detected.method, detected.source) == ("oxxo", "session")

    def test_session_offering_voucher_in_implausible_status_falls_through(self, detector):
        session = _session(
            payment_method_types=["card", "oxxo"],
            status="expired",
            payment_status="no_payment_required",
        )
        detected = detector.detect(session=session)
        assert (detected.method, detected.source) == ("card", "default")

    def test_voucher_instructions_on_intent(self, detector):
        intent = _intent(status="requires_action", payment_method_types=["card"], next_action=VOUCHER_ACTION)
        detected = detector.detect(payment_intent=intent)
        assert (detected.method, detected.is_special_case, detected.source) == ("oxxo", True, "intent")

    def test_first_intent_method_type(self, detector):
        detected = detector.detect(payment_intent=_intent(status="processing", payment_method_types=["card"]))
        assert (detected.method, detected.source) == ("card", "intent")

    def test_falls_back_to_order(self, detector):
        order = SimpleNamespace(payment_method="oxxo")
        detected = detector.detect(order=order)
        assert (detected.method, detected.is_special_case, detected.source) == ("oxxo", True, "order")

    def test_defaults_to_card(self, detector):
        detected = detector.detect()
        assert (detected.method, detected.is_special_case, detected.source) == ("card", False, "default")


class TestDemotion:
    @pytest.mark.parametrize("status", ["canceled", "requires_payment_method"])
    def test_incompatible_intent_status_demotes_voucher(self, detector, status):
        intent = _intent(status=status, next_action=VOUCHER_ACTION)
        detected = detector.detect(payment_intent=intent)
        assert (detected.method, detected.is_special_case, detected.source) == ("card", False, "demoted")

    def test_incompatible_session_status_demotes_voucher(self, detector):
        session = _session(payment_method_types=["oxxo"], status="open", payment_status="unpaid")
        intent = _intent(status="canceled", payment_method_types=["oxxo"])
        detected = detector.detect(session=session, payment_intent=intent)
        assert detected.source == "demoted"

    def test_card_is_never_demoted(self, detector):
        detected = detector.detect(payment_intent=_intent(status="canceled", payment_method_types=["card"]))
        assert detected.source == "intent"
