"""Payment method detection.

Decides which instrument paid for an order, and whether it is the
delayed-settlement cash voucher (``oxxo``) that gets its own notification
path. Signals are consulted strongest first:

1. the charge's ``payment_method_details.type``
2. the checkout session offering the voucher while in a plausible status
3. the payment intent (voucher instructions present, else its first
   ``payment_method_types`` entry)
4. whatever the order already recorded
5. ``card``

A tentative voucher result is re-checked against the intent and session
statuses; ``canceled`` or ``requires_payment_method`` demote it to ``card``.
"""

from dataclasses import dataclass

from reconciliation.gateway.objects import CheckoutSessionObject, PaymentIntentObject

SPECIAL_CASE_METHOD = "oxxo"
DEFAULT_METHOD = "card"

_PLAUSIBLE_STATUSES = frozenset({"requires_action", "processing", "unpaid", "open", "complete", "succeeded"})
_INCOMPATIBLE_STATUSES = frozenset({"canceled", "requires_payment_method"})


@dataclass(frozen=True)
class DetectedMethod:
    method: str
    is_special_case: bool
    source: str
    last4: str | None = None


class PaymentMethodDetector:
    def __init__(self, special_case_method: str = SPECIAL_CASE_METHOD, default_method: str = DEFAULT_METHOD):
        self.special_case_method = special_case_method
        self.default_method = default_method

    def detect(
        self,
        session: CheckoutSessionObject | None = None,
        payment_intent: PaymentIntentObject | None = None,
        order=None,
    ) -> DetectedMethod:
        intent = payment_intent or (session.expanded_intent if session else None)
        charge = intent.charge if intent else None
        last4 = charge.last4 if charge else None

        method, source = self._first_signal(session, intent, charge, order)

        if method == self.special_case_method and self._incompatible(session, intent):
            return DetectedMethod(self.default_method, False, "demoted", last4)

        return DetectedMethod(method, method == self.special_case_method, source, last4)

    def _first_signal(self, session, intent, charge, order) -> tuple[str, str]:
        if charge is not None and charge.method_type:
            return charge.method_type, "charge"

        if session is not None and self.special_case_method in session.payment_method_types:
            if {session.status, session.payment_status} & _PLAUSIBLE_STATUSES:
                return self.special_case_method, "session"

        if intent is not None:
            if intent.voucher_url:
                return self.special_case_method, "intent"
            if intent.payment_method_types:
                return intent.payment_method_types[0], "intent"

        if order is not None and order.payment_method:
            return order.payment_method, "order"

        return self.default_method, "default"

    @staticmethod
    def _incompatible(session, intent) -> bool:
        statuses = set()
        if intent is not None:
            statuses.add(intent.status)
        if session is not None:
            statuses.update({session.status, session.payment_status})
        return bool(statuses & _INCOMPATIBLE_STATUSES)
