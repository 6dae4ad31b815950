"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Identifier, String

from reconciliation.domain import reconciliation


@reconciliation.event(part_of="Order")
class OrderStatusChanged:
    """The order moved to a new status through the state machine."""

    __version__ = 1

    order_id = Identifier(required=True)
    correlation_id = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@reconciliation.event(part_of="Order")
class PaymentIntentLinked:
    """The gateway's payment intent was associated with the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    linked_at = DateTime(required=True)
