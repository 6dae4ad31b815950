"""Order lookups by the identifiers gateway events carry."""

from collections.abc import Callable

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from reconciliation.order.order import Order
from reconciliation.records import guarded, save


def find_by_correlation_id(correlation_id: str | None) -> Order | None:
    if not correlation_id:
        return None
    matches = current_domain.repository_for(Order)._dao.query.filter(correlation_id=correlation_id).all().items
    return matches[0] if matches else None


def find_by_payment_intent(payment_intent_id: str | None, metadata: dict | None = None) -> Order | None:
    """Find the order linked to a payment intent, falling back to ``metadata.order_id``."""
    if payment_intent_id:
        matches = (
            current_domain.repository_for(Order)._dao.query.filter(payment_intent_id=payment_intent_id).all().items
        )
        if matches:
            return matches[0]

    order_id = (metadata or {}).get("order_id")
    if order_id:
        try:
            return current_domain.repository_for(Order).get(order_id)
        except ObjectNotFoundError:
            return None
    return None


def update_order(order_id, mutate: Callable[[Order], bool]) -> Order:
    """Reload, mutate and save an order under its record guard; skips the save when nothing changed."""
    with guarded(Order, order_id):
        order = current_domain.repository_for(Order).get(order_id)
        if mutate(order):
            save(order)
    return order
