"""Order aggregate (CQRS) — the order as seen by payment reconciliation.

Orders are created once, in ``pending``, by the checkout flow; this context
only moves them through the payment lifecycle. Line items are captured at
checkout and never change afterwards: they are the record of exactly how much
stock was taken, which is what a later compensation gives back.

State Machine (7 states):
    pending    → processing, completed, failed, canceled, expired
    processing → completed, failed, canceled, pending
    completed  → refunded, canceled, pending
    failed     → pending, processing
    canceled   → pending
    expired    → pending
    refunded   → (terminal)

``completed → pending`` exists for delayed-settlement instruments (cash
vouchers) whose earlier success signal turns out to be premature.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Float, HasMany, Integer, String, Text

from reconciliation.domain import reconciliation
from reconciliation.exceptions import InvalidTransitionError
from reconciliation.inventory.stock import AdjustmentDirection
from reconciliation.order.events import OrderStatusChanged, PaymentIntentLinked


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class ShippingStatus(Enum):
    NOT_READY = "not_ready"
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.COMPLETED,
        OrderStatus.FAILED,
        OrderStatus.CANCELED,
        OrderStatus.EXPIRED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.COMPLETED,
        OrderStatus.FAILED,
        OrderStatus.CANCELED,
        OrderStatus.PENDING,
    },
    OrderStatus.COMPLETED: {
        OrderStatus.REFUNDED,
        OrderStatus.CANCELED,
        OrderStatus.PENDING,  # Delayed settlement
    },
    OrderStatus.FAILED: {OrderStatus.PENDING, OrderStatus.PROCESSING},
    OrderStatus.CANCELED: {OrderStatus.PENDING},
    OrderStatus.EXPIRED: {OrderStatus.PENDING},
    OrderStatus.REFUNDED: set(),  # Terminal
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Single source of truth for allowed status changes."""
    return target in _VALID_TRANSITIONS.get(current, set())


def allowed_targets(current: OrderStatus) -> frozenset[OrderStatus]:
    return frozenset(_VALID_TRANSITIONS.get(current, set()))


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@reconciliation.entity(part_of="Order")
class OrderLineItem:
    """A purchased product, or a variant of one, with the quantity taken from stock."""

    sku = String(max_length=100)
    product_slug = String(required=True, max_length=255)
    variant_slug = String(max_length=255)
    product_name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(default=0.0, min_value=0.0)
    discount = Float(default=0.0)

    @property
    def stock_reference(self) -> str:
        return self.variant_slug or self.product_slug


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@reconciliation.aggregate
class Order:
    correlation_id = String(required=True, max_length=255)  # Checkout session id
    payment_intent_id = String(max_length=255)
    order_status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    shipping_status = String(choices=ShippingStatus, default=ShippingStatus.NOT_READY.value)
    items = HasMany(OrderLineItem)
    total = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="mxn")
    coupon_code = String(max_length=100)
    customer_name = String(max_length=255)
    customer_email = String(max_length=255)
    payment_method = String(max_length=50)
    payment_credited = Boolean(default=False)
    order_canceled = Boolean(default=False)
    refund_requested = Boolean(default=False)
    stock_committed = Boolean(default=False)  # Whether the items should be out of stock
    stock_taken_items = Text()  # JSON list of line item ids whose stock has actually been taken
    confirmation_sent = Boolean(default=False)
    order_date = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        correlation_id,
        items_data,
        total=0.0,
        currency="mxn",
        customer_name=None,
        customer_email=None,
        coupon_code=None,
        payment_intent_id=None,
        order_status=OrderStatus.PENDING.value,
    ):
        """Create an order from checkout data.

        Orders created directly in ``completed`` (free orders) already had
        their stock taken and their confirmation sent by the checkout flow, so
        they start with ``stock_committed`` set, every line item recorded as
        taken, and ``confirmation_sent`` set.

        Args:
            correlation_id: Gateway checkout session id.
            items_data: List of dicts with product_slug, quantity and
                optionally sku, variant_slug, product_name, unit_price, discount.
        """
        now = datetime.now(UTC)
        completed = order_status == OrderStatus.COMPLETED.value
        items = [OrderLineItem(**item) for item in items_data]

        return cls(
            correlation_id=correlation_id,
            payment_intent_id=payment_intent_id,
            order_status=order_status,
            shipping_status=ShippingStatus.PENDING.value if completed else ShippingStatus.NOT_READY.value,
            items=items,
            total=total,
            currency=currency,
            customer_name=customer_name,
            customer_email=customer_email,
            coupon_code=coupon_code,
            payment_credited=completed,
            stock_committed=completed,
            stock_taken_items=json.dumps(sorted(str(item.id) for item in items) if completed else []),
            confirmation_sent=completed,
            order_date=now if completed else None,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.order_status)

    def transition_to(self, target: OrderStatus) -> OrderStatus:
        """Move to ``target`` and return the previous status.

        Raises:
            InvalidTransitionError: the pair is not in the transition table.
        """
        current = self.current_status
        if not can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        now = datetime.now(UTC)
        self.order_status = target.value

        if target == OrderStatus.COMPLETED:
            self.refund_requested = False
            self.order_canceled = False
            self.payment_credited = True
            self.shipping_status = ShippingStatus.PENDING.value
            if self.order_date is None:
                self.order_date = now
        elif target == OrderStatus.CANCELED:
            self.order_canceled = True
        elif target == OrderStatus.REFUNDED:
            self.refund_requested = True

        self.updated_at = now

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                correlation_id=self.correlation_id,
                previous_status=current.value,
                new_status=target.value,
                changed_at=now,
            )
        )
        return current

    # -------------------------------------------------------------------
    # Payment bookkeeping
    # -------------------------------------------------------------------
    def link_payment_intent(self, payment_intent_id: str) -> bool:
        """Associate the gateway payment intent; returns False when already linked."""
        if not payment_intent_id or self.payment_intent_id == payment_intent_id:
            return False

        now = datetime.now(UTC)
        self.payment_intent_id = payment_intent_id
        self.updated_at = now
        self.raise_(
            PaymentIntentLinked(
                order_id=str(self.id),
                payment_intent_id=payment_intent_id,
                linked_at=now,
            )
        )
        return True

    def record_payment_method(self, method: str | None) -> bool:
        if not method or self.payment_method == method:
            return False
        self.payment_method = method
        self.updated_at = datetime.now(UTC)
        return True

    def record_customer(self, name: str | None, email: str | None) -> bool:
        """Fill contact fields from the checkout session when checkout left them empty."""
        changed = False
        if name and not self.customer_name:
            self.customer_name = name
            changed = True
        if email and not self.customer_email:
            self.customer_email = email
            changed = True
        return changed

    # -------------------------------------------------------------------
    # Stock bookkeeping
    # -------------------------------------------------------------------
    def mark_stock_committed(self) -> None:
        self.stock_committed = True

    def mark_stock_released(self) -> None:
        self.stock_committed = False

    @property
    def taken_item_ids(self) -> set[str]:
        return set(json.loads(self.stock_taken_items)) if self.stock_taken_items else set()

    def pending_stock_moves(self) -> tuple[AdjustmentDirection | None, list[OrderLineItem]]:
        """Line items whose stock does not yet match ``stock_committed``, and which way to move them.

        A status change and its stock moves are not one atomic write, so an
        interrupted fulfillment or compensation leaves items here for the next
        attempt to finish.
        """
        taken = self.taken_item_ids
        if self.stock_committed:
            pending = [item for item in self.items if str(item.id) not in taken]
            return (AdjustmentDirection.MINUS, pending) if pending else (None, [])

        pending = [item for item in self.items if str(item.id) in taken]
        return (AdjustmentDirection.PLUS, pending) if pending else (None, [])

    def record_stock_moved(self, item_id, direction: AdjustmentDirection) -> None:
        taken = self.taken_item_ids
        if AdjustmentDirection(direction) == AdjustmentDirection.MINUS:
            taken.add(str(item_id))
        else:
            taken.discard(str(item_id))
        self.stock_taken_items = json.dumps(sorted(taken))

    # -------------------------------------------------------------------
    # Confirmation email
    # -------------------------------------------------------------------
    def claim_confirmation(self) -> bool:
        """Reserve the confirmation email for the caller; False when it was already claimed."""
        if self.confirmation_sent:
            return False
        self.confirmation_sent = True
        return True

    def release_confirmation(self) -> bool:
        if not self.confirmation_sent:
            return False
        self.confirmation_sent = False
        return True
