"""StockEntry aggregate (CQRS) — sellable units of one product or one variant.

Stock entries are catalog data: they exist before any order references them
and this context only ever changes their counters.

    quantity:   units left to sell, never negative
    units_sold: units taken by completed orders, given back on compensation

A decrement clamps at zero. An increment is never clamped, so a restoration
can push ``quantity`` above what it was before the sale when counters were
mis-tracked elsewhere; that drift is accepted rather than rejected.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Integer, String

from reconciliation.domain import reconciliation
from reconciliation.inventory.events import StockAdjusted


class StockKind(Enum):
    PRODUCT = "product"
    VARIANT = "variant"


class AdjustmentDirection(Enum):
    MINUS = "minus"
    PLUS = "plus"


@reconciliation.aggregate
class StockEntry:
    kind = String(choices=StockKind, required=True)
    slug = String(required=True, max_length=255)
    sku = String(max_length=100)
    name = String(max_length=255)
    quantity = Integer(default=0, min_value=0)
    units_sold = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, kind, slug, quantity=0, sku=None, name=None, units_sold=0):
        now = datetime.now(UTC)
        return cls(
            kind=kind,
            slug=slug,
            sku=sku,
            name=name,
            quantity=quantity,
            units_sold=units_sold,
            created_at=now,
            updated_at=now,
        )

    def adjust(self, direction: AdjustmentDirection, amount: int) -> int:
        """Apply one adjustment and return the new quantity."""
        if amount <= 0:
            raise ValidationError({"amount": ["Adjustment amount must be positive"]})

        previous = self.quantity or 0
        sold = self.units_sold or 0
        if direction == AdjustmentDirection.MINUS:
            new_quantity = max(0, previous - amount)
            self.units_sold = sold + amount
        else:
            new_quantity = previous + amount
            self.units_sold = max(0, sold - amount)

        now = datetime.now(UTC)
        self.quantity = new_quantity
        self.updated_at = now

        self.raise_(
            StockAdjusted(
                stock_entry_id=str(self.id),
                kind=self.kind,
                slug=self.slug,
                direction=direction.value,
                amount=amount,
                previous_quantity=previous,
                new_quantity=new_quantity,
                adjusted_at=now,
            )
        )
        return new_quantity
