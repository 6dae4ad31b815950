"""Domain events for the StockEntry aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from reconciliation.domain import reconciliation


@reconciliation.event(part_of="StockEntry")
class StockAdjusted:
    """A stock counter moved because an order took or gave back units."""

    __version__ = 1

    stock_entry_id = Identifier(required=True)
    kind = String(required=True)
    slug = String(required=True)
    direction = String(required=True)  # minus, plus
    amount = Integer(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)
    adjusted_at = DateTime(required=True)
