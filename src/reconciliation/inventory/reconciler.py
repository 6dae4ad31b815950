"""Stock reconciler — symmetric decrement/increment of stock for order line items.

Used in one direction when an order is fulfilled (``minus``) and in the
other when a fulfilled order regresses to failed, canceled or expired
(``plus``, the compensation). Each line item is handled on its own: an item
whose product or variant cannot be found is logged and skipped, and the rest
of the order is still adjusted.
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import structlog
from protean.utils.globals import current_domain

from reconciliation.exceptions import StaleRecordError, StockResolutionError
from reconciliation.inventory.stock import AdjustmentDirection, StockEntry, StockKind
from reconciliation.records import guarded, save
from reconciliation.retry import RetryPolicy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockMovement:
    reference: str
    amount: int
    previous_quantity: int
    new_quantity: int


@dataclass
class AdjustmentReport:
    direction: AdjustmentDirection
    adjusted: list[StockMovement] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped


def _is_stale(error: BaseException) -> bool:
    return isinstance(error, StaleRecordError)


class StockReconciler:
    def __init__(self, write_policy: RetryPolicy | None = None, sleep: Callable[[float], None] = time.sleep):
        self.write_policy = write_policy or RetryPolicy(max_attempts=3, base_delay=0.05, retryable=_is_stale)
        self.sleep = sleep

    def resolve(self, item) -> StockEntry:
        """Find the stock-bearing entity for a line item: the variant if named, else the base product.

        Raises:
            StockResolutionError: nothing matches.
        """
        dao = current_domain.repository_for(StockEntry)._dao

        if item.variant_slug:
            matches = dao.query.filter(kind=StockKind.VARIANT.value, slug=item.variant_slug).all().items
            if matches:
                return matches[0]
            raise StockResolutionError(f"variant {item.variant_slug}")

        matches = dao.query.filter(kind=StockKind.PRODUCT.value, slug=item.product_slug).all().items
        if not matches and item.sku:
            matches = dao.query.filter(kind=StockKind.PRODUCT.value, sku=item.sku).all().items
        if matches:
            return matches[0]
        raise StockResolutionError(f"product {item.product_slug or item.sku}")

    def adjust(
        self,
        line_items: Iterable,
        direction: AdjustmentDirection | str,
        on_moved: Callable[[object, StockMovement], None] | None = None,
    ) -> AdjustmentReport:
        """Move stock for each line item; ``on_moved(item, movement)`` runs after each successful write."""
        direction = AdjustmentDirection(direction)
        report = AdjustmentReport(direction=direction)

        for item in line_items:
            try:
                entry = self.resolve(item)
            except StockResolutionError as exc:
                logger.error(
                    "Stock entry not found, skipping line item",
                    reference=exc.reference,
                    quantity=item.quantity,
                    direction=direction.value,
                )
                report.skipped.append(item.stock_reference)
                continue

            movement = self.write_policy.run(
                lambda entry_id=entry.id, amount=item.quantity: self._apply(entry_id, direction, amount),
                sleep=self.sleep,
                operation="stock_adjustment",
                stock_entry_id=str(entry.id),
            )
            report.adjusted.append(movement)
            if on_moved is not None:
                on_moved(item, movement)

        logger.info(
            "Stock reconciled",
            direction=direction.value,
            adjusted=len(report.adjusted),
            skipped=len(report.skipped),
        )
        return report

    def _apply(self, entry_id, direction: AdjustmentDirection, amount: int) -> StockMovement:
        with guarded(StockEntry, entry_id):
            entry = current_domain.repository_for(StockEntry).get(entry_id)
            previous = entry.quantity
            new_quantity = entry.adjust(direction, amount)
            save(entry)

        if direction == AdjustmentDirection.MINUS and previous < amount:
            logger.warning(
                "Stock decrement clamped at zero",
                slug=entry.slug,
                requested=amount,
                available=previous,
            )
        return StockMovement(
            reference=entry.slug,
            amount=amount,
            previous_quantity=previous,
            new_quantity=new_quantity,
        )
