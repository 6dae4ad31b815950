"""Order state machine service — validated status changes plus their stock side effects.

Wraps ``Order.transition_to`` with the behavior every caller needs:

- asking for the current status is a no-op, not an error
- a pair outside the transition table is logged and skipped; the rest of the
  event's side effects still run
- reaching ``completed`` takes the line items out of stock
- leaving ``completed`` for ``canceled`` puts them back (compensation); the
  transition table has no ``completed`` to ``failed`` or ``expired`` pair

Each change runs as one guarded read-modify-write on the order, so two
events for the same order never interleave their load and save. The status
is saved first and every line item's stock move is recorded on the order as
it succeeds, so a retry after a failed stock write finishes the remaining
items even though the status already matches.
"""

from dataclasses import dataclass
from enum import Enum

import structlog
from protean.utils.globals import current_domain

from reconciliation.exceptions import InvalidTransitionError
from reconciliation.inventory.reconciler import AdjustmentReport, StockReconciler
from reconciliation.order.order import Order, OrderStatus
from reconciliation.records import guarded, save

logger = structlog.get_logger(__name__)

_COMPENSATED_TARGETS = {OrderStatus.FAILED, OrderStatus.CANCELED, OrderStatus.EXPIRED}


class TransitionOutcome(Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    order: Order
    previous_status: OrderStatus
    stock: AdjustmentReport | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED

    @property
    def entered_completed(self) -> bool:
        return self.applied and OrderStatus(self.order.order_status) == OrderStatus.COMPLETED


class OrderStateMachine:
    def __init__(self, reconciler: StockReconciler | None = None):
        self.reconciler = reconciler if reconciler is not None else StockReconciler()

    def apply(self, order: Order, new_status: OrderStatus | str) -> TransitionResult:
        """Drive ``order`` to ``new_status``; never raises for a disallowed pair.

        Raises:
            StaleRecordError: a stock write kept losing version races; the
                moves made so far stay recorded on the order.
        """
        target = OrderStatus(new_status)
        repo = current_domain.repository_for(Order)

        with guarded(Order, order.id):
            order = repo.get(order.id)
            current = order.current_status

            if current == target:
                logger.info(
                    "Order already in requested status",
                    order_id=str(order.id),
                    status=current.value,
                )
                stock = self._settle_stock(order)
                if stock is not None:
                    order = repo.get(order.id)
                return TransitionResult(TransitionOutcome.UNCHANGED, order, current, stock)

            try:
                order.transition_to(target)
            except InvalidTransitionError as exc:
                logger.warning(
                    "Rejected order status transition",
                    order_id=str(order.id),
                    current=exc.current,
                    target=exc.target,
                )
                return TransitionResult(TransitionOutcome.REJECTED, order, current)

            if target == OrderStatus.COMPLETED:
                order.mark_stock_committed()
            elif current == OrderStatus.COMPLETED and target in _COMPENSATED_TARGETS:
                order.mark_stock_released()

            save(order)
            stock = self._settle_stock(order)
            if stock is not None:
                order = repo.get(order.id)

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            previous=current.value,
            current=target.value,
        )
        return TransitionResult(TransitionOutcome.APPLIED, order, current, stock)

    def _settle_stock(self, order: Order) -> AdjustmentReport | None:
        """Move the stock of every line item not yet matching the order's commitment.

        Runs under the order's guard; each successful move is saved on the order
        before the next item is touched.
        """
        direction, items = order.pending_stock_moves()
        if direction is None:
            return None

        repo = current_domain.repository_for(Order)

        def _moved(item, _movement):
            current = repo.get(order.id)
            current.record_stock_moved(item.id, direction)
            save(current)

        return self.reconciler.adjust(items, direction, on_moved=_moved)
