"""Template registry — maps notification kinds to template classes."""

from reconciliation.notification.kinds import NotificationKind
from reconciliation.notification.templates.cash_voucher import CashVoucherTemplate
from reconciliation.notification.templates.order_confirmation import OrderConfirmationTemplate

TEMPLATE_REGISTRY: dict[str, type] = {
    NotificationKind.ORDER_CONFIRMATION.value: OrderConfirmationTemplate,
    NotificationKind.CASH_VOUCHER.value: CashVoucherTemplate,
}


def get_template(notification_kind: str):
    """Look up a template class by notification kind string."""
    template_cls = TEMPLATE_REGISTRY.get(notification_kind)
    if template_cls is None:
        raise ValueError(f"No template registered for notification kind: {notification_kind}")
    return template_cls
