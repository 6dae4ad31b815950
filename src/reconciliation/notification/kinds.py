"""Kinds of transactional email sent by the reconciliation engine."""

from enum import Enum


class NotificationKind(Enum):
    ORDER_CONFIRMATION = "OrderConfirmation"
    CASH_VOUCHER = "CashVoucher"
