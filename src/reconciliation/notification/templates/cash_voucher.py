"""Cash voucher template — sent when a voucher payment awaits completion at the store."""

from html import escape

from reconciliation.notification.kinds import NotificationKind


class CashVoucherTemplate:
    notification_kind = NotificationKind.CASH_VOUCHER.value

    @staticmethod
    def render(context: dict) -> dict:
        name = context.get("customer_name") or "there"
        voucher_url = context["voucher_url"]
        amount = context.get("amount", "0.00")
        currency = (context.get("currency") or "mxn").upper()
        expires_at = context.get("expires_at")

        deadline = f"Please pay before {expires_at}.\n" if expires_at else ""
        body = (
            f"Hi {name},\n\n"
            f"Your order is reserved. To finish, pay {currency} {amount} at any OXXO store "
            "using the voucher below.\n\n"
            f"Voucher: {voucher_url}\n"
            f"{deadline}\n"
            "We'll confirm your order by email as soon as the payment is credited."
        )
        html_body = (
            "<div>"
            f"<h2>Hi {escape(name)},</h2>"
            f"<p>To finish your order, pay {currency} {escape(str(amount))} at any OXXO store.</p>"
            f'<p><a href="{escape(voucher_url, quote=True)}">View your payment voucher</a></p>'
            "</div>"
        )
        return {"subject": "Your OXXO payment voucher", "body": body, "html_body": html_body}
