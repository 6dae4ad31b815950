"""Order confirmation template — sent when an order's payment is completed."""

from html import escape

from reconciliation.notification.kinds import NotificationKind


class OrderConfirmationTemplate:
    notification_kind = NotificationKind.ORDER_CONFIRMATION.value

    @staticmethod
    def render(context: dict) -> dict:
        name = context.get("customer_name") or "there"
        order_id = context.get("order_id", "N/A")
        items = context.get("items", [])
        total = context.get("total", "0.00")
        currency = (context.get("currency") or "mxn").upper()

        # Cash voucher payments
        if context.get("special_case"):
            subject = "Order received! Your payment was credited"
        else:
            subject = "Order received!"

        lines = [f"- {item['name']} x {item['quantity']}" for item in items]
        body = (
            f"Hi {name},\n\n"
            f"Your purchase (order #{order_id}) was received successfully.\n"
            "Thank you for shopping with us!\n\n"
            "Items purchased:\n" + "\n".join(lines) + "\n\n"
            f"Total: {currency} {total}\n"
        )
        html_items = "".join(f"<li>{escape(str(item['name']))} - {item['quantity']} units</li>" for item in items)
        html_body = (
            "<div>"
            f"<h2>Hi {escape(name)},</h2>"
            "<p>Your purchase was received successfully.</p>"
            "<p>Thank you for shopping with us!</p>"
            "<h3>Purchase details:</h3>"
            "<h4>Items purchased:</h4>"
            f"<ul>{html_items}</ul>"
            f"<p>Total: {currency} {escape(str(total))}</p>"
            "</div>"
        )
        return {"subject": subject, "body": body, "html_body": html_body}
