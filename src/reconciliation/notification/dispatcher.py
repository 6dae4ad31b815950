"""Notification dispatcher — transactional emails with bounded retries and duplicate suppression.

Two channels share one transport:

- Order confirmation, sent when an order enters ``completed``. Requests are
  keyed by ``(order_id, transaction_id)``; while one send for a key is in
  flight, a second request for the same key is turned away rather than
  queued.
- Cash-voucher notice, sent when a voucher payment is waiting to be paid at
  the store. At most one send per transaction per rate-limit window; a failed
  send forgets its timestamp so a legitimate retry is not blocked.

Both maps live in this object's memory only: they do not survive a restart
and are not shared with other running instances.

Dispatch failures never propagate: they are logged and reported through
``DispatchOutcome``, and nothing already applied to the order is rolled back.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from reconciliation.channel import get_email_channel
from reconciliation.channel.email_port import EmailPort
from reconciliation.exceptions import NotificationError
from reconciliation.notification.kinds import NotificationKind
from reconciliation.notification.templates import get_template
from reconciliation.retry import RetryPolicy, exponential_backoff

logger = structlog.get_logger(__name__)


class DispatchOutcome(Enum):
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str
    html_body: str | None = None
    sender: str | None = None


def email_backoff(base_delay: float, attempt: int, error: BaseException | None = None) -> float:
    """Exponential backoff, doubled when the provider answered 429."""
    delay = exponential_backoff(base_delay, attempt)
    if isinstance(error, NotificationError) and error.is_rate_limited:
        delay *= 2
    return delay


class NotificationDispatcher:
    def __init__(
        self,
        channel: EmailPort | None = None,
        sender: str | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        voucher_window_seconds: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._channel = channel
        self.sender = sender
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.voucher_window_seconds = voucher_window_seconds
        self.sleep = sleep
        self.clock = clock

        self._in_flight: set[tuple[str, str]] = set()
        self._in_flight_lock = threading.Lock()
        self._voucher_sent_at: dict[str, float] = {}
        self._voucher_lock = threading.Lock()

    @property
    def channel(self) -> EmailPort:
        return self._channel if self._channel is not None else get_email_channel()

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    def send_with_retry(
        self,
        message: EmailMessage,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> dict:
        """Send one message, retrying transient failures.

        Raises:
            NotificationError: every attempt failed.
        """
        policy = RetryPolicy(
            max_attempts=max_attempts or self.max_attempts,
            base_delay=self.base_delay if base_delay is None else base_delay,
            backoff=email_backoff,
            retry_on=(NotificationError,),
        )
        return policy.run(
            lambda: self._send_once(message),
            sleep=self.sleep,
            operation="send_email",
            to=message.to,
            subject=message.subject,
        )

    def _send_once(self, message: EmailMessage) -> dict:
        try:
            result = self.channel.send(
                to=message.to,
                subject=message.subject,
                body=message.body,
                html_body=message.html_body,
                sender=message.sender or self.sender,
            )
        except Exception as exc:
            raise NotificationError(str(exc)) from exc

        if result.get("status") != "sent":
            raise NotificationError(result.get("error") or "Unknown dispatch error", result.get("status_code"))
        return result

    def _render(self, kind: NotificationKind, to: str, context: dict) -> EmailMessage:
        rendered = get_template(kind.value).render(context)
        return EmailMessage(
            to=to,
            subject=rendered["subject"],
            body=rendered["body"],
            html_body=rendered.get("html_body"),
            sender=self.sender,
        )

    # -------------------------------------------------------------------
    # Order confirmation
    # -------------------------------------------------------------------
    def send_order_confirmation(self, order, transaction_id: str | None, special_case: bool = False) -> DispatchOutcome:
        if not order.customer_email:
            logger.warning("Order has no customer email, skipping confirmation", order_id=str(order.id))
            return DispatchOutcome.SKIPPED

        key = (str(order.id), transaction_id or "")
        with self._in_flight_lock:
            if key in self._in_flight:
                logger.info(
                    "Order confirmation already in progress",
                    order_id=key[0],
                    transaction_id=key[1],
                )
                return DispatchOutcome.IN_PROGRESS
            self._in_flight.add(key)

        try:
            message = self._render(
                NotificationKind.ORDER_CONFIRMATION,
                order.customer_email,
                {
                    "customer_name": order.customer_name,
                    "order_id": str(order.id),
                    "items": [
                        {"name": item.product_name or item.product_slug, "quantity": item.quantity}
                        for item in order.items
                    ],
                    "total": f"{order.total:.2f}",
                    "currency": order.currency,
                    "special_case": special_case,
                },
            )
            self.send_with_retry(message)
        except NotificationError as exc:
            logger.error(
                "Order confirmation could not be sent",
                order_id=key[0],
                transaction_id=key[1],
                error=str(exc),
            )
            return DispatchOutcome.FAILED
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(key)

        logger.info("Order confirmation sent", order_id=key[0], transaction_id=key[1])
        return DispatchOutcome.SENT

    def confirmation_in_progress(self, order_id: str, transaction_id: str | None) -> bool:
        with self._in_flight_lock:
            return (str(order_id), transaction_id or "") in self._in_flight

    # -------------------------------------------------------------------
    # Cash voucher
    # -------------------------------------------------------------------
    def send_cash_voucher(
        self,
        transaction_id: str,
        recipient: str | None,
        voucher_url: str,
        amount: str,
        currency: str | None = None,
        customer_name: str | None = None,
        expires_at: str | None = None,
    ) -> DispatchOutcome:
        if not recipient:
            logger.warning("No recipient for cash voucher notice", transaction_id=transaction_id)
            return DispatchOutcome.SKIPPED

        now = self.clock()
        with self._voucher_lock:
            self._forget_expired_vouchers(now)
            last_sent = self._voucher_sent_at.get(transaction_id)
            if last_sent is not None and now - last_sent < self.voucher_window_seconds:
                logger.info(
                    "Cash voucher notice rate limited",
                    transaction_id=transaction_id,
                    seconds_since_last=round(now - last_sent, 3),
                )
                return DispatchOutcome.RATE_LIMITED
            self._voucher_sent_at[transaction_id] = now

        try:
            message = self._render(
                NotificationKind.CASH_VOUCHER,
                recipient,
                {
                    "customer_name": customer_name,
                    "voucher_url": voucher_url,
                    "amount": amount,
                    "currency": currency,
                    "expires_at": expires_at,
                },
            )
            self.send_with_retry(message)
        except NotificationError as exc:
            with self._voucher_lock:
                if self._voucher_sent_at.get(transaction_id) == now:
                    del self._voucher_sent_at[transaction_id]
            logger.error(
                "Cash voucher notice could not be sent",
                transaction_id=transaction_id,
                error=str(exc),
            )
            return DispatchOutcome.FAILED

        logger.info("Cash voucher notice sent", transaction_id=transaction_id)
        return DispatchOutcome.SENT

    def _forget_expired_vouchers(self, now: float) -> None:
        """Drop timestamps whose rate-limit window has passed; caller holds ``_voucher_lock``."""
        expired = [
            transaction_id
            for transaction_id, sent_at in self._voucher_sent_at.items()
            if now - sent_at >= self.voucher_window_seconds
        ]
        for transaction_id in expired:
            del self._voucher_sent_at[transaction_id]
