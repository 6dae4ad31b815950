"""Fake email adapter — records sent emails for testing."""

import threading
from collections.abc import Callable
from uuid import uuid4

from reconciliation.channel.email_port import EmailPort


class FakeEmailAdapter(EmailPort):
    """Email adapter that records messages in memory for test assertions.

    Besides the permanent success/failure switch, ``fail_next()`` scripts a
    number of transient failures (optionally with a status code such as 429)
    before sends start succeeding again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.sent_emails: list[dict] = []
        self.attempts = 0
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"
        self.failure_status_code: int | None = None
        self._scripted_failures: list[tuple[str, int | None]] = []
        self.before_send: Callable[[dict], None] | None = None

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Email delivery failed",
        status_code: int | None = None,
    ):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.failure_status_code = status_code

    def fail_next(self, times: int = 1, failure_reason: str = "Email delivery failed", status_code: int | None = None):
        with self._lock:
            self._scripted_failures.extend([(failure_reason, status_code)] * times)

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: str | None = None,
        sender: str | None = None,
    ) -> dict:
        record = {
            "to": to,
            "subject": subject,
            "body": body,
            "html_body": html_body,
            "sender": sender,
        }
        if self.before_send is not None:
            self.before_send(record)

        with self._lock:
            self.attempts += 1
            if self._scripted_failures:
                reason, status_code = self._scripted_failures.pop(0)
                return {"message_id": None, "status": "failed", "error": reason, "status_code": status_code}

            if not self.should_succeed:
                return {
                    "message_id": None,
                    "status": "failed",
                    "error": self.failure_reason,
                    "status_code": self.failure_status_code,
                }

            message_id = f"email-{uuid4().hex[:12]}"
            self.sent_emails.append({"message_id": message_id, **record})

        return {"message_id": message_id, "status": "sent"}

    def sent_to(self, address: str) -> list[dict]:
        return [email for email in self.sent_emails if email["to"] == address]

    def reset(self):
        """Clear sent emails and scripted behavior (useful between tests)."""
        with self._lock:
            self.sent_emails.clear()
            self._scripted_failures.clear()
            self.attempts = 0
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"
        self.failure_status_code = None
        self.before_send = None
