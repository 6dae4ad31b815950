"""Error taxonomy for webhook reconciliation.

Only ``SignatureVerificationError`` is ever visible to the payment gateway
(as a 400 response). Everything else is logged for operators and the
gateway receives a plain acknowledgment.
"""


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class SignatureVerificationError(ReconciliationError):
    """The webhook payload could not be authenticated or parsed."""


class ProcessingError(ReconciliationError):
    """Applying an event to order state failed.

    Raised from inside the retry loop; once the attempt budget is exhausted
    it is surfaced to the caller and the event is left out of the ledger so
    the gateway's own redelivery can try again later.
    """

    def __init__(self, message: str, event_id: str | None = None, attempts: int | None = None):
        super().__init__(message)
        self.event_id = event_id
        self.attempts = attempts


class StaleRecordError(ProcessingError):
    """A read-modify-write lost against a concurrent writer."""


class InvalidTransitionError(ReconciliationError):
    """The requested order status change is not in the transition table."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target


class StockResolutionError(ReconciliationError):
    """No stock-bearing product or variant matches a line item."""

    def __init__(self, reference: str):
        super().__init__(f"No stock entry found for {reference}")
        self.reference = reference


class NotificationError(ReconciliationError):
    """An email could not be delivered by the channel adapter."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class GatewayError(ReconciliationError):
    """A lookup against the payment gateway failed or timed out."""
