"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and StripeGateway
(production) without changing any engine or application code.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from reconciliation.gateway.objects import CheckoutSessionObject, PaymentIntentObject


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def verify_event(self, raw_body: bytes, signature: str, secret: str) -> dict:
        """Authenticate a webhook delivery and return the decoded envelope.

        Raises:
            SignatureVerificationError: the signature does not match the body,
                or the body is not a JSON object.
        """
        ...

    @abstractmethod
    def retrieve_transaction(self, transaction_id: str) -> PaymentIntentObject:
        """Fetch a payment intent, with its latest charge expanded.

        Raises:
            GatewayError: the lookup failed or timed out.
        """
        ...

    @abstractmethod
    def retrieve_session(self, session_id: str, expand: Sequence[str] = ()) -> CheckoutSessionObject:
        """Fetch a checkout session, expanding the named relations.

        Raises:
            GatewayError: the lookup failed or timed out.
        """
        ...
