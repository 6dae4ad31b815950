"""Stripe payment gateway adapter (production).

Uses the stripe-python SDK to verify webhook signatures with the endpoint's
signing secret and to look up payment intents and checkout sessions. Every
API call is bounded by the configured HTTP timeout.
"""

import json
from collections.abc import Sequence

import stripe
import structlog
from pydantic import ValidationError as PydanticValidationError

from reconciliation.exceptions import GatewayError, SignatureVerificationError
from reconciliation.gateway.objects import CheckoutSessionObject, PaymentIntentObject
from reconciliation.gateway.port import PaymentGateway

logger = structlog.get_logger(__name__)


def _to_plain(stripe_object) -> dict:
    """Convert a StripeObject tree into plain dictionaries."""
    return json.loads(str(stripe_object))


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, timeout_seconds: float = 10.0) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        stripe.api_key = api_key
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    def verify_event(self, raw_body: bytes, signature: str, secret: str) -> dict:
        if not secret:
            raise SignatureVerificationError("Webhook signing secret is not configured")
        try:
            stripe.Webhook.construct_event(raw_body, signature, secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationError(f"Invalid webhook signature: {exc}") from exc
        except ValueError as exc:
            raise SignatureVerificationError("Webhook body is not valid JSON") from exc

        envelope = json.loads(raw_body)
        if not isinstance(envelope, dict):
            raise SignatureVerificationError("Webhook body is not a JSON object")
        return envelope

    def retrieve_transaction(self, transaction_id: str) -> PaymentIntentObject:
        try:
            intent = stripe.PaymentIntent.retrieve(transaction_id, expand=["latest_charge"])
        except stripe.StripeError as exc:
            logger.warning("Payment intent lookup failed", transaction_id=transaction_id, error=str(exc))
            raise GatewayError(f"Could not retrieve payment_intent {transaction_id}: {exc}") from exc

        try:
            return PaymentIntentObject.model_validate(_to_plain(intent))
        except PydanticValidationError as exc:
            raise GatewayError(f"Malformed payment_intent {transaction_id}") from exc

    def retrieve_session(self, session_id: str, expand: Sequence[str] = ()) -> CheckoutSessionObject:
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=list(expand))
        except stripe.StripeError as exc:
            logger.warning("Checkout session lookup failed", session_id=session_id, error=str(exc))
            raise GatewayError(f"Could not retrieve checkout.session {session_id}: {exc}") from exc

        try:
            return CheckoutSessionObject.model_validate(_to_plain(session))
        except PydanticValidationError as exc:
            raise GatewayError(f"Malformed checkout.session {session_id}") from exc
