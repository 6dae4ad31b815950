"""Configurable fake payment gateway for development and testing.

This adapter simulates the gateway without any external calls. A webhook is
authentic when its signature is ``test-signature``; sessions and payment
intents are served from whatever the test registered with ``add_session()``
and ``add_transaction()``. ``configure()`` flips every lookup into a
failure, which is how gateway outages are exercised.
"""

import json
import threading
from collections.abc import Sequence

from pydantic import ValidationError as PydanticValidationError

from reconciliation.exceptions import GatewayError, SignatureVerificationError
from reconciliation.gateway.objects import CheckoutSessionObject, PaymentIntentObject
from reconciliation.gateway.port import PaymentGateway

TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.sessions: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def add_session(self, session: dict) -> None:
        self.sessions[session["id"]] = session

    def add_transaction(self, transaction: dict) -> None:
        self.transactions[transaction["id"]] = transaction

    def _record(self, **call) -> None:
        with self._lock:
            self.calls.append(call)

    def calls_to(self, method: str) -> list[dict]:
        with self._lock:
            return [call for call in self.calls if call["method"] == method]

    def verify_event(self, raw_body: bytes, signature: str, secret: str) -> dict:  # noqa: ARG002
        self._record(method="verify_event", signature=signature)
        if signature != TEST_SIGNATURE:
            raise SignatureVerificationError("Invalid webhook signature")
        try:
            envelope = json.loads(raw_body)
        except ValueError as exc:
            raise SignatureVerificationError("Webhook body is not valid JSON") from exc
        if not isinstance(envelope, dict):
            raise SignatureVerificationError("Webhook body is not a JSON object")
        return envelope

    def retrieve_transaction(self, transaction_id: str) -> PaymentIntentObject:
        self._record(method="retrieve_transaction", transaction_id=transaction_id)
        if not self.should_succeed:
            raise GatewayError(self.failure_reason)
        if transaction_id not in self.transactions:
            raise GatewayError(f"No such payment_intent: {transaction_id}")
        try:
            return PaymentIntentObject.model_validate(self.transactions[transaction_id])
        except PydanticValidationError as exc:
            raise GatewayError(f"Malformed payment_intent {transaction_id}") from exc

    def retrieve_session(self, session_id: str, expand: Sequence[str] = ()) -> CheckoutSessionObject:
        self._record(method="retrieve_session", session_id=session_id, expand=list(expand))
        if not self.should_succeed:
            raise GatewayError(self.failure_reason)
        if session_id not in self.sessions:
            raise GatewayError(f"No such checkout.session: {session_id}")

        session = dict(self.sessions[session_id])
        intent_id = session.get("payment_intent")
        if "payment_intent" in expand and isinstance(intent_id, str) and intent_id in self.transactions:
            session["payment_intent"] = self.transactions[intent_id]
        try:
            return CheckoutSessionObject.model_validate(session)
        except PydanticValidationError as exc:
            raise GatewayError(f"Malformed checkout.session {session_id}") from exc
