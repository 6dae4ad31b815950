"""Event verifier — authenticates a webhook delivery and parses its envelope.

A delivery that fails here is answered with 400 and never touches the
ledger or any order.
"""

import structlog
from pydantic import ValidationError as PydanticValidationError

from reconciliation.exceptions import SignatureVerificationError
from reconciliation.gateway import get_gateway
from reconciliation.gateway.port import PaymentGateway
from reconciliation.webhook.envelope import GatewayEvent

logger = structlog.get_logger(__name__)


class EventVerifier:
    def __init__(self, secret: str, gateway: PaymentGateway | None = None):
        self.secret = secret
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway if self._gateway is not None else get_gateway()

    def verify(self, raw_body: bytes, signature: str | None) -> GatewayEvent:
        if not signature:
            logger.warning("Webhook rejected, missing signature header")
            raise SignatureVerificationError("Missing webhook signature")

        try:
            envelope = self.gateway.verify_event(raw_body, signature, self.secret)
        except SignatureVerificationError as exc:
            logger.warning("Webhook rejected, signature verification failed", error=str(exc))
            raise

        try:
            return GatewayEvent.from_envelope(envelope)
        except PydanticValidationError as exc:
            logger.warning(
                "Webhook rejected, malformed envelope",
                event_id=envelope.get("id"),
                errors=exc.error_count(),
            )
            raise SignatureVerificationError("Webhook envelope is missing mandatory fields") from exc
