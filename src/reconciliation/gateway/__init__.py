"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing
- StripeGateway for production, selected with ``PAYMENT_GATEWAY=stripe``
"""

import os

from reconciliation.gateway.fake_adapter import FakeGateway
from reconciliation.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to FakeGateway."""
    global _current_gateway
    if _current_gateway is None:
        adapter = os.environ.get("PAYMENT_GATEWAY", "fake")
        if adapter == "fake":
            _current_gateway = FakeGateway()
        elif adapter == "stripe":
            from reconciliation.gateway.stripe_adapter import StripeGateway
            from reconciliation.settings import EngineSettings

            settings = EngineSettings.from_env()
            _current_gateway = StripeGateway(
                api_key=settings.stripe_api_key,
                timeout_seconds=settings.gateway_timeout_seconds,
            )
        else:
            raise ValueError(f"Unknown payment gateway: {adapter}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
