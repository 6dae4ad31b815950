"""Typed views of the gateway objects this context reads.

These are external contracts (anti-corruption layer): webhook payloads and
API lookups are validated into these models once, at the boundary, and
nothing past the boundary touches raw gateway dictionaries. Unknown fields
are ignored.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class GatewayObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Charge
# ---------------------------------------------------------------------------
class ChargeObject(GatewayObject):
    object: Literal["charge"] = "charge"
    status: str | None = None
    amount: int | None = None
    amount_refunded: int | None = None
    refunded: bool = False
    currency: str | None = None
    payment_intent: str | None = None
    payment_method_details: dict[str, Any] | None = None

    @property
    def method_type(self) -> str | None:
        return (self.payment_method_details or {}).get("type")

    @property
    def last4(self) -> str | None:
        card = (self.payment_method_details or {}).get("card") or {}
        return card.get("last4")


# ---------------------------------------------------------------------------
# Payment intent
# ---------------------------------------------------------------------------
class PaymentIntentObject(GatewayObject):
    object: Literal["payment_intent"] = "payment_intent"
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    payment_method_types: list[str] = Field(default_factory=list)
    latest_charge: ChargeObject | str | None = None
    next_action: dict[str, Any] | None = None
    receipt_email: str | None = None

    @property
    def charge(self) -> ChargeObject | None:
        """The latest charge, when the lookup expanded it."""
        return self.latest_charge if isinstance(self.latest_charge, ChargeObject) else None

    @property
    def voucher_details(self) -> dict[str, Any]:
        return (self.next_action or {}).get("oxxo_display_details") or {}

    @property
    def voucher_url(self) -> str | None:
        return self.voucher_details.get("hosted_voucher_url")

    @property
    def voucher_expires_at(self) -> int | None:
        return self.voucher_details.get("expires_after")


# ---------------------------------------------------------------------------
# Checkout session
# ---------------------------------------------------------------------------
class CheckoutSessionObject(GatewayObject):
    object: Literal["checkout.session"] = "checkout.session"
    status: str | None = None
    payment_status: str | None = None
    payment_method_types: list[str] = Field(default_factory=list)
    payment_intent: PaymentIntentObject | str | None = None
    customer_details: dict[str, Any] | None = None
    customer_email: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    url: str | None = None
    line_items: dict[str, Any] | None = None

    @property
    def payment_intent_id(self) -> str | None:
        if isinstance(self.payment_intent, PaymentIntentObject):
            return self.payment_intent.id
        return self.payment_intent

    @property
    def expanded_intent(self) -> PaymentIntentObject | None:
        return self.payment_intent if isinstance(self.payment_intent, PaymentIntentObject) else None

    @property
    def customer_name(self) -> str | None:
        return (self.customer_details or {}).get("name")

    @property
    def email(self) -> str | None:
        return (self.customer_details or {}).get("email") or self.customer_email

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


class UnknownObject(GatewayObject):
    """Any object type this context does not interpret."""

    model_config = ConfigDict(extra="allow")

    object: str | None = None
