"""Typed webhook envelope.

The gateway wraps every notification as ``{id, type, created, data: {object}}``.
``data.object`` is one of several object kinds; it becomes a tagged union
keyed by the object's ``object`` field, falling back to the prefix of the
event type (``checkout.session.completed`` carries a ``checkout.session``)
when the field is absent. Anything unrecognized is kept as ``UnknownObject``
so unhandled event types still flow through to the ledger.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from reconciliation.gateway.objects import (
    ChargeObject,
    CheckoutSessionObject,
    PaymentIntentObject,
    UnknownObject,
)

_KNOWN_KINDS = {"payment_intent", "checkout.session", "charge"}


def _payload_kind(value: Any) -> str:
    kind = value.get("object") if isinstance(value, dict) else getattr(value, "object", None)
    return kind if kind in _KNOWN_KINDS else "unknown"


Payload = Annotated[
    Union[
        Annotated[PaymentIntentObject, Tag("payment_intent")],
        Annotated[CheckoutSessionObject, Tag("checkout.session")],
        Annotated[ChargeObject, Tag("charge")],
        Annotated[UnknownObject, Tag("unknown")],
    ],
    Discriminator(_payload_kind),
]


class GatewayEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created_at: datetime | None = None
    payload: Payload

    @classmethod
    def from_envelope(cls, envelope: dict) -> "GatewayEvent":
        """Validate a decoded webhook body.

        Raises:
            pydantic.ValidationError: a mandatory field is missing or malformed.
        """
        data = envelope.get("data")
        data_object = dict(data.get("object") or {}) if isinstance(data, dict) else {}
        event_type = envelope.get("type")
        if "object" not in data_object and isinstance(event_type, str) and "." in event_type:
            data_object["object"] = event_type.rsplit(".", 1)[0]

        created = envelope.get("created")
        return cls.model_validate(
            {
                "id": envelope.get("id"),
                "type": event_type,
                "created_at": datetime.fromtimestamp(created, UTC) if isinstance(created, int | float) else None,
                "payload": data_object,
            }
        )

    @property
    def object_id(self) -> str:
        return self.payload.id

    @property
    def correlation_key(self) -> str | None:
        """Payment-intent id the event belongs to, used to serialize related events."""
        payload = self.payload
        if isinstance(payload, PaymentIntentObject):
            return payload.id
        if isinstance(payload, CheckoutSessionObject):
            return payload.payment_intent_id
        if isinstance(payload, ChargeObject):
            return payload.payment_intent
        return None
