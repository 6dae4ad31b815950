"""Pydantic response/request schemas for the Payments API.

These are external contracts, separate from the webhook envelope models,
whose shape the payment gateway dictates.
"""

from pydantic import BaseModel


class WebhookAckResponse(BaseModel):
    received: bool = True


class PaymentStatusResponse(BaseModel):
    status: str  # completed, failed

