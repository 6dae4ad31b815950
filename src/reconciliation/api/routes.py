"""FastAPI routes for payment reconciliation — gateway webhook and payment status."""

import structlog
from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from reconciliation.api.schemas import PaymentStatusResponse, WebhookAckResponse
from reconciliation.domain import reconciliation
from reconciliation.exceptions import GatewayError, SignatureVerificationError
from reconciliation.webhook import get_engine

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=WebhookAckResponse)
async def receive_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
) -> WebhookAckResponse:
    """Receive a payment gateway notification.

    The signature is computed over the exact bytes sent, so the body is read
    raw. Processing runs on a worker thread; deliveries are handled in
    parallel.
    """
    raw_body = await request.body()
    try:
        ack = await run_in_threadpool(get_engine().handle, raw_body, stripe_signature)
    except SignatureVerificationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return WebhookAckResponse(**ack.to_response())


def _settle_session(session_id: str) -> bool:
    with reconciliation.domain_context():
        return get_engine().fulfillment.settle_session(session_id)


@payment_router.get("/status", response_model=PaymentStatusResponse)
async def payment_status(session_id: str | None = Query(default=None)) -> PaymentStatusResponse:
    """Check a checkout session after the customer returns from the gateway.

    A paid session completes its order on the spot, without waiting for the
    webhook; whichever arrives second is a no-op.
    """
    if not session_id:
        raise HTTPException(status_code=400, detail="session_id is required")

    try:
        paid = await run_in_threadpool(_settle_session, session_id)
    except GatewayError as exc:
        logger.error("Payment status check failed", session_id=session_id, error=str(exc))
        raise HTTPException(status_code=502, detail="Payment gateway unavailable") from exc

    return PaymentStatusResponse(status="completed" if paid else "failed")
