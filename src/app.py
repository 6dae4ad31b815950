"""Payment reconciliation FastAPI application.

Receives payment gateway webhooks and answers the storefront's payment
status checks. Each request under ``/payments`` is wrapped in the
reconciliation domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - unset / "test" → in-memory providers, sync processing
#   - "production"   → PostgreSQL, async event processing
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from reconciliation.domain import reconciliation  # noqa: E402

reconciliation.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Payment Reconciliation API",
    description="Idempotent payment gateway webhook processing",
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the reconciliation domain context for payment requests."""
    if request.url.path.startswith("/payments"):
        with reconciliation.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs, etc.
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from reconciliation.api import payment_router  # noqa: E402

app.include_router(payment_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": reconciliation.name})
