"""Billing FastAPI application.

Receives payment gateway webhooks and scheduled-job triggers, and serves
the health report. Collaborators (gateway client, counter store) are
built in the lifespan and closed on shutdown.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager

from billing.domain import billing
from billing.services import BillingServices
from billing.settings import BillingSettings
from billing.utils.logging import add_context, clear_context, configure_logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# PROTEAN_ENV selects the config overlay:
#   - unset        → memory providers (development, tests)
#   - "production" → PostgreSQL
billing.init()

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = BillingServices.from_settings(BillingSettings.from_env())
    app.state.services = services
    try:
        yield
    finally:
        services.close()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Billing API",
    description="Recurring billing and payment webhook reconciliation",
    lifespan=lifespan,
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the billing domain context for each request."""
    add_context(method=request.method, path=request.url.path)
    try:
        with billing.domain_context():
            response = await call_next(request)
    finally:
        clear_context()
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from billing.api import billing_router, webhook_router  # noqa: E402

app.include_router(webhook_router)
app.include_router(billing_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": billing.name})
