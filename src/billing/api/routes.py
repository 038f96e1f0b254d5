"""FastAPI routes for the Billing domain.

Thin adapters: read the request, run the job or receiver, shape the
response. Domain work runs in the threadpool inside a pushed domain
context, since gateway calls block.
"""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from billing.api.deps import (
    JOB_RATE_LIMIT,
    JOB_RATE_WINDOW_SECONDS,
    get_services,
    rate_limit,
    require_cron_secret,
)
from billing.api.schemas import ErrorResponse, HealthResponse, JobResponse, WebhookAckResponse
from billing.domain import billing
from billing.errors import WebhookRejected
from billing.ledger.health import billing_health
from billing.operations.jobs import DEFAULT_RETENTION_DAYS, JOBS, run_job
from billing.webhook.receiver import receive_webhook

logger = structlog.get_logger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
billing_router = APIRouter(prefix="/billing", tags=["billing"])


def _in_domain(fn, *args, **kwargs):
    with billing.domain_context():
        return fn(*args, **kwargs)


# ---------------------------------------------------------------------------
# Gateway webhooks
# ---------------------------------------------------------------------------
@webhook_router.post(
    "/billing",
    response_model=WebhookAckResponse,
    responses={500: {"model": ErrorResponse}},
)
async def billing_webhook(
    request: Request,
    tosspayments_signature: str | None = Header(default=None),
    tosspayments_webhook_transmission_id: str | None = Header(default=None),
) -> WebhookAckResponse:
    """Receive a payment gateway callback.

    200 for processed and duplicate deliveries, 400 malformed or unsigned,
    401 bad signature, 500 when the handler failed (the gateway redelivers).
    """
    raw_body = await request.body()
    services = get_services(request)
    try:
        receipt = await run_in_threadpool(
            _in_domain,
            receive_webhook,
            services,
            raw_body,
            tosspayments_signature,
            tosspayments_webhook_transmission_id,
        )
    except WebhookRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except Exception:
        logger.exception("webhook.failed")
        error = ErrorResponse(error="Webhook processing failed")
        return JSONResponse(status_code=500, content=error.model_dump())

    return WebhookAckResponse(event_id=receipt.event_id, status=receipt.status.value)


# ---------------------------------------------------------------------------
# Scheduled triggers
# ---------------------------------------------------------------------------
@billing_router.post(
    "/jobs/{job_name}",
    response_model=JobResponse,
    dependencies=[
        Depends(rate_limit("billing-jobs", JOB_RATE_LIMIT, JOB_RATE_WINDOW_SECONDS)),
        Depends(require_cron_secret),
    ],
)
async def trigger_job(job_name: str, request: Request, retention_days: int = Query(DEFAULT_RETENTION_DAYS, ge=1)):
    """Run one scheduled job. Non-2xx tells the scheduler to alert."""
    if job_name not in JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_name}")

    services = get_services(request)
    options = {"retention_days": retention_days} if job_name == "cleanup-webhooks" else {}
    try:
        result = await run_in_threadpool(_in_domain, run_job, job_name, services, **options)
    except Exception as exc:
        logger.exception("Scheduled job failed", job=job_name)
        body = JobResponse(success=False, timestamp=datetime.now(UTC), error=str(exc))
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return JobResponse(success=True, timestamp=datetime.now(UTC), result=result)


@billing_router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Due count, recent failures and last success, for uptime monitoring."""
    services = get_services(request)
    report = await run_in_threadpool(_in_domain, billing_health, services.settings.timezone)
    return HealthResponse(**report)
