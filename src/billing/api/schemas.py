"""Pydantic request/response schemas for the Billing API.

These are external contracts, kept separate from internal Protean
commands and aggregates.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class WebhookAckResponse(BaseModel):
    received: bool = True
    event_id: str
    status: str


class ErrorResponse(BaseModel):
    error: str


class JobResponse(BaseModel):
    success: bool
    timestamp: datetime
    result: dict[str, Any] | None = None
    error: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "success": True,
                    "timestamp": "2026-03-01T00:05:00+00:00",
                    "result": {"processed": 12, "failed": 1, "errors": 0, "due": 12, "succeeded": 11},
                }
            ]
        }
    }


class JobRunSchema(BaseModel):
    job_name: str
    started_at: datetime
    finished_at: datetime | None = None
    succeeded: bool
    processed: int = 0
    failed: int = 0
    errors: int = 0
    last_error: str | None = None


class HealthResponse(BaseModel):
    status: str
    subscriptions_due_today: int
    failed_last_24h: int
    last_success_at: datetime | None = None
    recent_runs: list[JobRunSchema] = []
