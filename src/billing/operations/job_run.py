"""JobRun aggregate: one row per scheduled job invocation.

Job functions never let a single subscription's or event's exception
escape their batch. They count it on the run instead, and the health
endpoint reports the counts, so a failed ledger write is visible rather
than swallowed.
"""

import json
from contextlib import contextmanager
from dataclasses import dataclass, field

import structlog
from protean.fields import Boolean, DateTime, Integer, String, Text
from protean.utils.globals import current_domain

from billing.domain import billing
from billing.utils.time import utcnow

logger = structlog.get_logger(__name__)


@billing.aggregate
class JobRun:
    job_name = String(required=True, max_length=50)
    started_at = DateTime(required=True)
    finished_at = DateTime()
    succeeded = Boolean(default=False)
    processed = Integer(default=0)
    failed = Integer(default=0)
    errors = Integer(default=0)
    last_error = Text()
    summary = Text()  # JSON object of job-specific counters


@billing.repository(part_of=JobRun)
class JobRunRepository:
    def recent(self, limit: int = 10) -> list[JobRun]:
        return self._dao.query.order_by("-started_at").limit(limit).all().items

    def latest_per_job(self) -> dict[str, JobRun]:
        latest: dict[str, JobRun] = {}
        for run in self.recent(limit=100):
            latest.setdefault(run.job_name, run)
        return latest


@dataclass
class JobTally:
    """Counters a job fills in while it runs."""

    processed: int = 0
    failed: int = 0
    errors: int = 0
    last_error: str | None = None
    extra: dict = field(default_factory=dict)

    def record_error(self, exc: BaseException) -> None:
        self.errors += 1
        self.last_error = f"{type(exc).__name__}: {exc}"

    def bump(self, counter: str, by: int = 1) -> None:
        self.extra[counter] = self.extra.get(counter, 0) + by

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "errors": self.errors,
            **self.extra,
        }


def _save_run(job_name: str, started_at, tally: JobTally, succeeded: bool) -> None:
    run = JobRun(
        job_name=job_name,
        started_at=started_at,
        finished_at=utcnow(),
        succeeded=succeeded,
        processed=tally.processed,
        failed=tally.failed,
        errors=tally.errors,
        last_error=tally.last_error,
        summary=json.dumps(tally.extra),
    )
    current_domain.repository_for(JobRun).add(run)


@contextmanager
def track_job(job_name: str):
    """Log and persist one run of ``job_name``."""
    started_at = utcnow()
    tally = JobTally()
    logger.info("billing_job.started", job=job_name)
    try:
        yield tally
    except Exception as exc:
        tally.record_error(exc)
        logger.exception("billing_job.failed", job=job_name, **tally.as_dict())
        _save_run(job_name, started_at, tally, succeeded=False)
        raise

    _save_run(job_name, started_at, tally, succeeded=True)
    logger.info("billing_job.completed", job=job_name, **tally.as_dict())
