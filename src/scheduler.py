"""Billing scheduler entry point.

Runs one scheduled job and exits, for cron or any external trigger. Prints
a JSON summary; exit code 1 when the job failed.

Usage:
    python src/scheduler.py process-due
    python src/scheduler.py retry-payments
    python src/scheduler.py retry-webhooks
    python src/scheduler.py cleanup-webhooks --retention-days 30
    python src/scheduler.py expire
"""

import argparse
import json
import sys
from datetime import UTC, datetime

import structlog

from billing.operations.jobs import DEFAULT_RETENTION_DAYS, run_job

logger = structlog.get_logger(__name__)


def run(job_name: str, retention_days: int = DEFAULT_RETENTION_DAYS, environ=None) -> dict:
    """Build services, run ``job_name`` inside the domain context, tear down."""
    from billing.domain import billing
    from billing.services import BillingServices
    from billing.settings import BillingSettings

    billing.init()
    services = BillingServices.from_settings(BillingSettings.from_env(environ))
    options = {"retention_days": retention_days} if job_name == "cleanup-webhooks" else {}
    try:
        with billing.domain_context():
            return run_job(job_name, services, **options)
    finally:
        services.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Billing scheduled jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("process-due", help="Charge subscriptions due today")
    subparsers.add_parser("retry-payments", help="Retry recent failed charges within the grace period")
    subparsers.add_parser("retry-webhooks", help="Re-drive unprocessed webhook events")
    cleanup_parser = subparsers.add_parser("cleanup-webhooks", help="Delete old processed webhook events")
    cleanup_parser.add_argument(
        "--retention-days",
        type=int,
        default=DEFAULT_RETENTION_DAYS,
        help=f"Keep processed events newer than this (default: {DEFAULT_RETENTION_DAYS})",
    )
    subparsers.add_parser("expire", help="Expire lapsed subscriptions")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    args = parser.parse_args(argv)

    from billing.utils.logging import add_context, configure_logging

    # stdout carries only the JSON summary
    configure_logging(level="INFO", json_output=args.json_logs or None, stream=sys.stderr)
    add_context(job=args.command)

    started = datetime.now(UTC)
    try:
        result = run(args.command, retention_days=getattr(args, "retention_days", DEFAULT_RETENTION_DAYS))
    except Exception as exc:
        logger.exception("Scheduled job failed", job=args.command)
        print(json.dumps({"success": False, "job": args.command, "timestamp": started.isoformat(), "error": str(exc)}))
        sys.exit(1)

    print(json.dumps({"success": True, "job": args.command, "timestamp": started.isoformat(), "result": result}))


if __name__ == "__main__":
    main()
