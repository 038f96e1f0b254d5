"""Billing settings, read from the environment by the process entry point."""

import os
from dataclasses import dataclass, field


def _csv(value: str) -> frozenset[str]:
    return frozenset(part.strip().upper() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class BillingSettings:
    """Externally supplied configuration for the billing engine."""

    webhook_secret: str | None = None
    cron_secret: str | None = None

    gateway: str = "fake"
    gateway_secret_key: str | None = None
    gateway_api_url: str = "https://api.tosspayments.com"
    gateway_timeout: float = 10.0

    counter_store_url: str = "memory://"

    timezone: str = "Asia/Seoul"
    max_attempts: int = 3
    grace_period_days: int = 3
    cancel_only_countries: frozenset[str] = field(default_factory=lambda: frozenset({"KR"}))

    webhook_max_retries: int = 5
    webhook_lookback_hours: int = 24
    webhook_retry_batch_size: int = 100

    @classmethod
    def from_env(cls, environ=None) -> "BillingSettings":
        env = os.environ if environ is None else environ
        return cls(
            webhook_secret=env.get("BILLING_WEBHOOK_SECRET") or None,
            cron_secret=env.get("BILLING_CRON_SECRET") or None,
            gateway=env.get("BILLING_GATEWAY", "fake"),
            gateway_secret_key=env.get("TOSS_SECRET_KEY") or None,
            gateway_api_url=env.get("TOSS_API_URL", "https://api.tosspayments.com"),
            gateway_timeout=float(env.get("BILLING_GATEWAY_TIMEOUT", "10")),
            counter_store_url=env.get("COUNTER_STORE_URL", "memory://"),
            timezone=env.get("BILLING_TIMEZONE", "Asia/Seoul"),
            max_attempts=int(env.get("BILLING_MAX_ATTEMPTS", "3")),
            grace_period_days=int(env.get("BILLING_GRACE_PERIOD_DAYS", "3")),
            cancel_only_countries=_csv(env.get("BILLING_CANCEL_ONLY_COUNTRIES", "KR")),
            webhook_max_retries=int(env.get("WEBHOOK_MAX_RETRIES", "5")),
            webhook_lookback_hours=int(env.get("WEBHOOK_LOOKBACK_HOURS", "24")),
            webhook_retry_batch_size=int(env.get("WEBHOOK_RETRY_BATCH_SIZE", "100")),
        )
