"""Process-wide collaborators, constructed and closed by the entry point."""

from dataclasses import dataclass

import structlog

from billing.gateway import PaymentGateway, build_gateway
from billing.ratelimit import CounterStore, RateLimiter, build_counter_store
from billing.settings import BillingSettings

logger = structlog.get_logger(__name__)


@dataclass
class BillingServices:
    settings: BillingSettings
    gateway: PaymentGateway
    counter_store: CounterStore
    limiter: RateLimiter

    @classmethod
    def from_settings(cls, settings: BillingSettings) -> "BillingServices":
        counter_store = build_counter_store(settings.counter_store_url)
        services = cls(
            settings=settings,
            gateway=build_gateway(settings),
            counter_store=counter_store,
            limiter=RateLimiter(counter_store),
        )
        logger.info(
            "Billing services ready",
            gateway=services.gateway.name,
            counter_store=type(counter_store).__name__,
        )
        return services

    def close(self) -> None:
        self.gateway.close()
        self.counter_store.close()
