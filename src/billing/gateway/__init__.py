"""Payment gateway factory.

Builds the adapter named by ``BillingSettings.gateway``:
- ``fake``: FakeGateway for development and testing
- ``toss``: TossGateway for production
"""

from billing.gateway.fake_adapter import FakeGateway
from billing.gateway.port import ChargeRequest, ChargeResult, PaymentGateway
from billing.settings import BillingSettings

__all__ = ["ChargeRequest", "ChargeResult", "FakeGateway", "PaymentGateway", "build_gateway"]


def build_gateway(settings: BillingSettings) -> PaymentGateway:
    """Construct the configured payment gateway adapter."""
    if settings.gateway == "fake":
        return FakeGateway()
    if settings.gateway == "toss":
        from billing.gateway.toss_adapter import TossGateway

        return TossGateway(
            secret_key=settings.gateway_secret_key or "",
            api_url=settings.gateway_api_url,
            timeout=settings.gateway_timeout,
        )
    raise ValueError(f"Unknown payment gateway: {settings.gateway}")
