"""Payment gateway port (abstract interface).

The billing engine only ever charges a stored credential (billing key).
Business outcomes, including declines, come back as a ``ChargeResult``;
faults where the outcome is unknown (timeouts, connection errors, 5xx)
are raised as ``TransientGatewayError``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ChargeRequest:
    """Everything the gateway needs to charge a billing key once."""

    billing_key: str
    customer_key: str
    amount: float
    currency: str
    order_id: str
    order_name: str
    idempotency_key: str


@dataclass(frozen=True)
class ChargeResult:
    """Result of a billing-key charge attempt."""

    success: bool
    payment_key: str | None = None
    gateway_status: str | None = None
    approved_at: datetime | None = None
    failure_code: str | None = None
    failure_reason: str | None = None
    # A decline the gateway marks as permanent (stolen card, revoked key...)
    retriable: bool = True


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name = "abstract"

    @abstractmethod
    def charge(self, request: ChargeRequest) -> ChargeResult:
        """Charge a stored billing key.

        Must be idempotent on ``request.idempotency_key``: a repeated key
        returns the original outcome without charging again.
        """
        ...

    def close(self) -> None:  # noqa: B027
        """Release network resources held by the adapter."""
