"""Configurable fake payment gateway for development and testing.

Simulates the gateway's idempotency-key contract: the first request for a
key decides the outcome, later requests with the same key replay it
without creating a second charge. Transient faults are never cached, just
like a request that never reached the gateway. ``timeout_after_capture``
simulates the other kind of timeout: the gateway charged, but the
response was lost.
"""

from datetime import UTC, datetime
from uuid import uuid4

from billing.errors import TransientGatewayError
from billing.gateway.port import ChargeRequest, ChargeResult, PaymentGateway


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_code: str = "REJECT_CARD_PAYMENT"
        self.failure_reason: str = "Card declined"
        self.retriable: bool = True
        self.raise_transient: bool = False
        self.timeout_after_capture: bool = False
        self.calls: list[ChargeRequest] = []
        self.charges: dict[str, ChargeResult] = {}

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        failure_code: str = "REJECT_CARD_PAYMENT",
        retriable: bool = True,
        raise_transient: bool = False,
        timeout_after_capture: bool = False,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.failure_code = failure_code
        self.retriable = retriable
        self.raise_transient = raise_transient
        self.timeout_after_capture = timeout_after_capture

    @property
    def captured(self) -> list[ChargeResult]:
        """Distinct successful charges (one per idempotency key)."""
        return [result for result in self.charges.values() if result.success]

    def charge(self, request: ChargeRequest) -> ChargeResult:
        self.calls.append(request)

        if request.idempotency_key in self.charges:
            return self.charges[request.idempotency_key]

        if self.raise_transient:
            raise TransientGatewayError("Gateway timed out")

        if self.should_succeed:
            result = ChargeResult(
                success=True,
                payment_key=f"fake_pay_{uuid4().hex[:12]}",
                gateway_status="DONE",
                approved_at=datetime.now(UTC),
            )
        else:
            result = ChargeResult(
                success=False,
                gateway_status="ABORTED",
                failure_code=self.failure_code,
                failure_reason=self.failure_reason,
                retriable=self.retriable,
            )

        self.charges[request.idempotency_key] = result
        if self.timeout_after_capture:
            raise TransientGatewayError("Read timed out")
        return result
