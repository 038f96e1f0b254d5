"""Toss Payments billing-key adapter.

Charges a stored billing key through ``POST /v1/billing/{billingKey}``
with an ``Idempotency-Key`` header. Every request carries an explicit
timeout; timeouts, connection errors and 5xx responses are raised as
``TransientGatewayError``, 4xx responses become declined ``ChargeResult``s.
"""

import base64
from datetime import datetime

import requests
import structlog

from billing.errors import TransientGatewayError
from billing.gateway.port import ChargeRequest, ChargeResult, PaymentGateway

logger = structlog.get_logger(__name__)

# Declines that will not succeed on a later attempt within the same cycle
NON_RETRIABLE_CODES = frozenset(
    {
        "INVALID_CARD_LOST_OR_STOLEN",
        "INVALID_STOPPED_CARD",
        "NOT_FOUND_BILLING_KEY",
        "INVALID_BILLING_KEY",
        "RESTRICTED_CARD",
    }
)


class TossGateway(PaymentGateway):
    """Production Toss Payments gateway adapter."""

    name = "toss"

    def __init__(self, secret_key: str, api_url: str, timeout: float = 10.0) -> None:
        if not secret_key:
            raise ValueError("TossGateway requires a secret key")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        token = base64.b64encode(f"{secret_key}:".encode()).decode()
        self.session.headers.update(
            {
                "Authorization": f"Basic {token}",
                "Content-Type": "application/json",
            }
        )

    def charge(self, request: ChargeRequest) -> ChargeResult:
        url = f"{self.api_url}/v1/billing/{request.billing_key}"
        body = {
            "customerKey": request.customer_key,
            "amount": request.amount,
            "currency": request.currency,
            "orderId": request.order_id,
            "orderName": request.order_name,
        }
        try:
            response = self.session.post(
                url,
                json=body,
                headers={"Idempotency-Key": request.idempotency_key},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientGatewayError(f"Gateway unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise TransientGatewayError(f"Gateway error {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientGatewayError("Gateway returned a non-JSON body") from exc

        if response.ok:
            approved_at = payload.get("approvedAt")
            return ChargeResult(
                success=True,
                payment_key=payload.get("paymentKey"),
                gateway_status=payload.get("status", "DONE"),
                approved_at=datetime.fromisoformat(approved_at) if approved_at else None,
            )

        code = payload.get("code", "UNKNOWN")
        logger.warning(
            "Gateway declined charge",
            order_id=request.order_id,
            code=code,
            status_code=response.status_code,
        )
        return ChargeResult(
            success=False,
            gateway_status="ABORTED",
            failure_code=code,
            failure_reason=payload.get("message", "Payment failed"),
            retriable=code not in NON_RETRIABLE_CODES,
        )

    def close(self) -> None:
        self.session.close()
