"""BillingHistory aggregate: the append-only billing ledger.

One row per charge attempt or recurring-billing lifecycle event. Rows are
never updated after creation; a billing cycle (subscription × billing date)
ends with at most one SUCCESS row but may collect several FAILED rows on
the way there.
"""

import hashlib
from datetime import date, datetime
from enum import Enum

from protean.fields import Date, DateTime, Float, Identifier, Integer, String, Text

from billing.domain import billing
from billing.utils.time import utcnow

RECURRING_ORDER_PREFIX = "AUTO_"

# The request may have reached the gateway; the charge outcome is unknown
GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
UNKNOWN_OUTCOME_CODES = frozenset({GATEWAY_UNAVAILABLE})


class BillingStatus(Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


def idempotency_key_for(subscription_id, billing_date: date, attempt_number: int) -> str:
    """Deterministic gateway idempotency key for one attempt of one cycle."""
    raw = f"{subscription_id}:{billing_date.isoformat()}:{attempt_number}"
    return hashlib.sha256(raw.encode()).hexdigest()


def order_id_for(subscription_id, billing_date: date, attempt_number: int) -> str:
    """Deterministic gateway order id: ``AUTO_<yyyymmdd>_<subscription prefix>_<attempt>``."""
    prefix = str(subscription_id).replace("-", "")[:12]
    return f"{RECURRING_ORDER_PREFIX}{billing_date.strftime('%Y%m%d')}_{prefix}_{attempt_number}"


@billing.aggregate
class BillingHistory:
    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    billing_key = String(max_length=255)
    amount = Float(required=True)
    original_amount = Float()
    discount_amount = Float(default=0.0)
    currency = String(max_length=3, default="KRW")
    coupon_code = String(max_length=50)
    status = String(choices=BillingStatus, required=True)
    error_code = String(max_length=100)
    error_message = Text()
    billing_date = Date()
    attempt_number = Integer()
    idempotency_key = String(max_length=64)
    order_id = String(max_length=64)
    payment_key = String(max_length=255)
    processed_at = DateTime(required=True)

    @property
    def outcome_unknown(self) -> bool:
        """A FAILED row whose charge may still have been captured."""
        return self.status == BillingStatus.FAILED.value and self.error_code in UNKNOWN_OUTCOME_CODES

    @classmethod
    def success(
        cls,
        subscription_id,
        user_id,
        amount: float,
        billing_date: date,
        payment_key: str | None,
        billing_key: str | None = None,
        attempt_number: int | None = None,
        idempotency_key: str | None = None,
        order_id: str | None = None,
        original_amount: float | None = None,
        discount_amount: float = 0.0,
        coupon_code: str | None = None,
        currency: str = "KRW",
        processed_at: datetime | None = None,
    ) -> "BillingHistory":
        return cls(
            subscription_id=str(subscription_id),
            user_id=str(user_id),
            billing_key=billing_key,
            amount=amount,
            original_amount=original_amount if original_amount is not None else amount,
            discount_amount=discount_amount,
            currency=currency,
            coupon_code=coupon_code,
            status=BillingStatus.SUCCESS.value,
            billing_date=billing_date,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            order_id=order_id,
            payment_key=payment_key,
            processed_at=processed_at or utcnow(),
        )

    @classmethod
    def failure(
        cls,
        subscription_id,
        user_id,
        amount: float,
        error_message: str,
        error_code: str | None = None,
        billing_date: date | None = None,
        billing_key: str | None = None,
        attempt_number: int | None = None,
        idempotency_key: str | None = None,
        order_id: str | None = None,
        currency: str = "KRW",
        processed_at: datetime | None = None,
    ) -> "BillingHistory":
        return cls(
            subscription_id=str(subscription_id),
            user_id=str(user_id),
            billing_key=billing_key,
            amount=amount,
            original_amount=amount,
            currency=currency,
            status=BillingStatus.FAILED.value,
            error_code=error_code,
            error_message=error_message,
            billing_date=billing_date,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            order_id=order_id,
            processed_at=processed_at or utcnow(),
        )

    @classmethod
    def cancellation(
        cls,
        subscription_id,
        user_id,
        reason: str,
        amount: float = 0.0,
        billing_date: date | None = None,
        billing_key: str | None = None,
        order_id: str | None = None,
        payment_key: str | None = None,
        currency: str = "KRW",
        processed_at: datetime | None = None,
    ) -> "BillingHistory":
        """Terminal row: billing abandoned, cancelled, or a charge refunded."""
        return cls(
            subscription_id=str(subscription_id),
            user_id=str(user_id),
            billing_key=billing_key,
            amount=amount,
            original_amount=amount,
            currency=currency,
            status=BillingStatus.CANCELLED.value,
            error_message=reason,
            billing_date=billing_date,
            order_id=order_id,
            payment_key=payment_key,
            processed_at=processed_at or utcnow(),
        )
