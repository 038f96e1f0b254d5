"""Scheduled renewal: charge every subscription due today.

The gateway call happens outside any unit of work. Its outcome is then
recorded by ``RecordChargeOutcome``, whose handler writes the ledger row and
the subscription change in one unit of work, so for a single subscription
either both land or neither does.
"""

from datetime import date, datetime
from enum import Enum

import structlog
from protean.fields import Boolean, Date, DateTime, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from billing.domain import billing
from billing.errors import TransientGatewayError
from billing.gateway import ChargeRequest, ChargeResult
from billing.ledger.billing_history import (
    GATEWAY_UNAVAILABLE,
    BillingHistory,
    idempotency_key_for,
    order_id_for,
)
from billing.operations.job_run import track_job
from billing.subscription.subscription import Subscription
from billing.utils.time import local_today, utcnow

logger = structlog.get_logger(__name__)


class ChargeOutcome(Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DEACTIVATED = "DEACTIVATED"
    SKIPPED = "SKIPPED"


@billing.command(part_of="Subscription")
class RecordChargeOutcome:
    """Record the result of one charge attempt against a billing cycle."""

    subscription_id = Identifier(required=True)
    billing_date = Date(required=True)
    attempt_number = Integer(required=True)
    idempotency_key = String(required=True, max_length=64)
    order_id = String(required=True, max_length=64)
    succeeded = Boolean(default=False)
    amount = Float(required=True)
    original_amount = Float()
    discount_amount = Float(default=0.0)
    coupon_code = String(max_length=50)
    payment_key = String(max_length=255)
    error_code = String(max_length=100)
    error_message = Text()
    retriable = Boolean(default=True)
    max_attempts = Integer(default=3)
    grace_period_days = Integer(default=3)
    processed_at = DateTime(required=True)


def book_successful_charge(
    subscription: Subscription,
    billing_date: date,
    amount: float,
    processed_at: datetime,
    payment_key: str | None = None,
    attempt_number: int | None = None,
    idempotency_key: str | None = None,
    order_id: str | None = None,
    original_amount: float | None = None,
    discount_amount: float = 0.0,
    coupon_code: str | None = None,
) -> None:
    """Append the SUCCESS row and renew the subscription (same unit of work)."""
    current_domain.repository_for(BillingHistory).append(
        BillingHistory.success(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            amount=amount,
            billing_date=billing_date,
            payment_key=payment_key,
            billing_key=subscription.billing_key,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            order_id=order_id,
            original_amount=original_amount,
            discount_amount=discount_amount,
            coupon_code=coupon_code,
            currency=subscription.plan.currency,
            processed_at=processed_at,
        )
    )
    subscription.record_successful_charge(
        billing_date=billing_date,
        amount=amount,
        coupon_code=coupon_code,
        charged_at=processed_at,
    )
    current_domain.repository_for(Subscription).add(subscription)


def book_failed_charge(
    subscription: Subscription,
    billing_date: date | None,
    amount: float,
    reason: str,
    processed_at: datetime,
    max_attempts: int,
    grace_period_days: int,
    error_code: str | None = None,
    retriable: bool = True,
    attempt_number: int | None = None,
    idempotency_key: str | None = None,
    order_id: str | None = None,
) -> bool:
    """Append the FAILED row and count the attempt. True if billing was abandoned.

    Exhausting the budget appends the terminal CANCELLED row in the same
    unit of work.
    """
    ledger = current_domain.repository_for(BillingHistory)
    ledger.append(
        BillingHistory.failure(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            amount=amount,
            error_message=reason,
            error_code=error_code,
            billing_date=billing_date,
            billing_key=subscription.billing_key,
            attempt_number=attempt_number,
            idempotency_key=idempotency_key,
            order_id=order_id,
            currency=subscription.plan.currency,
            processed_at=processed_at,
        )
    )
    deactivated = subscription.record_failed_charge(
        reason=reason,
        error_code=error_code,
        failed_at=processed_at,
        max_attempts=max_attempts,
        grace_period_days=grace_period_days,
        retriable=retriable,
    )
    if deactivated:
        ledger.append(
            BillingHistory.cancellation(
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                reason=f"Recurring billing deactivated: {reason}",
                billing_date=billing_date,
                billing_key=subscription.billing_key,
                currency=subscription.plan.currency,
                processed_at=processed_at,
            )
        )
    current_domain.repository_for(Subscription).add(subscription)
    return deactivated


@billing.command_handler(part_of=Subscription)
class RecordChargeOutcomeHandler:
    @handle(RecordChargeOutcome)
    def record_charge_outcome(self, command: RecordChargeOutcome):
        ledger = current_domain.repository_for(BillingHistory)
        subscription = current_domain.repository_for(Subscription).get(command.subscription_id)

        # A webhook may have reconciled this cycle while the charge was in flight
        if ledger.has_success_for_cycle(subscription.id, command.billing_date):
            return ChargeOutcome.SKIPPED.value

        if command.succeeded:
            book_successful_charge(
                subscription,
                billing_date=command.billing_date,
                amount=command.amount,
                processed_at=command.processed_at,
                payment_key=command.payment_key,
                attempt_number=command.attempt_number,
                idempotency_key=command.idempotency_key,
                order_id=command.order_id,
                original_amount=command.original_amount,
                discount_amount=command.discount_amount or 0.0,
                coupon_code=command.coupon_code,
            )
            return ChargeOutcome.SUCCESS.value

        # A definite result for this order is already booked (e.g. by a webhook)
        if any(not row.outcome_unknown for row in ledger.by_order_id(command.order_id)):
            return ChargeOutcome.SKIPPED.value

        deactivated = book_failed_charge(
            subscription,
            billing_date=command.billing_date,
            amount=command.amount,
            reason=command.error_message or "Payment failed",
            processed_at=command.processed_at,
            max_attempts=command.max_attempts,
            grace_period_days=command.grace_period_days,
            error_code=command.error_code,
            retriable=command.retriable,
            attempt_number=command.attempt_number,
            idempotency_key=command.idempotency_key,
            order_id=command.order_id,
        )
        return ChargeOutcome.DEACTIVATED.value if deactivated else ChargeOutcome.FAILED.value


def _attempt_charge(services, subscription: Subscription, request: ChargeRequest, amount: float) -> ChargeResult:
    if amount <= 0:
        logger.info("charge.waived", subscription_id=str(subscription.id), order_id=request.order_id)
        return ChargeResult(
            success=True,
            payment_key=f"WAIVED_{request.order_id}",
            gateway_status="WAIVED",
            approved_at=utcnow(),
        )
    if not subscription.billing_key:
        return ChargeResult(
            success=False,
            failure_code="MISSING_BILLING_KEY",
            failure_reason="No stored billing key",
            retriable=False,
        )
    try:
        return services.gateway.charge(request)
    except TransientGatewayError as exc:
        return ChargeResult(
            success=False,
            gateway_status="UNKNOWN",
            failure_code=GATEWAY_UNAVAILABLE,
            failure_reason=str(exc),
            retriable=True,
        )


def charge_subscription(services, subscription_id, billing_date: date, as_of: datetime | None = None) -> str:
    """Charge one subscription for one billing cycle and record the outcome.

    Safe to repeat: a cycle that already has a SUCCESS row is skipped. An
    attempt whose outcome was never recorded, or that timed out at the
    gateway, is re-sent with the same idempotency key.
    """
    as_of = as_of or utcnow()
    settings = services.settings
    subscription = current_domain.repository_for(Subscription).get(subscription_id)

    if not subscription.is_billable:
        return ChargeOutcome.SKIPPED.value
    ledger = current_domain.repository_for(BillingHistory)
    if ledger.has_success_for_cycle(subscription.id, billing_date):
        return ChargeOutcome.SKIPPED.value

    attempt = ledger.next_attempt_for_cycle(subscription.id, billing_date, default=subscription.current_attempt)
    quote = subscription.quote()
    request = ChargeRequest(
        billing_key=subscription.billing_key or "",
        customer_key=str(subscription.user_id),
        amount=quote.amount,
        currency=quote.currency,
        order_id=order_id_for(subscription.id, billing_date, attempt),
        order_name=f"{subscription.plan.name or subscription.plan.plan_id} renewal",
        idempotency_key=idempotency_key_for(subscription.id, billing_date, attempt),
    )
    logger.info(
        "charge.attempt",
        subscription_id=str(subscription.id),
        billing_date=billing_date.isoformat(),
        attempt=attempt,
        amount=quote.amount,
        idempotency_key=request.idempotency_key,
    )

    result = _attempt_charge(services, subscription, request, quote.amount)

    outcome = current_domain.process(
        RecordChargeOutcome(
            subscription_id=str(subscription.id),
            billing_date=billing_date,
            attempt_number=attempt,
            idempotency_key=request.idempotency_key,
            order_id=request.order_id,
            succeeded=result.success,
            amount=quote.amount,
            original_amount=quote.original_amount,
            discount_amount=quote.discount_amount,
            coupon_code=quote.coupon_code,
            payment_key=result.payment_key,
            error_code=result.failure_code,
            error_message=result.failure_reason,
            retriable=result.retriable,
            max_attempts=settings.max_attempts,
            grace_period_days=settings.grace_period_days,
            processed_at=as_of,
        ),
        asynchronous=False,
    )

    if result.success:
        logger.info("charge.succeeded", subscription_id=str(subscription.id), payment_key=result.payment_key)
    else:
        logger.warning(
            "charge.failed",
            subscription_id=str(subscription.id),
            code=result.failure_code,
            reason=result.failure_reason,
            outcome=outcome,
        )
    return outcome


def tally_outcome(tally, outcome: str) -> None:
    if outcome == ChargeOutcome.SKIPPED.value:
        tally.bump("skipped")
        return
    tally.processed += 1
    if outcome == ChargeOutcome.SUCCESS.value:
        tally.bump("succeeded")
    else:
        tally.failed += 1
        if outcome == ChargeOutcome.DEACTIVATED.value:
            tally.bump("deactivated")


def process_subscriptions_due(services, as_of: datetime | None = None) -> dict:
    """Charge every subscription whose next billing date is today (local time)."""
    as_of = as_of or utcnow()
    today = local_today(as_of, services.settings.timezone)

    with track_job("process_due") as tally:
        due = current_domain.repository_for(Subscription).due_on(today)
        tally.extra["due"] = len(due)
        for subscription in due:
            try:
                outcome = charge_subscription(services, subscription.id, today, as_of=as_of)
            except Exception as exc:
                tally.record_error(exc)
                logger.exception("Renewal aborted", subscription_id=str(subscription.id))
                continue
            tally_outcome(tally, outcome)

    return tally.as_dict()
