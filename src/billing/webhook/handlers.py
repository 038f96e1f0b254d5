"""Per-event-type webhook handlers and the dispatch table.

Handlers run inside the unit of work that marks the event processed, so
an exception here rolls back every ledger and subscription change the
handler made and leaves the event for the retry job.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime

import structlog
from protean.utils.globals import current_domain

from billing.ledger.billing_history import (
    RECURRING_ORDER_PREFIX,
    BillingHistory,
    idempotency_key_for,
)
from billing.subscription.renewal import book_failed_charge, book_successful_charge
from billing.subscription.subscription import Subscription, SubscriptionStatus
from billing.utils.time import local_today

logger = structlog.get_logger(__name__)

_RECURRING_ORDER = re.compile(rf"^{RECURRING_ORDER_PREFIX}(\d{{8}})_([0-9A-Za-z]+)_(\d+)$")


@dataclass(frozen=True)
class WebhookContext:
    as_of: datetime
    timezone: str
    max_attempts: int
    grace_period_days: int

    @property
    def today(self) -> date:
        return local_today(self.as_of, self.timezone)


@dataclass(frozen=True)
class RecurringOrder:
    billing_date: date
    subscription_prefix: str
    attempt_number: int


def parse_recurring_order_id(order_id: str | None) -> RecurringOrder | None:
    """Decode ``AUTO_<yyyymmdd>_<subscription prefix>_<attempt>``; None for other orders."""
    match = _RECURRING_ORDER.match(order_id or "")
    if not match:
        return None
    try:
        billing_date = datetime.strptime(match.group(1), "%Y%m%d").date()
    except ValueError:
        return None
    return RecurringOrder(billing_date, match.group(2), int(match.group(3)))


def _subscription_for_order(order_id: str, order: RecurringOrder, data: dict) -> Subscription | None:
    subscriptions = current_domain.repository_for(Subscription)
    rows = current_domain.repository_for(BillingHistory).by_order_id(order_id)
    if rows:
        return subscriptions.get(rows[0].subscription_id)

    customer_key = data.get("customerKey")
    if not customer_key:
        return None
    for subscription in subscriptions.active_for_user(customer_key):
        if str(subscription.id).replace("-", "").startswith(order.subscription_prefix):
            return subscription
    return None


def _amount(data: dict) -> float:
    return float(data.get("totalAmount") or data.get("amount") or 0)


# ---------------------------------------------------------------------------
# Payment reconciliation
# ---------------------------------------------------------------------------
def on_payment_done(data: dict, ctx: WebhookContext) -> None:
    """A recurring charge the gateway captured; renew if the cycle is not booked yet."""
    order_id = data.get("orderId")
    order = parse_recurring_order_id(order_id)
    if order is None:
        logger.info("Ignoring non-recurring payment", order_id=order_id)
        return

    subscription = _subscription_for_order(order_id, order, data)
    if subscription is None:
        logger.warning("No subscription for recurring order", order_id=order_id)
        return

    ledger = current_domain.repository_for(BillingHistory)
    if ledger.has_success_for_cycle(subscription.id, order.billing_date):
        return

    amount = _amount(data)
    if subscription.status != SubscriptionStatus.ACTIVE.value:
        logger.warning(
            "Captured charge for an inactive subscription",
            subscription_id=str(subscription.id),
            order_id=order_id,
        )
        ledger.append(
            BillingHistory.success(
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                amount=amount,
                billing_date=order.billing_date,
                payment_key=data.get("paymentKey"),
                attempt_number=order.attempt_number,
                order_id=order_id,
                currency=subscription.plan.currency,
                processed_at=ctx.as_of,
            )
        )
        return

    quote = subscription.quote()
    book_successful_charge(
        subscription,
        billing_date=order.billing_date,
        amount=amount,
        processed_at=ctx.as_of,
        payment_key=data.get("paymentKey"),
        attempt_number=order.attempt_number,
        idempotency_key=idempotency_key_for(subscription.id, order.billing_date, order.attempt_number),
        order_id=order_id,
        original_amount=quote.original_amount,
        discount_amount=max(quote.original_amount - amount, 0.0),
        coupon_code=quote.coupon_code if quote.amount == amount else None,
    )
    logger.info("Recurring charge reconciled from webhook", subscription_id=str(subscription.id), order_id=order_id)


def on_payment_failed(data: dict, ctx: WebhookContext) -> None:
    """A recurring charge failure the scheduled job never recorded, or only saw time out, counts as an attempt."""
    order_id = data.get("orderId")
    order = parse_recurring_order_id(order_id)
    if order is None:
        logger.info("Ignoring non-recurring payment", order_id=order_id)
        return

    ledger = current_domain.repository_for(BillingHistory)
    if any(not row.outcome_unknown for row in ledger.by_order_id(order_id)):
        return

    subscription = _subscription_for_order(order_id, order, data)
    if subscription is None or not subscription.is_billable:
        logger.info("No billable subscription for failed order", order_id=order_id)
        return
    if ledger.has_success_for_cycle(subscription.id, order.billing_date):
        return

    failure = data.get("failure") or {}
    book_failed_charge(
        subscription,
        billing_date=order.billing_date,
        amount=_amount(data),
        reason=failure.get("message") or "Payment failed",
        processed_at=ctx.as_of,
        max_attempts=ctx.max_attempts,
        grace_period_days=ctx.grace_period_days,
        error_code=failure.get("code"),
        attempt_number=order.attempt_number,
        idempotency_key=idempotency_key_for(subscription.id, order.billing_date, order.attempt_number),
        order_id=order_id,
    )


def on_payment_cancelled(data: dict, ctx: WebhookContext) -> None:
    """Full or partial refund of a booked charge."""
    order_id = data.get("orderId")
    rows = current_domain.repository_for(BillingHistory).by_order_id(order_id) if order_id else []
    if not rows:
        logger.info("Ignoring cancellation for an order not in the ledger", order_id=order_id)
        return

    booked = rows[0]
    cancels = data.get("cancels") or []
    amount = float(cancels[-1].get("cancelAmount", 0)) if cancels else _amount(data)
    current_domain.repository_for(BillingHistory).append(
        BillingHistory.cancellation(
            subscription_id=booked.subscription_id,
            user_id=booked.user_id,
            reason=(cancels[-1].get("cancelReason") if cancels else None) or "Payment cancelled at gateway",
            amount=amount,
            billing_date=booked.billing_date,
            billing_key=booked.billing_key,
            order_id=order_id,
            payment_key=data.get("paymentKey"),
            currency=booked.currency,
            processed_at=ctx.as_of,
        )
    )


# ---------------------------------------------------------------------------
# Credential lifecycle
# ---------------------------------------------------------------------------
def _current_subscription(data: dict) -> Subscription | None:
    customer_key = data.get("customerKey")
    if not customer_key:
        logger.warning("Billing key event without a customer key")
        return None
    subscription = current_domain.repository_for(Subscription).current_for_user(customer_key)
    if subscription is None:
        logger.info("No active subscription for customer", customer_key=customer_key)
    return subscription


def on_billing_key_issued(data: dict, ctx: WebhookContext) -> None:
    if not data.get("billingKey"):
        logger.warning("Billing key issued event without a billing key", customer_key=data.get("customerKey"))
        return
    subscription = _current_subscription(data)
    if subscription is None:
        return
    subscription.register_billing_key(data["billingKey"], today=ctx.today, at=ctx.as_of)
    current_domain.repository_for(Subscription).add(subscription)


def on_billing_key_updated(data: dict, ctx: WebhookContext) -> None:
    if not data.get("billingKey"):
        return
    subscription = _current_subscription(data)
    if subscription is None:
        return
    subscription.replace_billing_key(data["billingKey"], at=ctx.as_of)
    current_domain.repository_for(Subscription).add(subscription)


def on_billing_key_removed(data: dict, ctx: WebhookContext) -> None:
    subscription = _current_subscription(data)
    if subscription is None or not subscription.billing_key:
        return

    cycle = subscription.next_billing_date
    billing_key = subscription.billing_key
    was_billing = subscription.remove_billing_key(at=ctx.as_of)
    if was_billing:
        current_domain.repository_for(BillingHistory).append(
            BillingHistory.cancellation(
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                reason="Billing key removed at gateway",
                billing_date=cycle,
                billing_key=billing_key,
                currency=subscription.plan.currency,
                processed_at=ctx.as_of,
            )
        )
    current_domain.repository_for(Subscription).add(subscription)


HANDLERS = {
    "PAYMENT.DONE": on_payment_done,
    "RECURRING_PAYMENT.DONE": on_payment_done,
    "PAYMENT.FAILED": on_payment_failed,
    "RECURRING_PAYMENT.FAILED": on_payment_failed,
    "PAYMENT.CANCELED": on_payment_cancelled,
    "PAYMENT.PARTIAL_CANCELED": on_payment_cancelled,
    "BILLING_KEY.ISSUED": on_billing_key_issued,
    "BILLING_KEY.UPDATED": on_billing_key_updated,
    "BILLING_KEY.REMOVED": on_billing_key_removed,
}


def dispatch(event_type: str, data: dict, ctx: WebhookContext) -> bool:
    """Run the handler for ``event_type``. False when the type is not handled."""
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled webhook event type", event_type=event_type)
        return False
    handler(data, ctx)
    return True
