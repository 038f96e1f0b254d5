"""Subscription aggregate root with Plan value object and CouponApplication entity.

A subscription is a user's right to paid access (``status``) plus their
intent to be billed automatically (``recurring_status``/``auto_renew``).
The two move independently: a cancelled or deactivated subscription keeps
paid access until ``end_date``.

State Machine:
    status:           ACTIVE → EXPIRED
    recurring_status: ACTIVE ⇄ INACTIVE (retry budget exhausted / key re-registered)
                      ACTIVE → CANCELLED (user cancel)
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    Date,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from billing.domain import billing
from billing.subscription.events import (
    AutoRenewChanged,
    BillingKeyRegistered,
    BillingKeyRemoved,
    RecurringBillingCancelled,
    RecurringBillingDeactivated,
    SubscriptionChargeFailed,
    SubscriptionExpired,
    SubscriptionRenewed,
)
from billing.utils.time import utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SubscriptionStatus(Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class RecurringStatus(Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class ChargeQuote:
    """What the next renewal will cost after coupons."""

    original_amount: float
    discount_amount: float
    amount: float
    currency: str
    coupon_code: str | None = None

    @property
    def is_waived(self) -> bool:
        return self.amount <= 0


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@billing.value_object(part_of="Subscription")
class Plan:
    """The plan being renewed: price and cadence, captured on the subscription."""

    plan_id = String(required=True, max_length=100)
    name = String(max_length=255)
    price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="KRW")
    duration_days = Integer(required=True, min_value=1)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@billing.entity(part_of="Subscription")
class CouponApplication:
    """A recurring coupon discounting a number of future renewals.

    ``remaining_months`` of None means the coupon never runs out.
    """

    code = String(required=True, max_length=50)
    percent_discount = Integer(min_value=0, max_value=100)
    flat_discount = Float(min_value=0.0)
    remaining_months = Integer(min_value=0)
    applied_count = Integer(default=0)
    is_active = Boolean(default=True)

    @property
    def is_applicable(self) -> bool:
        return bool(self.is_active) and (self.remaining_months is None or self.remaining_months > 0)

    def discount_on(self, price: float) -> float:
        if self.percent_discount:
            return float(math.floor(price * self.percent_discount / 100))
        if self.flat_discount:
            return min(self.flat_discount, price)
        return 0.0

    def consume(self) -> None:
        self.applied_count = (self.applied_count or 0) + 1
        if self.remaining_months is not None:
            self.remaining_months = max(self.remaining_months - 1, 0)
            if self.remaining_months == 0:
                self.is_active = False


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@billing.aggregate
class Subscription:
    """A user's paid access and the recurring billing that keeps it alive."""

    user_id = Identifier(required=True)
    plan = ValueObject(Plan, required=True)
    status = String(choices=SubscriptionStatus, default=SubscriptionStatus.ACTIVE.value)
    recurring_status = String(choices=RecurringStatus, default=RecurringStatus.INACTIVE.value)
    auto_renew = Boolean(default=False)
    next_billing_date = Date()
    end_date = Date(required=True)
    country_code = String(max_length=2, default="KR")
    billing_key = String(max_length=255)
    failed_attempts = Integer(default=0)
    last_failure_reason = String(max_length=500)
    last_failure_at = DateTime()
    grace_period_end = DateTime()
    last_billing_date = Date()
    coupons = HasMany(CouponApplication)
    created_at = DateTime(default=utcnow)
    updated_at = DateTime()

    @invariant.post
    def next_billing_date_only_while_billing_is_on(self):
        if self.next_billing_date is None:
            return
        if not self.auto_renew or self.recurring_status != RecurringStatus.ACTIVE.value:
            raise ValidationError(
                {"next_billing_date": ["Next billing date requires auto-renew and active recurring billing"]}
            )

    @invariant.post
    def recurring_billing_requires_a_billing_key(self):
        if self.recurring_status == RecurringStatus.ACTIVE.value and not self.billing_key:
            raise ValidationError({"billing_key": ["Recurring billing requires a stored billing key"]})

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_billable(self) -> bool:
        return (
            self.status == SubscriptionStatus.ACTIVE.value
            and self.recurring_status == RecurringStatus.ACTIVE.value
            and bool(self.auto_renew)
        )

    @property
    def current_attempt(self) -> int:
        """Attempt number of the next charge within the current cycle."""
        return (self.failed_attempts or 0) + 1

    def active_coupon(self) -> CouponApplication | None:
        for coupon in self.coupons:
            if coupon.is_applicable:
                return coupon
        return None

    def quote(self) -> ChargeQuote:
        price = self.plan.price
        coupon = self.active_coupon()
        discount = coupon.discount_on(price) if coupon else 0.0
        return ChargeQuote(
            original_amount=price,
            discount_amount=discount,
            amount=max(price - discount, 0.0),
            currency=self.plan.currency,
            coupon_code=coupon.code if coupon and discount else None,
        )

    # -------------------------------------------------------------------
    # Charge outcomes
    # -------------------------------------------------------------------
    def record_successful_charge(
        self,
        billing_date: date,
        amount: float,
        coupon_code: str | None = None,
        charged_at: datetime | None = None,
    ) -> None:
        """Extend paid access by one plan duration and schedule the next cycle."""
        if self.status != SubscriptionStatus.ACTIVE.value:
            raise ValidationError({"status": ["Only active subscriptions can be renewed"]})

        charged_at = charged_at or utcnow()
        with atomic_change(self):
            self.end_date = self.end_date + timedelta(days=self.plan.duration_days)
            if self.auto_renew and self.recurring_status == RecurringStatus.ACTIVE.value:
                self.next_billing_date = self.end_date
            self.last_billing_date = billing_date
            self.failed_attempts = 0
            self.last_failure_reason = None
            self.last_failure_at = None
            self.grace_period_end = None
            if coupon_code:
                for coupon in self.coupons:
                    if coupon.code == coupon_code and coupon.is_applicable:
                        coupon.consume()
                        break
            self.updated_at = charged_at

        self.raise_(
            SubscriptionRenewed(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                billing_date=billing_date,
                amount=amount,
                new_end_date=self.end_date,
                next_billing_date=self.next_billing_date,
                coupon_code=coupon_code,
                renewed_at=charged_at,
            )
        )

    def record_failed_charge(
        self,
        reason: str,
        error_code: str | None = None,
        failed_at: datetime | None = None,
        max_attempts: int = 3,
        grace_period_days: int = 3,
        retriable: bool = True,
    ) -> bool:
        """Count a failed attempt. Returns True when recurring billing was abandoned.

        The subscription stays due: neither ``end_date`` nor
        ``next_billing_date`` moves. The grace period starts at the first
        failure of a cycle.
        """
        failed_at = failed_at or utcnow()
        with atomic_change(self):
            self.failed_attempts = (self.failed_attempts or 0) + 1
            self.last_failure_reason = reason
            self.last_failure_at = failed_at
            if self.grace_period_end is None:
                self.grace_period_end = failed_at + timedelta(days=grace_period_days)
            self.updated_at = failed_at

        self.raise_(
            SubscriptionChargeFailed(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                failed_attempts=self.failed_attempts,
                reason=reason,
                error_code=error_code,
                grace_period_end=self.grace_period_end,
                failed_at=failed_at,
            )
        )

        exhausted = not retriable or self.failed_attempts >= max_attempts
        if exhausted and self.recurring_status == RecurringStatus.ACTIVE.value:
            self.deactivate_recurring(reason, at=failed_at)
            return True
        return False

    def deactivate_recurring(self, reason: str, at: datetime | None = None) -> None:
        """Abandon automatic billing until a billing key is registered again."""
        if self.recurring_status != RecurringStatus.ACTIVE.value:
            raise ValidationError({"recurring_status": ["Recurring billing is not active"]})

        at = at or utcnow()
        with atomic_change(self):
            self.recurring_status = RecurringStatus.INACTIVE.value
            self.next_billing_date = None
            self.updated_at = at

        self.raise_(
            RecurringBillingDeactivated(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                reason=reason,
                deactivated_at=at,
            )
        )

    # -------------------------------------------------------------------
    # User actions (routed through a BillingPolicy)
    # -------------------------------------------------------------------
    def cancel_recurring(self, at: datetime | None = None) -> None:
        """Stop recurring billing as a whole. Paid access runs to ``end_date``."""
        if self.recurring_status == RecurringStatus.CANCELLED.value:
            raise ValidationError({"recurring_status": ["Recurring billing is already cancelled"]})

        at = at or utcnow()
        with atomic_change(self):
            self.recurring_status = RecurringStatus.CANCELLED.value
            self.auto_renew = False
            self.next_billing_date = None
            self.updated_at = at

        self.raise_(
            RecurringBillingCancelled(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                end_date=self.end_date,
                cancelled_at=at,
            )
        )

    def apply_auto_renew(self, enabled: bool, today: date, at: datetime | None = None) -> None:
        """Toggle auto-renew without cancelling recurring billing."""
        if self.status != SubscriptionStatus.ACTIVE.value:
            raise ValidationError({"status": ["Auto-renew can only be changed on an active subscription"]})
        if enabled and not self.billing_key:
            raise ValidationError({"billing_key": ["Register a billing key before enabling auto-renew"]})

        at = at or utcnow()
        with atomic_change(self):
            if enabled:
                self.recurring_status = RecurringStatus.ACTIVE.value
                self.auto_renew = True
                self.next_billing_date = max(self.end_date, today)
            else:
                self.auto_renew = False
                self.next_billing_date = None
            self.updated_at = at

        self.raise_(
            AutoRenewChanged(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                auto_renew=bool(self.auto_renew),
                next_billing_date=self.next_billing_date,
                changed_at=at,
            )
        )

    # -------------------------------------------------------------------
    # Credential lifecycle (gateway webhooks)
    # -------------------------------------------------------------------
    def register_billing_key(self, billing_key: str, today: date, at: datetime | None = None) -> None:
        """Store a newly issued credential and (re)enable recurring billing.

        Resets the retry budget: a fresh credential starts a fresh cycle.
        """
        if self.status != SubscriptionStatus.ACTIVE.value:
            raise ValidationError({"status": ["Cannot register a billing key on an expired subscription"]})

        at = at or utcnow()
        with atomic_change(self):
            self.billing_key = billing_key
            self.recurring_status = RecurringStatus.ACTIVE.value
            self.auto_renew = True
            self.next_billing_date = max(self.end_date, today)
            self.failed_attempts = 0
            self.last_failure_reason = None
            self.last_failure_at = None
            self.grace_period_end = None
            self.updated_at = at

        self.raise_(
            BillingKeyRegistered(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                recurring_status=self.recurring_status,
                next_billing_date=self.next_billing_date,
                registered_at=at,
            )
        )

    def replace_billing_key(self, billing_key: str, at: datetime | None = None) -> None:
        at = at or utcnow()
        with atomic_change(self):
            self.billing_key = billing_key
            self.updated_at = at

        self.raise_(
            BillingKeyRegistered(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                recurring_status=self.recurring_status,
                next_billing_date=self.next_billing_date,
                registered_at=at,
            )
        )

    def remove_billing_key(self, at: datetime | None = None) -> bool:
        """Forget the credential and stop billing. Returns True if billing was on."""
        at = at or utcnow()
        was_billing = self.recurring_status == RecurringStatus.ACTIVE.value
        with atomic_change(self):
            self.billing_key = None
            self.auto_renew = False
            self.next_billing_date = None
            if self.recurring_status == RecurringStatus.ACTIVE.value:
                self.recurring_status = RecurringStatus.INACTIVE.value
            self.updated_at = at

        self.raise_(
            BillingKeyRemoved(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                removed_at=at,
            )
        )
        return was_billing

    # -------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------
    def expire(self, at: datetime | None = None) -> None:
        if self.status == SubscriptionStatus.EXPIRED.value:
            raise ValidationError({"status": ["Subscription is already expired"]})

        at = at or utcnow()
        with atomic_change(self):
            self.status = SubscriptionStatus.EXPIRED.value
            self.auto_renew = False
            self.next_billing_date = None
            if self.recurring_status == RecurringStatus.ACTIVE.value:
                self.recurring_status = RecurringStatus.INACTIVE.value
            self.updated_at = at

        self.raise_(
            SubscriptionExpired(
                subscription_id=str(self.id),
                user_id=str(self.user_id),
                end_date=self.end_date,
                expired_at=at,
            )
        )
