"""Domain events for the Subscription aggregate.

Versioned, immutable facts about a subscription's billing state. They are
written to the event store alongside the aggregate change that raised them.
"""

from protean.fields import Boolean, Date, DateTime, Float, Identifier, Integer, String

from billing.domain import billing


@billing.event(part_of="Subscription")
class SubscriptionRenewed:
    """A charge for a billing cycle succeeded and paid access was extended."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    billing_date = Date(required=True)
    amount = Float(required=True)
    new_end_date = Date(required=True)
    next_billing_date = Date()
    coupon_code = String()
    renewed_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class SubscriptionChargeFailed:
    """A charge attempt for the current billing cycle failed."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    failed_attempts = Integer(required=True)
    reason = String(required=True)
    error_code = String()
    grace_period_end = DateTime()
    failed_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class RecurringBillingDeactivated:
    """Automatic billing was abandoned (retry budget exhausted or credential revoked)."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    reason = String(required=True)
    deactivated_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class RecurringBillingCancelled:
    """The user cancelled recurring billing as a whole."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    end_date = Date(required=True)
    cancelled_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class AutoRenewChanged:
    """Auto-renew was toggled independently of recurring status."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    auto_renew = Boolean()
    next_billing_date = Date()
    changed_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class BillingKeyRegistered:
    """A stored credential was issued or replaced for the subscription."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    recurring_status = String(required=True)
    next_billing_date = Date()
    registered_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class BillingKeyRemoved:
    """The stored credential was revoked at the gateway."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    removed_at = DateTime(required=True)


@billing.event(part_of="Subscription")
class SubscriptionExpired:
    """Paid access ended after the end date passed without renewal."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    user_id = Identifier(required=True)
    end_date = Date(required=True)
    expired_at = DateTime(required=True)
