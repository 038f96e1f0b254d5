"""Country-dependent billing policies.

Some countries require full-cancellation semantics: auto-renew can only be
switched off by cancelling recurring billing as a whole. Everywhere else
auto-renew toggles independently as long as a billing key is stored. The
difference lives here and nowhere else.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime

from protean.exceptions import ValidationError

from billing.subscription.subscription import Subscription

DEFAULT_CANCEL_ONLY_COUNTRIES = frozenset({"KR"})


class BillingPolicy(ABC):
    name = "abstract"

    def cancel(self, subscription: Subscription, at: datetime | None = None) -> None:
        subscription.cancel_recurring(at=at)

    @abstractmethod
    def set_auto_renew(
        self,
        subscription: Subscription,
        enabled: bool,
        today: date,
        at: datetime | None = None,
    ) -> None: ...


class CancelOnlyPolicy(BillingPolicy):
    """Auto-renew follows recurring status; it is never toggled on its own."""

    name = "cancel_only"

    def set_auto_renew(self, subscription, enabled, today, at=None):
        if enabled:
            raise ValidationError({"auto_renew": ["Register a billing key to resume recurring billing"]})
        raise ValidationError({"auto_renew": ["Auto-renew can only be turned off by cancelling recurring billing"]})


class ToggleablePolicy(BillingPolicy):
    """Auto-renew toggles independently when a billing key exists."""

    name = "toggleable"

    def set_auto_renew(self, subscription, enabled, today, at=None):
        subscription.apply_auto_renew(enabled, today=today, at=at)


_CANCEL_ONLY = CancelOnlyPolicy()
_TOGGLEABLE = ToggleablePolicy()


def policy_for(country_code: str | None, cancel_only_countries=DEFAULT_CANCEL_ONLY_COUNTRIES) -> BillingPolicy:
    """Billing policy for a subscription's country."""
    if (country_code or "").upper() in cancel_only_countries:
        return _CANCEL_ONLY
    return _TOGGLEABLE
