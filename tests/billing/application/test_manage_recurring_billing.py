"""Tests for user-initiated cancel and auto-renew commands."""

from datetime import UTC, date, datetime

import pytest
from billing.ledger.billing_history import BillingHistory
from billing.subscription.management import CancelRecurringBilling, SetAutoRenew
from billing.subscription.renewal import process_subscriptions_due
from billing.subscription.subscription import RecurringStatus, Subscription
from protean import current_domain
from protean.exceptions import ValidationError

AS_OF = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
TODAY = date(2026, 3, 1)


def _reload(subscription_id):
    return current_domain.repository_for(Subscription).get(subscription_id)


def _ledger(subscription_id):
    return current_domain.repository_for(BillingHistory).for_subscription(subscription_id)


class TestCancelRecurringBilling:
    def test_cancel_records_ledger_row(self, subscription_factory):
        subscription = subscription_factory(end_date=date(2026, 3, 15))

        current_domain.process(
            CancelRecurringBilling(subscription_id=str(subscription.id), cancelled_at=AS_OF),
            asynchronous=False,
        )

        cancelled = _reload(subscription.id)
        assert cancelled.recurring_status == RecurringStatus.CANCELLED.value
        assert cancelled.auto_renew is False
        assert cancelled.next_billing_date is None
        assert cancelled.end_date == date(2026, 3, 15)
        rows = _ledger(subscription.id)
        assert [row.status for row in rows] == ["CANCELLED"]
        assert rows[0].error_message == "Recurring billing cancelled by user"

    def test_cancel_inactive_billing_writes_no_row(self, subscription_factory):
        subscription = subscription_factory(recurring=False)

        current_domain.process(
            CancelRecurringBilling(subscription_id=str(subscription.id), cancelled_at=AS_OF),
            asynchronous=False,
        )

        assert _reload(subscription.id).recurring_status == RecurringStatus.CANCELLED.value
        assert _ledger(subscription.id) == []

    def test_cannot_cancel_twice(self, subscription_factory):
        subscription = subscription_factory()
        command = CancelRecurringBilling(subscription_id=str(subscription.id), cancelled_at=AS_OF)
        current_domain.process(command, asynchronous=False)

        with pytest.raises(ValidationError):
            current_domain.process(command, asynchronous=False)


class TestSetAutoRenew:
    def test_cancel_only_country_rejects_toggle(self, subscription_factory):
        subscription = subscription_factory(country_code="KR")

        with pytest.raises(ValidationError):
            current_domain.process(
                SetAutoRenew(subscription_id=str(subscription.id), enabled=False, today=TODAY, changed_at=AS_OF),
                asynchronous=False,
            )

        assert _reload(subscription.id).auto_renew is True

    def test_other_country_toggles_off_and_on(self, subscription_factory):
        subscription = subscription_factory(country_code="US", end_date=date(2026, 3, 15))

        current_domain.process(
            SetAutoRenew(subscription_id=str(subscription.id), enabled=False, today=TODAY, changed_at=AS_OF),
            asynchronous=False,
        )
        paused = _reload(subscription.id)
        assert paused.auto_renew is False
        assert paused.next_billing_date is None
        assert paused.recurring_status == RecurringStatus.ACTIVE.value

        current_domain.process(
            SetAutoRenew(subscription_id=str(subscription.id), enabled=True, today=TODAY, changed_at=AS_OF),
            asynchronous=False,
        )
        assert _reload(subscription.id).next_billing_date == date(2026, 3, 15)

    def test_configured_cancel_only_countries(self, subscription_factory):
        subscription = subscription_factory(country_code="KR")

        current_domain.process(
            SetAutoRenew(
                subscription_id=str(subscription.id),
                enabled=False,
                today=TODAY,
                cancel_only_countries="JP",
                changed_at=AS_OF,
            ),
            asynchronous=False,
        )

        assert _reload(subscription.id).auto_renew is False

    def test_paused_subscription_is_not_charged(self, services, gateway, subscription_factory):
        subscription = subscription_factory(country_code="US")
        current_domain.process(
            SetAutoRenew(subscription_id=str(subscription.id), enabled=False, today=TODAY, changed_at=AS_OF),
            asynchronous=False,
        )

        process_subscriptions_due(services, as_of=AS_OF)

        assert gateway.calls == []
