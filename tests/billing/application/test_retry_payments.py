"""Tests for bounded payment retry and the grace-period sweep."""

from collections import Counter
from datetime import UTC, date, datetime, timedelta

from billing.ledger.billing_history import BillingHistory, BillingStatus
from billing.subscription.renewal import process_subscriptions_due
from billing.subscription.retry import retry_failed_payments
from billing.subscription.subscription import RecurringStatus, Subscription, SubscriptionStatus
from protean import current_domain

AS_OF = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
TODAY = date(2026, 3, 1)


def _statuses(subscription_id):
    rows = current_domain.repository_for(BillingHistory).for_subscription(subscription_id)
    return Counter(row.status for row in rows)


def _reload(subscription_id):
    return current_domain.repository_for(Subscription).get(subscription_id)


class TestRetrySucceeds:
    def test_fail_once_then_succeed(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(should_succeed=False)
        process_subscriptions_due(services, as_of=AS_OF)

        gateway.configure(should_succeed=True)
        result = retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))

        renewed = _reload(subscription.id)
        assert renewed.status == SubscriptionStatus.ACTIVE.value
        assert renewed.recurring_status == RecurringStatus.ACTIVE.value
        assert renewed.end_date == TODAY + timedelta(days=30)
        assert renewed.failed_attempts == 0
        assert _statuses(subscription.id) == Counter({"FAILED": 1, "SUCCESS": 1})
        assert result["succeeded"] == 1

    def test_retry_uses_next_attempt_key(self, services, gateway, subscription_factory):
        subscription_factory()
        gateway.configure(should_succeed=False)
        process_subscriptions_due(services, as_of=AS_OF)

        gateway.configure(should_succeed=True)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))

        first, second = gateway.calls
        assert first.idempotency_key != second.idempotency_key
        assert first.order_id.endswith("_1")
        assert second.order_id.endswith("_2")

    def test_succeeded_subscription_is_not_retried(self, services, gateway, subscription_factory):
        subscription_factory()
        gateway.configure(should_succeed=False)
        process_subscriptions_due(services, as_of=AS_OF)
        gateway.configure(should_succeed=True)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))

        result = retry_failed_payments(services, as_of=AS_OF + timedelta(hours=12))

        assert len(gateway.calls) == 2
        assert result["skipped"] == 1


class TestRetryAfterTimeout:
    def test_charge_captured_before_timeout_is_not_repeated(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(timeout_after_capture=True)
        process_subscriptions_due(services, as_of=AS_OF)

        gateway.configure()
        result = retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))

        first, second = gateway.calls
        assert second.idempotency_key == first.idempotency_key
        assert second.order_id == first.order_id
        assert len(gateway.captured) == 1
        assert _reload(subscription.id).end_date == TODAY + timedelta(days=30)
        assert _statuses(subscription.id) == Counter({"FAILED": 1, "SUCCESS": 1})
        assert result["succeeded"] == 1

    def test_decline_after_timeout_moves_to_a_new_key(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(raise_transient=True)
        process_subscriptions_due(services, as_of=AS_OF)
        gateway.configure(should_succeed=False)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))

        gateway.configure(should_succeed=True)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=12))

        first, second, third = gateway.calls
        assert second.idempotency_key == first.idempotency_key
        assert third.idempotency_key != first.idempotency_key
        assert len(gateway.captured) == 1
        assert _statuses(subscription.id) == Counter({"FAILED": 2, "SUCCESS": 1})

    def test_repeated_timeouts_still_exhaust_the_budget(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(raise_transient=True)

        process_subscriptions_due(services, as_of=AS_OF)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=12))

        assert len({request.idempotency_key for request in gateway.calls}) == 1
        assert _reload(subscription.id).recurring_status == RecurringStatus.INACTIVE.value
        assert _statuses(subscription.id) == Counter({"FAILED": 3, "CANCELLED": 1})


class TestRetryExhaustion:
    def test_budget_exhaustion_deactivates(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(should_succeed=False)

        process_subscriptions_due(services, as_of=AS_OF)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))
        result = retry_failed_payments(services, as_of=AS_OF + timedelta(hours=12))

        deactivated = _reload(subscription.id)
        assert deactivated.recurring_status == RecurringStatus.INACTIVE.value
        assert deactivated.next_billing_date is None
        assert deactivated.failed_attempts == 3
        assert _statuses(subscription.id) == Counter({"FAILED": 3, "CANCELLED": 1})
        assert result["deactivated"] == 1

    def test_no_further_attempts_after_deactivation(self, services, gateway, subscription_factory):
        subscription_factory()
        gateway.configure(should_succeed=False)
        process_subscriptions_due(services, as_of=AS_OF)
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=6))
        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=12))

        retry_failed_payments(services, as_of=AS_OF + timedelta(hours=18))
        process_subscriptions_due(services, as_of=AS_OF + timedelta(days=1))

        assert len(gateway.calls) == 3

    def test_deactivated_subscription_keeps_paid_access(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(should_succeed=False, retriable=False)

        process_subscriptions_due(services, as_of=AS_OF)

        assert _reload(subscription.id).status == SubscriptionStatus.ACTIVE.value


class TestGracePeriodSweep:
    def test_expired_grace_period_deactivates(self, services, gateway, subscription_factory):
        subscription = subscription_factory(
            end_date=TODAY - timedelta(days=4),
            failed_attempts=1,
            last_failure_reason="Card declined",
            grace_period_end=AS_OF - timedelta(hours=1),
        )

        result = retry_failed_payments(services, as_of=AS_OF)

        assert _reload(subscription.id).recurring_status == RecurringStatus.INACTIVE.value
        assert _statuses(subscription.id) == Counter({"CANCELLED": 1})
        assert result["grace_expired"] == 1
        assert gateway.calls == []

    def test_open_grace_period_is_left_alone(self, services, subscription_factory):
        subscription = subscription_factory(
            failed_attempts=1,
            grace_period_end=AS_OF + timedelta(days=2),
        )

        result = retry_failed_payments(services, as_of=AS_OF)

        assert _reload(subscription.id).recurring_status == RecurringStatus.ACTIVE.value
        assert "grace_expired" not in result

    def test_healthy_subscriptions_are_not_swept(self, services, subscription_factory):
        subscription = subscription_factory(grace_period_end=AS_OF - timedelta(days=1))

        retry_failed_payments(services, as_of=AS_OF)

        assert _reload(subscription.id).recurring_status == RecurringStatus.ACTIVE.value

    def test_retry_after_grace_period_is_refused(self, services, gateway, subscription_factory):
        subscription = subscription_factory()
        gateway.configure(should_succeed=False)
        process_subscriptions_due(services, as_of=AS_OF)

        gateway.configure(should_succeed=True)
        retry_failed_payments(services, as_of=AS_OF + timedelta(days=3, hours=1))

        assert len(gateway.calls) == 1
        assert _reload(subscription.id).recurring_status == RecurringStatus.INACTIVE.value


class TestRetryJobRun:
    def test_reports_candidates(self, services, gateway, subscription_factory):
        subscription_factory(user_id="user-001")
        subscription_factory(user_id="user-002")
        gateway.configure(should_succeed=False)
        process_subscriptions_due(services, as_of=AS_OF)

        result = retry_failed_payments(services, as_of=AS_OF + timedelta(hours=1))

        assert result["candidates"] == 2
        assert result["processed"] == 2
        assert result["failed"] == 2
