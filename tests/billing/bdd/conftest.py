"""Shared BDD fixtures and step definitions for recurring billing."""

from collections import Counter
from datetime import UTC, datetime, timedelta

from billing.ledger.billing_history import BillingHistory
from billing.subscription.renewal import process_subscriptions_due
from billing.subscription.subscription import Subscription
from protean import current_domain
from pytest_bdd import given, parsers, then

AS_OF = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)


def _reload(subscription):
    return current_domain.repository_for(Subscription).get(subscription.id)


def _ledger_counts(subscription):
    rows = current_domain.repository_for(BillingHistory).for_subscription(subscription.id)
    return Counter(row.status for row in rows)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse("a subscription on a {days:d} day plan priced {price:d} KRW due today"),
    target_fixture="subscription",
)
def _due_subscription(subscription_factory, days, price):
    return subscription_factory(price=float(price), duration_days=days)


@given("the gateway declines charges")
def _gateway_declines(gateway):
    gateway.configure(should_succeed=False, failure_reason="Card declined")


@given("the gateway accepts charges")
def _gateway_accepts(gateway):
    gateway.configure(should_succeed=True)


@given("the renewal job has run")
def _renewal_ran(services):
    process_subscriptions_due(services, as_of=AS_OF)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the ledger holds {count:d} "{status}" row'))
@then(parsers.cfparse('the ledger holds {count:d} "{status}" rows'))
def _ledger_holds(subscription, count, status):
    assert _ledger_counts(subscription)[status] == count


@then(parsers.cfparse("the end date moved {days:d} days forward"))
def _end_date_moved(subscription, days):
    assert _reload(subscription).end_date == subscription.end_date + timedelta(days=days)


@then("the end date is unchanged")
def _end_date_unchanged(subscription):
    assert _reload(subscription).end_date == subscription.end_date


@then("the next billing date equals the end date")
def _next_billing_is_end_date(subscription):
    current = _reload(subscription)
    assert current.next_billing_date == current.end_date


@then(parsers.cfparse('recurring billing is "{status}"'))
def _recurring_status(subscription, status):
    assert _reload(subscription).recurring_status == status


@then(parsers.cfparse("the gateway captured {count:d} charge"))
@then(parsers.cfparse("the gateway captured {count:d} charges"))
def _gateway_captured(gateway, count):
    assert len(gateway.captured) == count


@then(parsers.cfparse("the gateway was called {count:d} times"))
def _gateway_called(gateway, count):
    assert len(gateway.calls) == count
