import json
from datetime import UTC, date, datetime

import pytest
from billing.gateway import FakeGateway
from billing.ratelimit import InMemoryCounterStore, RateLimiter
from billing.services import BillingServices
from billing.settings import BillingSettings
from billing.subscription.subscription import CouponApplication, Plan, Subscription
from billing.webhook.signature import sign
from protean import current_domain
from protean.integrations.pytest import DomainFixture

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron-test-secret"

# 10:00 in Seoul on 2026-03-01
AS_OF = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
TODAY = date(2026, 3, 1)


@pytest.fixture(scope="session")
def billing_bed():
    from billing.domain import billing

    bed = DomainFixture(billing)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(billing_bed):
    with billing_bed.domain_context():
        yield


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_772_326_800.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def settings():
    return BillingSettings(
        webhook_secret=WEBHOOK_SECRET,
        cron_secret=CRON_SECRET,
        timezone="Asia/Seoul",
        max_attempts=3,
        grace_period_days=3,
    )


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def services(settings, gateway, clock):
    store = InMemoryCounterStore(clock=clock)
    return BillingServices(
        settings=settings,
        gateway=gateway,
        counter_store=store,
        limiter=RateLimiter(store, clock=clock),
    )


def _build_subscription(
    user_id="user-001",
    price=9900.0,
    duration_days=30,
    end_date=TODAY,
    country_code="KR",
    billing_key="bk_test_001",
    recurring=True,
    coupons=None,
    **overrides,
):
    fields = {
        "user_id": user_id,
        "plan": Plan(
            plan_id="premium-monthly",
            name="Premium Monthly",
            price=price,
            currency="KRW",
            duration_days=duration_days,
        ),
        "status": "ACTIVE",
        "recurring_status": "ACTIVE" if recurring else "INACTIVE",
        "auto_renew": recurring,
        "next_billing_date": end_date if recurring else None,
        "end_date": end_date,
        "country_code": country_code,
        "billing_key": billing_key,
        "coupons": coupons or [],
    }
    fields.update(overrides)
    return Subscription(**fields)


@pytest.fixture()
def subscription_factory():
    def _create(**kwargs):
        subscription = _build_subscription(**kwargs)
        repo = current_domain.repository_for(Subscription)
        repo.add(subscription)
        return repo.get(subscription.id)

    return _create


@pytest.fixture()
def coupon():
    def _coupon(code="WELCOME50", percent_discount=None, flat_discount=None, remaining_months=None):
        return CouponApplication(
            code=code,
            percent_discount=percent_discount,
            flat_discount=flat_discount,
            remaining_months=remaining_months,
        )

    return _coupon


@pytest.fixture()
def signed_webhook():
    """Build (raw body, headers) for a correctly signed gateway delivery."""

    def _build(event_type, data, event_id=None, secret=WEBHOOK_SECRET, timestamp="2026-03-01T10:00:00+09:00"):
        envelope = {"eventType": event_type, "timestamp": timestamp, "data": data}
        if event_id:
            envelope["eventId"] = event_id
        body = json.dumps(envelope).encode()
        return body, {"TossPayments-Signature": sign(body, secret)}

    return _build
