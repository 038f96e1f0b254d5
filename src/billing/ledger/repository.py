"""Repository for the BillingHistory ledger.

Exposes ``append`` instead of update semantics: a row id that already
exists is refused. Date comparisons run in Python on values normalized
to UTC, since stored timestamps may come back naive.
"""

from datetime import date, datetime

from protean.exceptions import InvalidOperationError, ObjectNotFoundError

from billing.domain import billing
from billing.ledger.billing_history import BillingHistory, BillingStatus
from billing.utils.db import scan
from billing.utils.time import as_aware


@billing.repository(part_of=BillingHistory)
class BillingHistoryRepository:
    def append(self, entry: BillingHistory) -> BillingHistory:
        try:
            self.get(entry.id)
        except ObjectNotFoundError:
            return self.add(entry)
        raise InvalidOperationError(f"Billing history entry {entry.id} already exists and cannot be modified")

    def for_subscription(self, subscription_id) -> list[BillingHistory]:
        rows = scan(self._dao, subscription_id=str(subscription_id))
        return sorted(rows, key=lambda row: as_aware(row.processed_at))

    def for_cycle(self, subscription_id, billing_date: date) -> list[BillingHistory]:
        return [row for row in self.for_subscription(subscription_id) if row.billing_date == billing_date]

    def has_success_for_cycle(self, subscription_id, billing_date: date) -> bool:
        return any(row.status == BillingStatus.SUCCESS.value for row in self.for_cycle(subscription_id, billing_date))

    def failures_for_cycle(self, subscription_id, billing_date: date) -> list[BillingHistory]:
        rows = self.for_cycle(subscription_id, billing_date)
        return [row for row in rows if row.status == BillingStatus.FAILED.value]

    def failed_attempts_for_cycle(self, subscription_id, billing_date: date) -> int:
        return len(self.failures_for_cycle(subscription_id, billing_date))

    def next_attempt_for_cycle(self, subscription_id, billing_date: date, default: int) -> int:
        """Attempt number for the next charge of a cycle.

        After a charge whose outcome is unknown the same attempt is sent
        again, so the gateway sees the same idempotency key and replays the
        first result instead of charging twice. Otherwise the number moves
        past every attempt already recorded, and never below ``default``.
        """
        failures = self.failures_for_cycle(subscription_id, billing_date)
        if not failures:
            return default
        latest = max(row.attempt_number or 0 for row in failures)
        settled = any(not row.outcome_unknown for row in failures if (row.attempt_number or 0) == latest)
        if latest and not settled:
            return latest
        return max(default, latest + 1)

    def by_order_id(self, order_id: str) -> list[BillingHistory]:
        return scan(self._dao, order_id=order_id)

    def with_status_since(self, status: BillingStatus, since: datetime) -> list[BillingHistory]:
        since = as_aware(since)
        rows = scan(self._dao, status=status.value)
        return sorted(
            (row for row in rows if as_aware(row.processed_at) >= since),
            key=lambda row: as_aware(row.processed_at),
        )

    def failures_since(self, since: datetime) -> list[BillingHistory]:
        return self.with_status_since(BillingStatus.FAILED, since)

    def last_success(self) -> BillingHistory | None:
        rows = scan(self._dao, status=BillingStatus.SUCCESS.value)
        if not rows:
            return None
        return max(rows, key=lambda row: as_aware(row.processed_at))
