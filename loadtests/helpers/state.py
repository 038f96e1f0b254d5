"""Per-user state tracking for Locust load test scenarios.

Each Locust user instance maintains its own state; nothing is shared across users.
State keeps the deliveries a user already sent so follow-up tasks can
redeliver them and check the receiver answers with ``duplicate``.
"""

from dataclasses import dataclass, field


@dataclass
class WebhookState:
    """Tracks deliveries sent by one simulated gateway."""

    sent: list[tuple[bytes, dict]] = field(default_factory=list)
    processed: int = 0
    duplicates: int = 0
    in_progress: int = 0

    def remember(self, body: bytes, headers: dict, keep: int = 50) -> None:
        self.sent.append((body, headers))
        if len(self.sent) > keep:
            self.sent.pop(0)


@dataclass
class SchedulerState:
    """Tracks job triggers sent by one simulated scheduler."""

    runs: dict[str, int] = field(default_factory=dict)
    rate_limited: int = 0
    last_health: str | None = None
