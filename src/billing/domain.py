"""Billing bounded context: recurring charges and gateway webhook reconciliation.

Keeps existing subscriptions billed on schedule against stored payment
credentials, records every attempt in an append-only ledger, reconciles
asynchronous gateway callbacks into the same subscription state machine,
and retries failures inside a bounded grace period.
"""

import structlog
from protean.domain import Domain

billing = Domain(name="billing")

logger = structlog.get_logger(__name__)
