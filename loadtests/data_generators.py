"""Faker-based data generators for Locust load test scenarios.

Each generator produces gateway webhook envelopes shaped the way the
billing receiver parses them (``eventType``, ``timestamp``, ``data``) and
signs them the way the gateway does, so deliveries pass verification.
"""

import base64
import hashlib
import hmac
import json
import os
import random
import uuid
from datetime import date, datetime, timedelta, timezone

from faker import Faker

fake = Faker("ko_KR")

KST = timezone(timedelta(hours=9))

WEBHOOK_SECRET = os.getenv("BILLING_WEBHOOK_SECRET", "whsec_loadtest")
CRON_SECRET = os.getenv("BILLING_CRON_SECRET", "")

PLAN_PRICES = [4900, 9900, 14900, 29000]


# ---------- Identifiers ----------


def customer_key() -> str:
    """Gateway customer key; the billing engine uses the user id here."""
    return f"user-lt-{uuid.uuid4().hex[:10]}"


def payment_key() -> str:
    return f"tpk_lt_{uuid.uuid4().hex}"


def billing_key() -> str:
    return f"bk_lt_{uuid.uuid4().hex[:16]}"


def recurring_order_id(billing_date: date | None = None, attempt: int = 1) -> str:
    """Order id in the renewal format: ``AUTO_<yyyymmdd>_<12 hex>_<attempt>``."""
    billing_date = billing_date or datetime.now(KST).date()
    return f"AUTO_{billing_date.strftime('%Y%m%d')}_{uuid.uuid4().hex[:12]}_{attempt}"


def one_off_order_id() -> str:
    return f"ORDER_{fake.bothify('????-########').upper()}"


def event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


# ---------- Webhook data blocks ----------


def payment_done_data(order_id: str | None = None, amount: int | None = None) -> dict:
    amount = amount or random.choice(PLAN_PRICES)
    return {
        "paymentKey": payment_key(),
        "orderId": order_id or recurring_order_id(),
        "customerKey": customer_key(),
        "status": "DONE",
        "totalAmount": amount,
        "method": "카드",
        "approvedAt": datetime.now(KST).isoformat(),
    }


def payment_failed_data(order_id: str | None = None) -> dict:
    code, message = random.choice(
        [
            ("REJECT_CARD_COMPANY", "카드사에서 거절되었습니다"),
            ("EXCEED_MAX_DAILY_PAYMENT_COUNT", "일일 결제 한도를 초과했습니다"),
            ("INVALID_CARD_EXPIRATION", "카드 유효기간이 만료되었습니다"),
        ]
    )
    return {
        "paymentKey": payment_key(),
        "orderId": order_id or recurring_order_id(),
        "customerKey": customer_key(),
        "status": "ABORTED",
        "totalAmount": random.choice(PLAN_PRICES),
        "failure": {"code": code, "message": message},
    }


def payment_cancelled_data(order_id: str | None = None, amount: int | None = None) -> dict:
    amount = amount or random.choice(PLAN_PRICES)
    return {
        "paymentKey": payment_key(),
        "orderId": order_id or recurring_order_id(),
        "customerKey": customer_key(),
        "status": "CANCELED",
        "totalAmount": amount,
        "cancels": [{"cancelAmount": amount, "cancelReason": fake.sentence(nb_words=4)}],
    }


def billing_key_data(customer: str | None = None) -> dict:
    return {
        "customerKey": customer or customer_key(),
        "billingKey": billing_key(),
        "cardCompany": random.choice(["신한", "현대", "삼성", "국민"]),
        "cardNumber": f"4330****{random.randint(1000, 9999)}",
    }


# ---------- Envelopes ----------


def webhook_envelope(event_type: str, data: dict, with_event_id: bool = True) -> dict:
    envelope = {
        "eventType": event_type,
        "timestamp": datetime.now(KST).isoformat(),
        "data": data,
    }
    if with_event_id:
        envelope["eventId"] = event_id()
    return envelope


def signed_delivery(envelope: dict, secret: str | None = None) -> tuple[bytes, dict]:
    """Serialize ``envelope`` and return (raw body, headers) with a valid signature."""
    body = json.dumps(envelope, ensure_ascii=False).encode()
    digest = hmac.new((secret or WEBHOOK_SECRET).encode(), body, hashlib.sha256).digest()
    headers = {
        "Content-Type": "application/json",
        "TossPayments-Signature": base64.b64encode(digest).decode(),
        "TossPayments-Webhook-Transmission-Id": f"tx_{uuid.uuid4().hex[:16]}",
    }
    return body, headers


def random_delivery() -> tuple[str, bytes, dict]:
    """A signed delivery of a weighted random event type: (event type, body, headers)."""
    event_type = random.choices(
        ["PAYMENT.DONE", "PAYMENT.FAILED", "PAYMENT.CANCELED", "BILLING_KEY.ISSUED", "PAYMENT.WAITING_FOR_DEPOSIT"],
        weights=[50, 20, 10, 15, 5],
    )[0]
    builders = {
        "PAYMENT.DONE": payment_done_data,
        "PAYMENT.FAILED": payment_failed_data,
        "PAYMENT.CANCELED": payment_cancelled_data,
        "BILLING_KEY.ISSUED": billing_key_data,
        "PAYMENT.WAITING_FOR_DEPOSIT": lambda: {"orderId": one_off_order_id(), "status": "WAITING_FOR_DEPOSIT"},
    }
    body, headers = signed_delivery(webhook_envelope(event_type, builders[event_type]()))
    return event_type, body, headers


def cron_headers() -> dict:
    return {"Authorization": f"Bearer {CRON_SECRET}"} if CRON_SECRET else {}
