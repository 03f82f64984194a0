"""
Seed demo orders into Redis for the agent walkthrough:
- DELAYED123456: PENDING and 15 minutes old, so a targeted lookup needs verifyIdentity first
- 1234567891: app shows SUCCESS but the provider reported FAILED (dispute -> refund)
- AMLHOLD00001: held for AML review
This script is idempotent and safe to run in local/dev/CI.
"""
import json
import os
import time

from redis import Redis

from remitdesk.core import state_machine as sm
from remitdesk.store.models import Order, StatusChange
from remitdesk.store.order_repo import ORDER_PREFIX, PRINCIPAL_INDEX_PREFIX

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
PRINCIPAL_ID = os.getenv("DEFAULT_PRINCIPAL_ID", "agent1")

MINUTE_MS = 60 * 1000

# orderNo -> (age in minutes, displayed status, authoritative status, beneficiary, amount, extra fields)
DEMO_ORDERS = {
    "DELAYED123456": (15, sm.PENDING, sm.PENDING, ("123", "Zhang San", "CN", "CNY", 1.89), 1000.0, {}),
    "1234567890": (2 * 24 * 60, sm.SUCCESS, sm.SUCCESS, ("125", "John Smith", "US", "USD", 0.27), 2500.0, {}),
    "1234567891": (24 * 60, sm.SUCCESS, sm.FAILED, ("124", "Li Si", "CN", "CNY", 1.89), 5000.0,
                   {"failReason": "Beneficiary account closed"}),
    "1234567892": (3, sm.PENDING, sm.PENDING, ("127", "Raj Patel", "IN", "INR", 22.50), 800.0,
                   {"transferMode": "UPI"}),
    "AMLHOLD00001": (30, sm.AML_HOLD, sm.AML_HOLD, ("123", "Zhang San", "CN", "CNY", 1.89), 9000.0,
                     {"anomalous": True}),
}


def build_orders(now_ms: int):
    orders = []
    for order_no, (age_min, status, actual, bene, amount, extra) in DEMO_ORDERS.items():
        bene_id, bene_name, country, currency, rate = bene
        created = now_ms - age_min * MINUTE_MS
        fee = round(min(max(amount * 0.01, 5.0), 50.0), 2)
        order = Order(
            orderNo=order_no,
            principalId=PRINCIPAL_ID,
            createdAt=created,
            status=status,
            actualStatus=actual,
            beneficiaryId=bene_id,
            beneficiaryName=bene_name,
            fromAmount=amount,
            feeAmount=fee,
            totalPayAmount=round(amount + fee, 2),
            receivedAmount=round(amount * rate, 2),
            exchangeRate=rate,
            country=country,
            currency=currency,
            statusHistory=[StatusChange(status=sm.PENDING, timestamp=created, reason="Transfer initiated",
                                        updatedBy="customer")],
            updatedAt=created,
            **extra,
        )
        if status != sm.PENDING:
            order.statusHistory.append(StatusChange(status=status, timestamp=created + MINUTE_MS,
                                                    reason="Demo seed", updatedBy="bank"))
        orders.append(order)
    return orders


def main():
    r = Redis.from_url(REDIS_URL, decode_responses=True)
    orders = build_orders(int(time.time() * 1000))
    for order in orders:
        r.set(f"{ORDER_PREFIX}{order.orderNo}", json.dumps(order.to_dict()))
        r.zadd(f"{PRINCIPAL_INDEX_PREFIX}{order.principalId}", {order.orderNo: order.createdAt})
    print(f"OK: seeded {len(orders)} orders for {PRINCIPAL_ID} into {REDIS_URL}")


if __name__ == "__main__":
    main()
