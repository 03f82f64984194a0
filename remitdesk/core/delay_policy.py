"""
Delay policy: when does looking at one order require a verified identity?

An order is delayed when it is older than the threshold and either still
non-terminal or anomalous (AML hold or compliance flag). The policy is pure on
the order and the clock; the gate decides what to do with the answer.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from remitdesk.core import state_machine as sm
from remitdesk.settings import settings
from remitdesk.store.models import Order
from remitdesk.utils.time import Clock, elapsed_minutes, now_ms

GCC = ("AE", "SA", "KW", "QA", "BH", "OM")
SOUTH_ASIA = ("IN", "PK", "BD", "LK")
WESTERN = ("US", "CA", "GB", "AU")

# Typical provider processing time per transfer mode, in hours
_MODE_HOURS = {
    "CASH_PICK_UP": 0.5,
    "MOBILE_WALLET": 0.25,
    "UPI": 0.1,
}


def processing_hours(order: Order) -> float:
    if order.transferMode in _MODE_HOURS:
        return _MODE_HOURS[order.transferMode]
    if order.country in GCC:
        return 1.0
    if order.country in SOUTH_ASIA:
        return 2.0
    if order.country in WESTERN:
        return 4.0
    return 6.0


def expected_delivery(order: Order) -> datetime:
    """Creation time + processing time, pushed past the weekend."""
    eta = datetime.fromtimestamp(order.createdAt / 1000, tz=timezone.utc) + timedelta(hours=processing_hours(order))
    if eta.weekday() == 5:
        eta += timedelta(days=2)
    elif eta.weekday() == 6:
        eta += timedelta(days=1)
    return eta


def delay_reasons(order: Order) -> List[str]:
    reasons = [
        "Beneficiary bank processing delays",
        "Weekend or public holiday processing schedule",
        "International banking cut-off times",
        "Additional compliance checks",
    ]
    if order.country in WESTERN:
        reasons.append("Time zone differences affecting processing")
    if order.transferMode == "BANK_TRANSFER":
        reasons.append("SWIFT network processing time")
    if order.status == sm.AML_HOLD or order.anomalous:
        reasons.insert(0, "Transfer held for compliance review")
    return reasons


class DelayPolicy:
    def __init__(self, threshold_minutes: Optional[int] = None, clock: Clock = now_ms):
        self.threshold_minutes = int(
            threshold_minutes if threshold_minutes is not None else settings.DELAY_THRESHOLD_MINUTES
        )
        self.clock = clock

    def age_minutes(self, order: Order) -> int:
        return elapsed_minutes(order.createdAt, self.clock())

    def is_past_threshold(self, order: Order) -> bool:
        return self.age_minutes(order) > self.threshold_minutes

    def is_delayed(self, order: Order) -> bool:
        if not self.is_past_threshold(order):
            return False
        return not sm.is_terminal(order.status) or sm.is_anomalous(order.status) or bool(order.anomalous)

    def requires_verification(self, order: Order) -> bool:
        """Only targeted lookups consult this; listings are never gated."""
        return self.is_delayed(order)

    def delay_info(self, order: Order) -> dict:
        age = self.age_minutes(order)
        return {
            "delayMinutes": max(0, age - self.threshold_minutes),
            "threshold": self.threshold_minutes,
            "possibleReasons": delay_reasons(order),
        }
