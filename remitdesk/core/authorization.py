"""
Transfer authorization gate.

The only place that decides whether a principal may see the detail of one
order. Listings pass straight through; a targeted lookup of a delayed order
needs a live verification session.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import remitdesk.observability.metrics as metrics
from remitdesk.core.delay_policy import DelayPolicy, expected_delivery
from remitdesk.core.errors import AuthRequired, NotFound, ValidationError
from remitdesk.core.verification import VerificationSessionStore
from remitdesk.observability.logging import log
from remitdesk.store.models import Order
from remitdesk.store.order_repo import OrderRepository
from remitdesk.utils.time import iso_from_ms

REASON_DELAYED_UNVERIFIED = "DELAYED_ORDER_REQUIRES_VERIFICATION"


@dataclass
class OrderQuery:
    orderNo: Optional[str] = None
    orderCount: int = 10
    transferMode: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    orderDate: Optional[str] = None  # YYYY-MM-DD
    includeDelayInfo: bool = False

    @property
    def is_specific(self) -> bool:
        return bool(self.orderNo)


def _day_start_ms(order_date: Optional[str]) -> Optional[int]:
    if not order_date:
        return None
    try:
        day = datetime.strptime(order_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValidationError("orderDate", "must be in YYYY-MM-DD format")
    return int(day.timestamp() * 1000)


class TransferAuthorizationGate:
    def __init__(self, orders: OrderRepository, policy: DelayPolicy, sessions: VerificationSessionStore):
        self.orders = orders
        self.policy = policy
        self.sessions = sessions

    def authorize(self, principal_id: str, query: OrderQuery) -> dict:
        if query.is_specific:
            return self._specific(principal_id, query)
        return self._listing(principal_id, query)

    def _load_owned(self, principal_id: str, order_no: str) -> Order:
        order = self.orders.get(order_no)
        # Someone else's order reads as missing
        if order is None or order.principalId != principal_id:
            raise NotFound("Order", order_no)
        return order

    def ensure_detail_access(self, principal_id: str, order_no: str) -> Order:
        """Load one owned order, or raise AuthRequired if it is delayed and the caller is unverified."""
        order = self._load_owned(principal_id, order_no)
        if self.policy.requires_verification(order) and not self.sessions.is_verified(principal_id):
            metrics.increment_auth_required()
            log(event="auth_required", principalId=principal_id, orderNo=order.orderNo,
                status=order.status, ageMinutes=self.policy.age_minutes(order))
            raise AuthRequired(REASON_DELAYED_UNVERIFIED, order.orderNo)
        return order

    def _specific(self, principal_id: str, query: OrderQuery) -> dict:
        order = self.ensure_detail_access(principal_id, query.orderNo)
        return self.order_view(order, include_delay_info=query.includeDelayInfo)

    def order_view(self, order: Order, *, include_delay_info: bool = False) -> dict:
        delayed = self.policy.is_delayed(order)
        view = {
            "orderNo": order.orderNo,
            "status": order.status,
            "amount": order.fromAmount,
            "currency": order.currency,
            "receivedAmount": order.receivedAmount,
            "beneficiaryName": order.beneficiaryName,
            "transferMode": order.transferMode,
            "createdAt": iso_from_ms(order.createdAt),
            "timeElapsedMinutes": self.policy.age_minutes(order),
            "isDelayed": delayed,
            "expectedDeliveryDate": expected_delivery(order).isoformat().replace("+00:00", "Z"),
        }
        if order.failReason:
            view["failReason"] = order.failReason
        if include_delay_info and delayed:
            view["delayInfo"] = self.policy.delay_info(order)
        return view

    def _listing(self, principal_id: str, query: OrderQuery) -> dict:
        orders = self.orders.list_for_principal(
            principal_id,
            limit=query.orderCount,
            transfer_mode=query.transferMode,
            country=query.country,
            currency=query.currency,
            day_start_ms=_day_start_ms(query.orderDate),
        )
        items = [
            {
                "orderNo": o.orderNo,
                "status": o.status,
                "amount": o.fromAmount,
                "date": iso_from_ms(o.createdAt),
            }
            for o in orders
        ]
        return {"orders": items, "total": len(items)}
