"""
Callback reconciler.

Applies provider completion events to orders. Delivery is at-least-once and
unordered, so every event goes through one conditional update that:
- treats a repeat of the current status as a successful no-op,
- never moves a terminal order back to a non-terminal status,
- drops events not newer than the last applied one.

Malformed payloads, unknown orders and token mismatches are rejected without
touching the order. Everything else is acknowledged.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import remitdesk.observability.metrics as metrics
from remitdesk.core import state_machine as sm
from remitdesk.core.errors import InvalidCallbackPayload
from remitdesk.observability.logging import log
from remitdesk.settings import settings
from remitdesk.store.binding_repo import BindingRepository
from remitdesk.store.models import Order, StatusChange
from remitdesk.store.order_repo import OrderRepository
from remitdesk.utils.time import Clock, now_ms, parse_timestamp_ms

PAY_STATUS_EVENT = "remittance_pay_status"

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
NO_REGRESSION = "ignored_terminal"
UNSUPPORTED_EVENT = "unsupported_event"


class CallbackReconciler:
    def __init__(self, orders: OrderRepository, bindings: BindingRepository, clock: Clock = now_ms):
        self.orders = orders
        self.bindings = bindings
        self.clock = clock

    def _reject(self, channel: str, reason: str, order_no: Optional[str]) -> InvalidCallbackPayload:
        metrics.record_rejected_callback(order_no or "")
        log(event="callback_rejected", channel=channel, reason=reason, orderNo=order_no)
        return InvalidCallbackPayload(reason, order_no)

    def _check_token(self, channel: str, order_no: str, token: Optional[str]) -> None:
        binding = self.bindings.get(order_no)
        expected = binding.callbackToken if binding is not None else None
        if token and expected and token != expected:
            raise self._reject(channel, "token_mismatch", order_no)
        if settings.CALLBACK_REQUIRE_TOKEN and (not token or token != expected):
            raise self._reject(channel, "token_required", order_no)
        if binding is not None and binding.provider != channel:
            log(event="callback_channel_mismatch", orderNo=order_no, channel=channel, boundProvider=binding.provider)

    def apply_callback(self, channel: str, payload: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        """
        `payload` is the flattened event: orderNo, status, failReason?, timestamp?, notifyEvent?.
        Returns the acknowledgment; raises InvalidCallbackPayload before any write.
        """
        metrics.increment_callback_received()
        if not isinstance(payload, dict):
            raise self._reject(channel, "payload_not_object", None)

        order_no = str(payload.get("orderNo") or "").strip() or None
        notify_event = payload.get("notifyEvent")
        if notify_event and notify_event != PAY_STATUS_EVENT:
            metrics.increment_callback_ignored()
            log(event="callback_ignored", channel=channel, orderNo=order_no, notifyEvent=notify_event)
            return {"status": "received", "orderNo": order_no, "result": UNSUPPORTED_EVENT}

        if not order_no:
            raise self._reject(channel, "missing_order_no", None)
        status = sm.normalize_status(payload.get("status"))
        if not sm.is_known(status):
            raise self._reject(channel, "unknown_status", order_no)
        if self.orders.get(order_no) is None:
            raise self._reject(channel, "unknown_order", order_no)
        self._check_token(channel, order_no, token)

        event_ts = parse_timestamp_ms(payload.get("timestamp"), default=self.clock())
        fail_reason = payload.get("failReason")
        outcome = {"result": APPLIED, "previous": None, "refundConflict": False}

        def _mutate(o: Order):
            outcome["previous"] = o.status
            if o.status == status:
                outcome["result"] = DUPLICATE
                return False
            if not sm.allows_transition(o.status, status):
                outcome["result"] = NO_REGRESSION
                return False
            if event_ts <= o.lastCallbackAt:
                outcome["result"] = STALE
                return False
            # A refund already went out for the FAILED reading; keep the flag for review
            outcome["refundConflict"] = o.refundInitiated and o.status == sm.FAILED
            now = self.clock()
            o.status = status
            o.actualStatus = status
            o.lastCallbackAt = event_ts
            o.updatedAt = now
            if status == sm.FAILED:
                o.failReason = fail_reason or o.failReason or "Payment failed"
            o.statusHistory.append(StatusChange(status=status, timestamp=now,
                                                reason=fail_reason or f"Provider callback via {channel}",
                                                updatedBy="bank"))
            outcome["result"] = APPLIED
            return True

        order, changed = self.orders.update(order_no, _mutate)

        if changed:
            metrics.increment_callback_applied()
            if outcome["refundConflict"]:
                log(event="callback_refund_conflict", channel=channel, orderNo=order_no, status=status,
                    previous=outcome["previous"])
            if sm.is_terminal(order.status):
                self.bindings.consume(order_no, self.clock())
        elif outcome["result"] == DUPLICATE:
            metrics.increment_callback_duplicate()
        else:
            metrics.increment_callback_ignored()

        log(event="callback_processed", channel=channel, orderNo=order_no, status=status,
            previous=outcome["previous"], result=outcome["result"], version=order.version)
        return {"status": "received", "orderNo": order_no, "result": outcome["result"], "orderStatus": order.status}
