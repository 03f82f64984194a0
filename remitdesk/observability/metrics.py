"""
Observability Counters
----------------------
Lightweight Redis counters for the verification gate, webhook reconciliation
and dispute escalation, plus a snapshot consumed by /admin/metrics.
Counter writes are best-effort: a Redis hiccup is logged, never raised into
the request path.
"""
from __future__ import annotations

import time
from typing import Dict, List

from remitdesk.observability.logging import log
from remitdesk.store.redis_conn import get_redis

K_CB_RECEIVED = "metrics:callback:received"
K_CB_APPLIED = "metrics:callback:applied"
K_CB_DUPLICATE = "metrics:callback:duplicate"
K_CB_IGNORED = "metrics:callback:ignored"
K_CB_REJECTED = "metrics:callback:rejected"
K_CB_REJECTED_RECENT = "metrics:callback:rejected_recent"  # LPUSH orderNo (trim window)

K_VERIFY_OK = "metrics:verify:success"
K_VERIFY_FAIL = "metrics:verify:failure"
K_AUTH_REQUIRED = "metrics:gate:auth_required"
K_ESCALATIONS = "metrics:dispute:escalations"

COUNTER_KEYS = {
    "callbacks_received": K_CB_RECEIVED,
    "callbacks_applied": K_CB_APPLIED,
    "callbacks_duplicate": K_CB_DUPLICATE,
    "callbacks_ignored": K_CB_IGNORED,
    "callbacks_rejected": K_CB_REJECTED,
    "verifications_succeeded": K_VERIFY_OK,
    "verifications_failed": K_VERIFY_FAIL,
    "auth_required": K_AUTH_REQUIRED,
    "escalations": K_ESCALATIONS,
}

_RECENT_WINDOW = 50


def _incr(key: str) -> None:
    try:
        get_redis().incr(key, 1)
    except Exception as e:
        log(event="metrics_write_failed", key=key, error=str(e)[:200])


def increment_callback_received() -> None:
    _incr(K_CB_RECEIVED)


def increment_callback_applied() -> None:
    _incr(K_CB_APPLIED)


def increment_callback_duplicate() -> None:
    _incr(K_CB_DUPLICATE)


def increment_callback_ignored() -> None:
    _incr(K_CB_IGNORED)


def record_rejected_callback(order_no: str) -> None:
    """Track recent rejections so investigators can find them."""
    _incr(K_CB_REJECTED)
    if not order_no:
        return
    try:
        r = get_redis()
        r.lpush(K_CB_REJECTED_RECENT, order_no)
        r.ltrim(K_CB_REJECTED_RECENT, 0, _RECENT_WINDOW - 1)
    except Exception as e:
        log(event="metrics_write_failed", key=K_CB_REJECTED_RECENT, error=str(e)[:200])


def increment_verification(success: bool) -> None:
    _incr(K_VERIFY_OK if success else K_VERIFY_FAIL)


def increment_auth_required() -> None:
    _incr(K_AUTH_REQUIRED)


def increment_escalation() -> None:
    _incr(K_ESCALATIONS)


def get_snapshot() -> dict:
    r = get_redis()
    counters: Dict[str, int] = {name: int(r.get(key) or 0) for name, key in COUNTER_KEYS.items()}
    recent: List[str] = [str(x) for x in (r.lrange(K_CB_REJECTED_RECENT, 0, 19) or [])]

    received = counters["callbacks_received"]
    applied = counters["callbacks_applied"]
    return {
        **counters,
        "callback_apply_rate": round((applied / received) * 100.0, 3) if received else 0.0,
        "recent_rejected_callbacks": recent,
        "snapshot_at": int(time.time()),
    }
