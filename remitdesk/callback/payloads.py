"""
Notification Payload Contract
-----------------------------
Customer and operations notifications (refund initiated, bank-details request,
escalation) leave the service as one versioned JSON shape. Rendering into
email/voice/text happens behind NOTIFY_URL; this module only guarantees the
shape, stamps the contract version and fingerprints the canonical body so the
receiver can de-duplicate retries.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional, Tuple

from remitdesk.settings import settings
from remitdesk.store.models import Order
from remitdesk.utils.time import iso_from_ms, now_ms

KINDS = ("refund_initiated", "bank_details_request", "escalation")

# Kinds addressed to the customer need a recipient
CUSTOMER_KINDS = ("refund_initiated", "bank_details_request")

SUBJECTS = {
    "refund_initiated": "Refund Initiated - {orderNo}",
    "bank_details_request": "Action Required: Bank Details Submission for Transaction {orderNo}",
    "escalation": "Escalation: unknown backend status for {orderNo}",
}


def fingerprint(body: Dict[str, Any]) -> str:
    algo = (settings.PAYLOAD_FINGERPRINT_ALGO or "sha256").lower()
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    h = hashlib.new(algo)
    h.update(canonical.encode("utf-8"))
    return f"{algo}:{h.hexdigest()}"


def build_notification(kind: str, order: Order, *, recipient: Optional[str] = None,
                       context: Optional[Dict[str, Any]] = None, at_ms: Optional[int] = None) -> Dict[str, Any]:
    if kind not in KINDS:
        raise ValueError(f"unknown notification kind: {kind}")

    body = {
        "kind": kind,
        "orderNo": order.orderNo,
        "principalId": order.principalId,
        "recipient": recipient,
        "subject": SUBJECTS[kind].format(orderNo=order.orderNo),
        "order": {
            "status": order.status,
            "amount": order.fromAmount,
            "totalPayAmount": order.totalPayAmount,
            "currency": order.currency,
            "beneficiaryName": order.beneficiaryName,
            "failReason": order.failReason,
        },
        "context": dict(context or {}),
    }
    if kind == "refund_initiated":
        body["context"].setdefault("estimatedRefundTime", settings.REFUND_ETA)

    # Fingerprint covers the business body only, not when it was built
    body["_meta"] = {
        "payloadVersion": settings.NOTIFY_PAYLOAD_VERSION,
        "payloadFingerprint": fingerprint(body),
        "createdAt": iso_from_ms(at_ms if at_ms is not None else now_ms()),
    }
    return body


def validate_notification(payload: Dict[str, Any]) -> Tuple[bool, str]:
    """Returns (ok, reason)."""
    if not isinstance(payload, dict):
        return False, "payload_not_dict"
    for k in ("kind", "orderNo", "subject", "_meta"):
        if k not in payload:
            return False, f"missing:{k}"
    if payload["kind"] not in KINDS:
        return False, "kind"
    if payload["kind"] in CUSTOMER_KINDS and not payload.get("recipient"):
        return False, "missing:recipient"
    if not isinstance(payload["_meta"], dict) or "payloadFingerprint" not in payload["_meta"]:
        return False, "missing:_meta.payloadFingerprint"
    return True, "ok"
