from typing import Any, Dict, Optional, Tuple


def normalize_callback_payload(payload: Any) -> Dict[str, Any]:
    """
    Providers post a few different shapes. Flatten them into the event the
    reconciler consumes:

    {"notifyEvent", "orderNo", "status", "failReason", "timestamp", "amount", "beneficiary"}

    Accepted variants:
    - {notifyEvent, data: {orderNo|transactionId, status|backendStatus, ...}}
    - the same fields at top level
    Missing values stay None; the reconciler decides what is invalid.
    """
    if not isinstance(payload, dict):
        return {}

    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload

    order_no = data.get("orderNo") or data.get("transactionId") or data.get("order_no") or data.get("transaction_id")
    status = data.get("status") or data.get("backendStatus") or data.get("paymentStatus")

    return {
        "notifyEvent": payload.get("notifyEvent") or data.get("notifyEvent"),
        "orderNo": str(order_no).strip() if order_no is not None else None,
        "status": status,
        "failReason": data.get("failReason") or data.get("reason"),
        "timestamp": data.get("timestamp") or payload.get("timestamp"),
        "amount": data.get("amount"),
        "beneficiary": data.get("beneficiary"),
    }


def split_tool_call(method: str, params: Optional[Dict[str, Any]]) -> Tuple[str, Dict[str, Any]]:
    """`tools/call` carries {name, arguments}; the short form uses the tool name as method."""
    params = params if isinstance(params, dict) else {}
    if method == "tools/call":
        name = str(params.get("name") or "")
        arguments = params.get("arguments")
        return name, arguments if isinstance(arguments, dict) else {}
    return method, params
