"""
Typed failures recovered at the tool boundary.

Each error carries the body-level `code` (200/400/401/404 family) and a data
payload, so transports without HTTP status (JSON-RPC) still see the outcome.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class ToolError(Exception):
    code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.data = data

    def to_response(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


class ValidationError(ToolError):
    code = 400
    message = "Validation error"

    def __init__(self, field: str, detail: str):
        super().__init__(f"Validation error: {field}: {detail}", {"field": field, "detail": detail})
        self.field = field


class VerificationFailed(ToolError):
    code = 401
    message = "Identity verification failed"


class AuthRequired(ToolError):
    code = 401
    message = "Identity verification required"

    # Remediation actions offered to the caller
    NEXT_STEPS: List[Dict[str, Any]] = [
        {
            "action": "verifyIdentity",
            "description": "Provide the last 4 digits of your Emirates ID and its expiry date (DD/MM/YYYY)",
            "fields": ["lastFourDigits", "expiryDate"],
        },
        {
            "action": "contactSupport",
            "description": "Contact customer support for assistance",
        },
    ]

    def __init__(self, reason: str, order_no: Optional[str] = None):
        data = {
            "verified": False,
            "reason": reason,
            "orderNo": order_no,
            "nextSteps": list(self.NEXT_STEPS),
        }
        super().__init__(self.message, data)
        self.reason = reason


class NotFound(ToolError):
    code = 404
    message = "Not found"

    def __init__(self, what: str, key: str):
        super().__init__(f"{what} not found", {"key": key})


class InvalidCallbackPayload(ToolError):
    code = 400
    message = "Invalid callback payload"

    def __init__(self, reason: str, order_no: Optional[str] = None):
        super().__init__(f"Invalid callback payload: {reason}", {"reason": reason, "orderNo": order_no})
        self.reason = reason


class BusinessRuleRejected(ToolError):
    """Transfer-side rejections that keep the original business codes (607/608/610)."""

    def __init__(self, code: int, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, data)
        self.code = code


class ConcurrentUpdateError(Exception):
    """Conditional update kept losing the race; surfaces to the service as a fatal error."""
