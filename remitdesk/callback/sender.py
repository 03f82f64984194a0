"""
Deadline-bounded notification delivery.

`send_notification_sync` is the inline path: it never raises and gives up once
the deadline is spent so the tool call stays responsive. `deliver` is the
worker path: one attempt, raising on failure so RQ can retry.
"""
from __future__ import annotations

import time
from typing import Any, Dict

import httpx

from remitdesk.observability.logging import log
from remitdesk.settings import settings


def _fp(payload: Dict[str, Any]) -> str:
    return str((payload.get("_meta") or {}).get("payloadFingerprint", "na"))


def deliver(payload: Dict[str, Any]) -> None:
    if not settings.NOTIFY_URL:
        raise RuntimeError("NOTIFY_URL is not set")
    with httpx.Client(timeout=settings.NOTIFY_TIMEOUT_SEC) as client:
        resp = client.post(settings.NOTIFY_URL, json=payload)
    if not 200 <= resp.status_code < 300:
        log(event="notify_send_failed", orderNo=payload.get("orderNo"), kind=payload.get("kind"),
            statusCode=int(resp.status_code), responseText=(resp.text or "")[:300], payloadFingerprint=_fp(payload))
        raise RuntimeError(f"Notification failed: {resp.status_code}")
    log(event="notify_send_success", orderNo=payload.get("orderNo"), kind=payload.get("kind"),
        statusCode=int(resp.status_code), payloadFingerprint=_fp(payload))


def send_notification_sync(payload: Dict[str, Any], *, deadline_sec: float = 4.0, max_retries: int = 1) -> bool:
    """
    Try to POST the notification within deadline_sec.
    Returns True on a 2xx, False otherwise (no raise).
    """
    if not settings.NOTIFY_URL:
        log(event="notify_sync_skipped_no_url", orderNo=payload.get("orderNo"), kind=payload.get("kind"))
        return False

    t0 = time.monotonic()
    deadline_sec = float(deadline_sec or 0.0) or 4.0
    attempt = 0
    last_err = None

    while attempt <= int(max_retries or 0):
        attempt += 1
        remaining = deadline_sec - (time.monotonic() - t0)
        if remaining <= 0:
            break
        # Never exceed the remaining budget or the configured timeout
        per_try_timeout = min(float(settings.NOTIFY_TIMEOUT_SEC or 5), max(0.5, remaining))

        try:
            with httpx.Client(timeout=per_try_timeout) as client:
                resp = client.post(settings.NOTIFY_URL, json=payload)
            if 200 <= resp.status_code < 300:
                log(event="notify_sync_success", orderNo=payload.get("orderNo"), kind=payload.get("kind"),
                    attempt=attempt, elapsedMs=int((time.monotonic() - t0) * 1000), payloadFingerprint=_fp(payload))
                return True
            last_err = f"non_2xx:{resp.status_code}"
        except httpx.HTTPError as e:
            last_err = f"{type(e).__name__}:{str(e)[:200]}"

        log(event="notify_sync_attempt_failed", orderNo=payload.get("orderNo"), attempt=attempt, error=last_err)
        remaining = deadline_sec - (time.monotonic() - t0)
        if remaining <= 0:
            break
        time.sleep(min(0.15, remaining))

    log(event="notify_sync_failed", orderNo=payload.get("orderNo"), kind=payload.get("kind"),
        elapsedMs=int((time.monotonic() - t0) * 1000), lastError=str(last_err or "deadline"))
    return False
