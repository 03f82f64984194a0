from typing import Any, Dict, Optional

from redis.exceptions import RedisError
from rq import Retry

from remitdesk.callback.payloads import build_notification, validate_notification
from remitdesk.callback.sender import send_notification_sync
from remitdesk.observability.logging import log
from remitdesk.queue.jobs import send_notification_job
from remitdesk.queue.rq_conn import get_queue
from remitdesk.settings import settings
from remitdesk.store.models import Order


class Notifier:
    """
    Dispatches customer/ops notifications.
    Modes: "sync" (inline only), "rq" (queue only), "hybrid" (inline within a
    deadline, queue as backup). Returns a small receipt; delivery problems are
    reported in it, never raised into the tool call.
    """

    def __init__(self, mode: Optional[str] = None):
        self.mode = (mode or settings.NOTIFY_MODE or "hybrid").lower()

    def dispatch(self, kind: str, order: Order, *, recipient: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = build_notification(kind, order, recipient=recipient, context=context)
        receipt = {
            "kind": kind,
            "orderNo": order.orderNo,
            "payloadFingerprint": payload["_meta"]["payloadFingerprint"],
        }

        ok, reason = validate_notification(payload)
        if not ok:
            log(event="notify_skipped_invalid", orderNo=order.orderNo, kind=kind, reason=reason)
            return {**receipt, "status": "skipped", "reason": reason}
        if not settings.NOTIFY_URL:
            log(event="notify_skipped_no_url", orderNo=order.orderNo, kind=kind)
            return {**receipt, "status": "skipped", "reason": "no_url"}

        if self.mode in ("sync", "hybrid"):
            sent = send_notification_sync(payload, deadline_sec=settings.NOTIFY_DEADLINE_SEC,
                                          max_retries=settings.NOTIFY_SYNC_RETRIES)
            if sent:
                return {**receipt, "status": "sent"}

        if self.mode in ("rq", "hybrid"):
            try:
                job = get_queue().enqueue(
                    send_notification_job,
                    payload,
                    retry=Retry(max=5, interval=[5, 15, 30, 60, 120]),
                )
            except RedisError as e:
                log(event="notify_enqueue_failed", orderNo=order.orderNo, kind=kind, error=str(e)[:200])
                return {**receipt, "status": "failed", "reason": "enqueue_failed"}
            log(event="notify_enqueued", orderNo=order.orderNo, kind=kind, job="send_notification_job",
                rq_job_id=getattr(job, "id", "") or "", mode=self.mode)
            return {**receipt, "status": "queued", "jobId": getattr(job, "id", None)}

        return {**receipt, "status": "failed", "reason": "sync_failed"}
