from remitdesk.callback.sender import deliver
from remitdesk.observability.logging import log


def send_notification_job(payload: dict):
    """
    Background delivery of one notification payload.
    Raises on failure so RQ records it and any configured retry kicks in;
    the receiver de-duplicates on payloadFingerprint.
    """
    log(event="notify_job_start", orderNo=payload.get("orderNo"), kind=payload.get("kind"))
    try:
        deliver(payload)
    except Exception as e:
        log(event="notify_job_exception", orderNo=payload.get("orderNo"), error=str(e)[:300])
        raise
