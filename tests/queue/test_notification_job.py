from unittest.mock import patch

import pytest

from remitdesk.queue.jobs import send_notification_job

PAYLOAD = {"kind": "escalation", "orderNo": "1234567891", "_meta": {"payloadFingerprint": "sha256:x"}}


@patch("remitdesk.queue.jobs.deliver")
def test_job_delivers_payload(mock_deliver):
    send_notification_job(PAYLOAD)
    mock_deliver.assert_called_once_with(PAYLOAD)


@patch("remitdesk.queue.jobs.log")
@patch("remitdesk.queue.jobs.deliver", side_effect=RuntimeError("Notification failed: 502"))
def test_job_reraises_so_rq_retries(mock_deliver, mock_log):
    with pytest.raises(RuntimeError):
        send_notification_job(PAYLOAD)
    events = [c.kwargs["event"] for c in mock_log.call_args_list]
    assert events == ["notify_job_start", "notify_job_exception"]
