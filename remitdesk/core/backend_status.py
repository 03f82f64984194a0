"""
Authoritative transfer status.

`HttpBackendStatusSource` asks the payment backend; `StoredStatusSource` falls
back to the last status confirmed by a provider callback (`actualStatus`).
Both return a normalized status string. Anything the backend says that we do
not recognise is passed through as-is so the dispute resolver can escalate it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from remitdesk.core import state_machine as sm
from remitdesk.observability.logging import log
from remitdesk.settings import settings
from remitdesk.store.models import Order

UNAVAILABLE = "UNAVAILABLE"


@dataclass
class BackendStatus:
    status: str
    details: Dict[str, Any] = field(default_factory=dict)


class BackendStatusSource:
    def fetch(self, order: Order) -> BackendStatus:
        raise NotImplementedError


class StoredStatusSource(BackendStatusSource):
    def fetch(self, order: Order) -> BackendStatus:
        return BackendStatus(status=sm.normalize_status(order.actualStatus),
                             details={"source": "reconciled", "failReason": order.failReason})


class HttpBackendStatusSource(BackendStatusSource):
    """
    GET {url}/{orderNo} (or a url containing "{orderNo}"), expecting {"status": ..., ...}.
    Transport failures read as UNAVAILABLE, which the resolver escalates.
    """

    def __init__(self, url: str, timeout_sec: Optional[float] = None, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout_sec = float(timeout_sec or settings.BACKEND_STATUS_TIMEOUT_SEC)
        self._client = client

    def _url_for(self, order_no: str) -> str:
        if "{orderNo}" in self.url:
            return self.url.replace("{orderNo}", order_no)
        return f"{self.url.rstrip('/')}/{order_no}"

    def fetch(self, order: Order) -> BackendStatus:
        url = self._url_for(order.orderNo)
        try:
            if self._client is not None:
                resp = self._client.get(url, timeout=self.timeout_sec)
            else:
                with httpx.Client(timeout=self.timeout_sec) as client:
                    resp = client.get(url)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log(event="backend_status_unavailable", orderNo=order.orderNo, error=f"{type(e).__name__}:{str(e)[:200]}")
            return BackendStatus(status=UNAVAILABLE, details={"source": "backend", "error": type(e).__name__})

        raw = body.get("status") if isinstance(body, dict) else None
        details = body.get("details") if isinstance(body, dict) and isinstance(body.get("details"), dict) else {}
        status = sm.normalize_status(raw) or UNAVAILABLE
        log(event="backend_status_fetched", orderNo=order.orderNo, status=status)
        return BackendStatus(status=status, details={"source": "backend", **details})


def build_status_source() -> BackendStatusSource:
    if settings.BACKEND_STATUS_URL:
        return HttpBackendStatusSource(settings.BACKEND_STATUS_URL)
    return StoredStatusSource()
