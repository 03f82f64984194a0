from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from remitdesk.callback.notifier import Notifier
from remitdesk.core import state_machine as sm
from remitdesk.core.backend_status import StoredStatusSource
from remitdesk.core.orchestrator import build_services
from remitdesk.settings import settings
from remitdesk.store.binding_repo import MemoryBindingRepository
from remitdesk.store.models import Order, StatusChange
from remitdesk.store.order_repo import MemoryOrderRepository
from remitdesk.utils.time import MINUTE_MS

# Wednesday, so expected-delivery math stays off the weekend
START_MS = int(datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    def __init__(self, start_ms: int = START_MS):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, *, minutes: int = 0, ms: int = 0) -> None:
        self.now += minutes * MINUTE_MS + ms


@pytest.fixture(autouse=True)
def hermetic_settings(monkeypatch):
    for key, value in {
        "API_KEY": "",
        "DEFAULT_PRINCIPAL_ID": "agent1",
        "ORDER_STORE": "memory",
        "CAS_MAX_RETRIES": 5,
        "DELAY_THRESHOLD_MINUTES": 10,
        "VERIFICATION_TTL_MINUTES": 30,
        "DISPUTE_WINDOW_DAYS": 7,
        "ESCALATION_SLA_HOURS": 24,
        "PENDING_ETA_HOURS": 2,
        "REFUND_ETA": "2-3 business days",
        "DEFAULT_CALLBACK_PROVIDER": "voice",
        "CALLBACK_REQUIRE_TOKEN": False,
        "PAYMENT_LINK_BASE": "botimapp://pay",
        "MAX_SEND_AMOUNT": 50000.0,
        "KYC_SEND_AMOUNT": 10000.0,
        "SUGGESTED_AMOUNTS": "1000,2000,5000,10000",
        "BACKEND_STATUS_URL": "",
        "NOTIFY_URL": "",
        "NOTIFY_MODE": "hybrid",
    }.items():
        monkeypatch.setattr(settings, key, value)


@pytest.fixture(autouse=True)
def metrics_redis():
    """Counters are best-effort Redis writes; keep them off the network."""
    with patch("remitdesk.observability.metrics.get_redis") as get_redis:
        r = MagicMock()
        get_redis.return_value = r
        yield r


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(clock):
    return build_services(
        clock=clock,
        orders=MemoryOrderRepository(),
        bindings=MemoryBindingRepository(),
        status_source=StoredStatusSource(),
        notifier=Notifier(mode="sync"),
    )


@pytest.fixture
def order_factory(services, clock):
    def _make(order_no: str = "DELAYED123456", *, age_minutes: int = 15, status: str = sm.PENDING,
              actual_status=None, principal_id: str = "agent1", **fields) -> Order:
        created = clock() - age_minutes * MINUTE_MS
        fields.setdefault("beneficiaryId", "123")
        fields.setdefault("beneficiaryName", "Zhang San")
        fields.setdefault("fromAmount", 1000.0)
        fields.setdefault("country", "CN")
        fields.setdefault("currency", "CNY")
        order = Order(
            orderNo=order_no,
            principalId=principal_id,
            createdAt=created,
            status=status,
            actualStatus=actual_status or status,
            statusHistory=[StatusChange(status=status, timestamp=created)],
            **fields,
        )
        services.orders.create(order)
        return order

    return _make
