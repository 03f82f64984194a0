import pytest
from fastapi.testclient import TestClient

from remitdesk.api.auth import require_admin
from remitdesk.core.orchestrator import get_services
from remitdesk.core.verification import CredentialProof
from remitdesk.main import app
from remitdesk.observability.metrics import K_CB_APPLIED, K_CB_RECEIVED
from remitdesk.settings import settings

client = TestClient(app)


@pytest.fixture
def skip_auth(services):
    app.dependency_overrides[require_admin] = lambda: None
    app.dependency_overrides[get_services] = lambda: services
    yield
    app.dependency_overrides.clear()


def test_admin_requires_key_when_rbac_enabled(services, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_RBAC_ENABLED", True)
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
    app.dependency_overrides[get_services] = lambda: services
    try:
        assert client.get("/admin/verifications").status_code == 403
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-secret")
        assert client.get("/admin/verifications", headers={"x-admin-key": "wrong"}).status_code == 403
        assert client.get("/admin/verifications", headers={"x-admin-key": "admin-secret"}).status_code == 200
    finally:
        app.dependency_overrides.clear()


def test_order_snapshot_and_timeline(skip_auth, services, order_factory):
    order_factory("DELAYED123456", age_minutes=15)
    services.reconciler.apply_callback("voice", {"orderNo": "DELAYED123456", "status": "SUCCESS"})

    snap = client.get("/admin/orders/DELAYED123456").json()
    assert snap["order"]["status"] == "SUCCESS"
    assert snap["ageMinutes"] == 15
    assert snap["binding"] is None

    timeline = client.get("/admin/orders/DELAYED123456/timeline").json()
    assert [e["status"] for e in timeline["events"]] == ["PENDING", "SUCCESS"]
    assert timeline["version"] == 1

    assert client.get("/admin/orders/missing").status_code == 404


def test_verification_admin(skip_auth, services, clock):
    services.sessions.verify("agent1", CredentialProof("5671", "31/12/2030"))

    listing = client.get("/admin/verifications").json()
    assert listing["total"] == 1
    assert listing["active"][0]["principalId"] == "agent1"

    clock.advance(minutes=31)
    assert client.post("/admin/verifications/sweep").json() == {"removed": 1}

    services.sessions.verify("agent1", CredentialProof("5671", "31/12/2030"))
    assert client.delete("/admin/verifications/agent1").json()["cleared"] is True
    assert not services.sessions.is_verified("agent1")


def test_metrics_snapshot(skip_auth, metrics_redis):
    values = {K_CB_RECEIVED: "10", K_CB_APPLIED: "7"}
    metrics_redis.get.side_effect = lambda key: values.get(key)
    metrics_redis.lrange.return_value = ["1234567890"]

    body = client.get("/admin/metrics").json()

    assert body["callbacks_received"] == 10
    assert body["callbacks_applied"] == 7
    assert body["callback_apply_rate"] == 70.0
    assert body["recent_rejected_callbacks"] == ["1234567890"]
