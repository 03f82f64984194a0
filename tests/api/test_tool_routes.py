import pytest
from fastapi.testclient import TestClient

from remitdesk.core import state_machine as sm
from remitdesk.core.orchestrator import get_services
from remitdesk.main import app
from remitdesk.settings import settings
from remitdesk.store.models import CallbackBinding

client = TestClient(app)

PROOF = {"lastFourDigits": "5671", "expiryDate": "31/12/2030"}


@pytest.fixture(autouse=True)
def use_services(services):
    app.dependency_overrides[get_services] = lambda: services
    yield
    app.dependency_overrides.clear()


def _call(method, params=None, **headers):
    return client.post("/mcp/messages", json={"method": method, "params": params or {}}, headers=headers)


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_delayed_order_flow_over_http(order_factory):
    order_factory("DELAYED123456", age_minutes=15)

    denied = _call("transactionQuery", {"orderNo": "DELAYED123456"})
    assert denied.status_code == 200
    assert denied.json()["code"] == 401

    assert _call("verifyIdentity", PROOF).json()["code"] == 200

    allowed = _call("transactionQuery", {"orderNo": "DELAYED123456", "includeDelayInfo": True})
    body = allowed.json()
    assert body["code"] == 200
    assert body["data"]["delayInfo"]["delayMinutes"] == 5


def test_listing_over_http(order_factory):
    for i in range(5):
        order_factory(f"DELAYED{i}", age_minutes=30)
    body = _call("transactionQuery", {"orderCount": 5}).json()
    assert body["code"] == 200
    assert body["data"]["total"] == 5


def test_principal_header_scopes_lookups(order_factory):
    order_factory("FRESH1", age_minutes=1)
    assert _call("transactionQuery", {"orderNo": "FRESH1"}).json()["code"] == 200
    assert _call("transactionQuery", {"orderNo": "FRESH1"}, **{"x-principal-id": "agent2"}).json()["code"] == 404


def test_json_rpc_envelope():
    resp = client.post("/mcp/messages", json={
        "jsonrpc": "2.0",
        "id": 7,
        "method": "tools/call",
        "params": {"name": "verifyIdentity", "arguments": PROOF},
    })
    body = resp.json()
    assert body["jsonrpc"] == "2.0"
    assert body["id"] == 7
    assert body["result"]["code"] == 200


def test_tools_list():
    body = client.post("/mcp/messages", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"}).json()
    assert "transferMoney" in body["result"]["tools"]


def test_api_key_enforced_when_configured(monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret")
    assert _call("checkVerificationStatus").status_code == 401
    assert _call("checkVerificationStatus", **{"x-api-key": "secret"}).status_code == 200


def test_callback_applies_once_then_acks_duplicate(order_factory):
    order_factory("1234567890", age_minutes=1)
    event = {"notifyEvent": "remittance_pay_status", "data": {"orderNo": "1234567890", "status": "SUCCESS"}}

    first = client.post("/callback/voice", json=event)
    second = client.post("/callback/voice", json=event)

    assert first.status_code == 200
    assert first.json()["result"] == "applied"
    assert first.json()["orderStatus"] == sm.SUCCESS
    assert second.status_code == 200
    assert second.json()["result"] == "duplicate"


def test_callback_transaction_id_variant(order_factory):
    order_factory("1234567890", age_minutes=1)
    resp = client.post("/callback/text", json={"transactionId": "1234567890", "backendStatus": "FAILED",
                                               "reason": "Beneficiary account closed"})
    assert resp.json()["orderStatus"] == sm.FAILED


def test_callback_rejections():
    unknown = client.post("/callback/voice", json={"data": {"orderNo": "0000000000", "status": "SUCCESS"}})
    assert unknown.status_code == 400
    assert unknown.json()["data"]["reason"] == "unknown_order"

    assert client.post("/callback/voice", json=["not", "an", "object"]).status_code == 400
    assert client.post("/callback/fax", json={}).status_code == 404


def test_callback_token_header(order_factory, services):
    order = order_factory("1234567890", age_minutes=1)
    services.bindings.put(CallbackBinding(orderNo=order.orderNo, provider="voice", callbackUrl="u",
                                          callbackToken="pay_good"))
    event = {"data": {"orderNo": "1234567890", "status": "SUCCESS"}}

    bad = client.post("/callback/voice", json=event, headers={"x-callback-token": "pay_bad"})
    good = client.post("/callback/voice", json=event, headers={"x-callback-token": "pay_good"})

    assert bad.status_code == 400
    assert good.json()["result"] == "applied"


def test_callback_with_nan_timestamp_is_applied(order_factory):
    order_factory("1234567890", age_minutes=1)
    raw = b'{"data": {"orderNo": "1234567890", "status": "SUCCESS", "timestamp": NaN}}'

    resp = client.post("/callback/voice", content=raw, headers={"content-type": "application/json"})

    assert resp.status_code == 200
    assert resp.json()["result"] == "applied"
