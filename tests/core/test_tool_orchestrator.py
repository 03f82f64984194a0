from unittest.mock import MagicMock

import pytest

from remitdesk.core import state_machine as sm
from remitdesk.core.orchestrator import TOOLS, build_services, call_tool, list_tools
from remitdesk.store.directory import DEFAULT_BENEFICIARIES, BeneficiaryDirectory
from remitdesk.store.models import Beneficiary

PROOF = {"lastFourDigits": "5671", "expiryDate": "31/12/2030"}


def test_every_tool_is_listed():
    assert list_tools() == sorted(TOOLS)
    assert "handleCompletedTransactionDispute" in list_tools()


def test_unknown_tool(services):
    out = call_tool(services, "agent1", "launchRocket", {})
    assert out["code"] == 404
    assert "verifyIdentity" in out["data"]["tools"]


def test_delayed_lookup_then_verify_then_lookup(services, order_factory):
    order_factory("DELAYED123456", age_minutes=15)

    first = call_tool(services, "agent1", "transactionQuery", {"orderNo": "DELAYED123456"})
    assert first["code"] == 401
    assert first["data"]["nextSteps"][0]["action"] == "verifyIdentity"

    verified = call_tool(services, "agent1", "verifyIdentity", PROOF)
    assert verified["code"] == 200
    assert verified["data"]["verified"] is True
    assert verified["data"]["validForMinutes"] == 30

    second = call_tool(services, "agent1", "transactionQuery", {"orderNo": "DELAYED123456"})
    assert second["code"] == 200
    assert second["data"]["orderNo"] == "DELAYED123456"


def test_listing_needs_no_verification(services, order_factory):
    for i in range(5):
        order_factory(f"DELAYED{i}", age_minutes=20)
    out = call_tool(services, "agent1", "transactionQuery", {"orderCount": 5})
    assert out["code"] == 200
    assert out["data"]["total"] == 5


@pytest.mark.parametrize("arguments,field", [
    ({"lastFourDigits": "12a4", "expiryDate": "31/12/2030"}, "lastFourDigits"),
    ({"lastFourDigits": "5671", "expiryDate": "2030-12-31"}, "expiryDate"),
    ({"lastFourDigits": "5671"}, "expiryDate"),
])
def test_verify_identity_rejects_malformed_args(services, arguments, field):
    out = call_tool(services, "agent1", "verifyIdentity", arguments)
    assert out["code"] == 400
    assert out["data"]["field"] == field


def test_verify_identity_mismatch(services):
    out = call_tool(services, "agent1", "verifyIdentity", {"lastFourDigits": "0000", "expiryDate": "31/12/2030"})
    assert out["code"] == 401
    assert out["data"] == {"verified": False, "reason": "NO_MATCH"}


def test_check_verification_status(services):
    before = call_tool(services, "agent1", "checkVerificationStatus")
    call_tool(services, "agent1", "verifyIdentity", PROOF)
    after = call_tool(services, "agent1", "checkVerificationStatus")
    assert before["data"]["isVerified"] is False
    assert after["data"]["isVerified"] is True


def test_transaction_query_validation(services):
    assert call_tool(services, "agent1", "transactionQuery", {"orderCount": 0})["code"] == 400
    bad_date = call_tool(services, "agent1", "transactionQuery", {"orderDate": "2026-13-45"})
    assert bad_date["code"] == 400
    assert bad_date["data"]["field"] == "orderDate"


def test_transfer_money_discovery_then_confirmation(services):
    discovery = call_tool(services, "agent1", "transferMoney", {})
    assert discovery["data"]["stage"] == "discovery"

    confirmation = call_tool(services, "agent1", "transferMoney", {"beneficiaryId": 123, "sendAmount": 1000})
    assert confirmation["code"] == 200
    assert confirmation["data"]["stage"] == "confirmation"
    assert confirmation["data"]["status"] == sm.PENDING


def test_transfer_money_business_codes(services):
    out = call_tool(services, "agent1", "transferMoney", {"beneficiaryName": "Zhang", "sendAmount": 60000})
    assert out["code"] == 607
    out = call_tool(services, "agent1", "transferMoney", {"beneficiaryName": "Zhang", "sendAmount": -1})
    assert out["code"] == 400


def test_cancel_transfer(services):
    confirmation = call_tool(services, "agent1", "transferMoney", {"beneficiaryName": "Li", "sendAmount": 2000})
    out = call_tool(services, "agent1", "cancelTransfer", {"orderNo": confirmation["data"]["orderNo"]})
    assert out["data"]["cancelled"] is True
    assert call_tool(services, "agent1", "cancelTransfer", {"orderNo": "missing"})["code"] == 404


def test_query_exchange_rate(services):
    out = call_tool(services, "agent1", "queryExchangeRate", {"toCountry": "cn", "toCurrency": "cny"})
    assert out["data"]["exchangeRate"] == 1.89
    assert call_tool(services, "agent1", "queryExchangeRate", {"toCountry": "XX", "toCurrency": "XXX"})["code"] == 404


def test_refresh_status_aligns_display_with_backend(services, order_factory):
    order_factory("1234567891", age_minutes=2, status=sm.SUCCESS, actual_status=sm.FAILED)

    out = call_tool(services, "agent1", "refreshStatus", {"orderNo": "1234567891"})

    assert out["data"]["previousStatus"] == sm.SUCCESS
    assert out["data"]["status"] == sm.FAILED
    assert out["data"]["refreshed"] is True
    assert services.orders.get("1234567891").statusHistory[-1].updatedBy == "system"


def test_refresh_status_is_gated_like_lookups(services, order_factory):
    order_factory("DELAYED123456", age_minutes=15)
    assert call_tool(services, "agent1", "refreshStatus", {"orderNo": "DELAYED123456"})["code"] == 401


def test_dispute_tool(services, order_factory):
    order_factory("1234567891", age_minutes=60, status=sm.SUCCESS, actual_status=sm.FAILED)

    bad_email = call_tool(services, "agent1", "handleCompletedTransactionDispute",
                          {"orderNo": "1234567891", **PROOF, "customerEmail": "not-an-email"})
    assert bad_email["code"] == 400

    out = call_tool(services, "agent1", "handleCompletedTransactionDispute", {"orderNo": "1234567891", **PROOF})
    assert out["code"] == 200
    assert out["data"]["scenario"] == "failed_transaction"


def _ids(out):
    return [b["id"] for b in out["data"]["beneficiaries"]]


def test_get_beneficiaries_with_valid_proof(services):
    out = call_tool(services, "agent1", "getBeneficiaries", PROOF)
    assert out["code"] == 200
    assert _ids(out) == ["123", "124", "125", "126", "127"]
    assert out["data"]["beneficiaries"][0]["name"] == "Zhang San"
    assert services.sessions.is_verified("agent1")


def test_get_beneficiaries_wrong_proof(services):
    out = call_tool(services, "agent1", "getBeneficiaries", {"lastFourDigits": "0000", "expiryDate": "31/12/2030"})
    assert out["code"] == 401
    assert out["data"] == {"verified": False, "reason": "NO_MATCH"}
    assert "beneficiaries" not in out["data"]


def test_get_beneficiaries_requires_proof(services):
    out = call_tool(services, "agent1", "getBeneficiaries", {"country": "CN"})
    assert out["code"] == 400


@pytest.mark.parametrize("filters,ids", [
    ({"country": "us"}, ["125", "126"]),
    ({"currency": "CNY"}, ["123", "124"]),
    ({"transferMode": "UPI"}, ["127"]),
    ({"limit": 2}, ["123", "124"]),
    ({"country": "GB"}, []),
])
def test_get_beneficiaries_filters(services, filters, ids):
    out = call_tool(services, "agent1", "getBeneficiaries", dict(PROOF, **filters))
    assert out["code"] == 200
    assert _ids(out) == ids
    assert out["data"]["total"] == len(ids)


def test_get_beneficiaries_inactive_filter(clock):
    retired = Beneficiary(id="199", principalId="agent1", title="Old account", name="Old Payee", country="CN",
                          currency="CNY", accountNumber="000", bankName="Test Bank",
                          idNumber="784-2000-0000000-9", idExpiry="2031-01-01", isActive=False)
    svc = build_services(clock=clock, directory=BeneficiaryDirectory(list(DEFAULT_BENEFICIARIES) + [retired]),
                         notifier=MagicMock())

    active = call_tool(svc, "agent1", "getBeneficiaries", PROOF)
    inactive = call_tool(svc, "agent1", "getBeneficiaries", dict(PROOF, isActive=False))

    assert "199" not in _ids(active)
    assert _ids(inactive) == ["199"]
