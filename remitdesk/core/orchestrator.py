"""
Service wiring and tool dispatch.

`build_services()` assembles the components from settings (or from injected
parts in tests). `call_tool()` is the single boundary where typed failures and
argument validation errors become `{code, message, data}` bodies; anything
else (e.g. Redis down) propagates to the transport.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError as ArgsValidationError

from remitdesk.api.schemas import (
    DisputeArgs,
    ExchangeRateArgs,
    GetBeneficiariesArgs,
    OrderNoArgs,
    TransactionQueryArgs,
    TransferMoneyArgs,
    VerifyIdentityArgs,
)
from remitdesk.callback.notifier import Notifier
from remitdesk.core import state_machine as sm
from remitdesk.core.authorization import OrderQuery, TransferAuthorizationGate
from remitdesk.core.backend_status import BackendStatusSource, build_status_source
from remitdesk.core.delay_policy import DelayPolicy
from remitdesk.core.dispute import DisputeRequest, DisputeResolver
from remitdesk.core.errors import NotFound, ToolError, ValidationError, VerificationFailed
from remitdesk.core.reconciler import CallbackReconciler
from remitdesk.core.transfer import TransferArgs, TwoStageTransferProtocol
from remitdesk.core.verification import CredentialProof, VerificationRejected, VerificationSessionStore
from remitdesk.observability.logging import log
from remitdesk.settings import settings
from remitdesk.store.binding_repo import BindingRepository, MemoryBindingRepository, RedisBindingRepository
from remitdesk.store.directory import BeneficiaryDirectory, RateTable
from remitdesk.store.models import Order, StatusChange
from remitdesk.store.order_repo import MemoryOrderRepository, OrderRepository, RedisOrderRepository
from remitdesk.utils.time import Clock, iso_from_ms, now_ms


@dataclass
class Services:
    orders: OrderRepository
    bindings: BindingRepository
    directory: BeneficiaryDirectory
    rates: RateTable
    sessions: VerificationSessionStore
    policy: DelayPolicy
    gate: TransferAuthorizationGate
    transfer: TwoStageTransferProtocol
    reconciler: CallbackReconciler
    status_source: BackendStatusSource
    disputes: DisputeResolver
    clock: Clock


def build_services(*, clock: Clock = now_ms, orders: Optional[OrderRepository] = None,
                   bindings: Optional[BindingRepository] = None, directory: Optional[BeneficiaryDirectory] = None,
                   rates: Optional[RateTable] = None, status_source: Optional[BackendStatusSource] = None,
                   notifier: Optional[Notifier] = None) -> Services:
    memory = settings.ORDER_STORE == "memory"
    orders = orders or (MemoryOrderRepository() if memory else RedisOrderRepository())
    bindings = bindings or (MemoryBindingRepository() if memory else RedisBindingRepository())
    directory = directory or BeneficiaryDirectory()
    rates = rates or RateTable()
    status_source = status_source or build_status_source()
    notifier = notifier or Notifier()

    sessions = VerificationSessionStore(directory, clock=clock)
    policy = DelayPolicy(clock=clock)
    return Services(
        orders=orders,
        bindings=bindings,
        directory=directory,
        rates=rates,
        sessions=sessions,
        policy=policy,
        gate=TransferAuthorizationGate(orders, policy, sessions),
        transfer=TwoStageTransferProtocol(orders, bindings, directory, rates, clock=clock),
        reconciler=CallbackReconciler(orders, bindings, clock=clock),
        status_source=status_source,
        disputes=DisputeResolver(orders, sessions, status_source, notifier, clock=clock),
        clock=clock,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
        log(event="services_built", orderStore=settings.ORDER_STORE,
            statusSource=type(_services.status_source).__name__)
    return _services


def _ok(data: Any, message: str = "OK") -> Dict[str, Any]:
    return {"code": 200, "message": message, "data": data}


def _parse(model: type, arguments: Dict[str, Any]) -> BaseModel:
    return model.model_validate(arguments or {})


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
def _verify(svc: Services, principal_id: str, last_four: str, expiry_date: str):
    result = svc.sessions.verify(principal_id, CredentialProof(last_four, expiry_date))
    if isinstance(result, VerificationRejected):
        raise VerificationFailed(result.message, {"verified": False, "reason": result.reason})
    return result.session


def verify_identity(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    args = _parse(VerifyIdentityArgs, arguments)
    session = _verify(svc, principal_id, args.lastFourDigits, args.expiryDate)
    return _ok({
        "verified": True,
        "expiresAt": iso_from_ms(session.expiresAt),
        "validForMinutes": (session.expiresAt - session.verifiedAt) // 60000,
    }, "Identity verified")


def check_verification_status(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    return _ok(svc.sessions.status(principal_id))


def get_beneficiaries(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Beneficiary list; every call carries its own credential proof."""
    args = _parse(GetBeneficiariesArgs, arguments)
    _verify(svc, principal_id, args.lastFourDigits, args.expiryDate)
    found = svc.directory.search(principal_id, country=args.country, currency=args.currency,
                                 transfer_mode=args.transferMode, is_active=args.isActive, limit=args.limit)
    items = [dict(b.summary(), transferModes=list(b.transferModes)) for b in found]
    message = "OK" if items else "No beneficiaries match the filters"
    return _ok({"beneficiaries": items, "total": len(items)}, message)


def transaction_query(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    args = _parse(TransactionQueryArgs, arguments)
    return _ok(svc.gate.authorize(principal_id, OrderQuery(**args.model_dump())))


def transfer_money(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    args = TransferArgs(**_parse(TransferMoneyArgs, arguments).model_dump())
    requirements = svc.transfer.discover(principal_id, args)
    if requirements.missingFields:
        return _ok(requirements.to_dict(), "Please select a beneficiary and amount")
    # Invalid fields surface from confirm as a ValidationError
    return _ok(svc.transfer.confirm(principal_id, args).to_dict(), "Transfer initiated successfully")


def cancel_transfer(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    args = _parse(OrderNoArgs, arguments)
    return _ok(svc.transfer.cancel(principal_id, args.orderNo))


def query_exchange_rate(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    args = _parse(ExchangeRateArgs, arguments)
    rate = svc.rates.lookup(args.toCountry, args.toCurrency)
    if rate is None:
        raise NotFound("Exchange rate", f"{args.toCountry.upper()}/{args.toCurrency.upper()}")
    return _ok({
        "fromCountryCode": rate.fromCountry,
        "fromCurrencyCode": rate.fromCurrency,
        "toCountryCode": rate.toCountry,
        "toCurrencyCode": rate.toCurrency,
        "toCountryName": rate.toCountryName,
        "exchangeRate": rate.rate,
    })


def refresh_status(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Re-query the authoritative status and align the displayed one with it."""
    args = _parse(OrderNoArgs, arguments)
    order = svc.gate.ensure_detail_access(principal_id, args.orderNo)
    backend = svc.status_source.fetch(order)
    target = backend.status
    previous = order.status

    def _mutate(o: Order):
        if not sm.is_known(target) or not sm.allows_transition(o.status, target):
            return False
        now = svc.clock()
        o.status = target
        o.actualStatus = target
        o.updatedAt = now
        o.statusHistory.append(StatusChange(status=target, timestamp=now,
                                            reason="Status refreshed from backend on customer inquiry",
                                            updatedBy="system"))
        return True

    updated, changed = svc.orders.update(order.orderNo, _mutate)
    log(event="status_refreshed", principalId=principal_id, orderNo=order.orderNo, previous=previous,
        backendStatus=target, changed=changed)
    return _ok({
        "orderNo": updated.orderNo,
        "previousStatus": previous,
        "status": updated.status,
        "backendStatus": target,
        "refreshed": changed,
    })


def handle_dispute(svc: Services, principal_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    args = _parse(DisputeArgs, arguments)
    return svc.disputes.resolve(principal_id, DisputeRequest(**args.model_dump()))


ToolHandler = Callable[[Services, str, Dict[str, Any]], Dict[str, Any]]

TOOLS: Dict[str, ToolHandler] = {
    "verifyIdentity": verify_identity,
    "checkVerificationStatus": check_verification_status,
    "getBeneficiaries": get_beneficiaries,
    "transactionQuery": transaction_query,
    "transferMoney": transfer_money,
    "cancelTransfer": cancel_transfer,
    "queryExchangeRate": query_exchange_rate,
    "refreshStatus": refresh_status,
    "handleCompletedTransactionDispute": handle_dispute,
}


def list_tools() -> List[str]:
    return sorted(TOOLS)


def _first_error(e: ArgsValidationError) -> ValidationError:
    err = (e.errors() or [{}])[0]
    field = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
    return ValidationError(field, str(err.get("msg", "invalid value")))


def call_tool(svc: Services, principal_id: str, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    handler = TOOLS.get(name)
    if handler is None:
        log(event="tool_unknown", principalId=principal_id, tool=name)
        return {"code": 404, "message": f"Unknown tool: {name}", "data": {"tools": list_tools()}}

    try:
        result = handler(svc, principal_id, arguments or {})
    except ArgsValidationError as e:
        err = _first_error(e)
        log(event="tool_validation_error", principalId=principal_id, tool=name, field=err.field)
        return err.to_response()
    except ToolError as e:
        log(event="tool_error", principalId=principal_id, tool=name, code=e.code, message=e.message)
        return e.to_response()

    log(event="tool_ok", principalId=principal_id, tool=name, code=result.get("code"))
    return result
