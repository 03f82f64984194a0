"""
Two-stage transfer protocol.

Stage 1 (discover) is read-only: it tells the caller which fields are still
missing or invalid and offers beneficiaries, suggested amounts and callback
providers to pick from. Stage 2 (confirm) creates the PENDING order and the
order's callback binding, then hands back a payment link. Completion arrives
later through the callback webhook; nothing here waits for it.
"""
from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from remitdesk.core import state_machine as sm
from remitdesk.core.errors import BusinessRuleRejected, NotFound, ValidationError
from remitdesk.observability.logging import log
from remitdesk.settings import settings
from remitdesk.store.binding_repo import BindingRepository
from remitdesk.store.directory import BeneficiaryDirectory, RateTable
from remitdesk.store.models import CallbackBinding, Order, StatusChange
from remitdesk.store.order_repo import OrderRepository
from remitdesk.utils.time import Clock, now_ms

PROVIDERS = ("voice", "text")

FEE_RATE = 0.01
MIN_FEE = 5.0
MAX_FEE = 50.0

CODE_AMOUNT_LIMIT = 607
CODE_BENEFICIARY_NOT_FOUND = 608
CODE_KYC_REQUIRED = 610


def calculate_fee(amount: float) -> float:
    return round(min(max(amount * FEE_RATE, MIN_FEE), MAX_FEE), 2)


def suggested_amounts() -> List[float]:
    out = []
    for raw in (settings.SUGGESTED_AMOUNTS or "").split(","):
        raw = raw.strip()
        if raw:
            out.append(float(raw))
    return out


def provider_config(provider: str) -> Dict[str, str]:
    if provider == "text":
        return {"url": settings.CALLBACK_TEXT_URL, "token": settings.CALLBACK_TEXT_TOKEN}
    return {"url": settings.CALLBACK_VOICE_URL, "token": settings.CALLBACK_VOICE_TOKEN}


@dataclass
class TransferArgs:
    beneficiaryId: Optional[str] = None
    beneficiaryName: Optional[str] = None
    sendAmount: Optional[float] = None
    callBackProvider: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.beneficiaryId and not self.beneficiaryName and not self.sendAmount


@dataclass
class FieldRequirements:
    missingFields: List[str] = field(default_factory=list)
    invalidFields: Dict[str, str] = field(default_factory=dict)
    beneficiaries: List[Dict[str, Any]] = field(default_factory=list)
    sendAmounts: List[Dict[str, Any]] = field(default_factory=list)
    callBackProviders: List[Dict[str, Any]] = field(default_factory=list)
    description: str = "Please select a beneficiary and amount to proceed with the transfer."

    @property
    def complete(self) -> bool:
        return not self.missingFields and not self.invalidFields

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": "discovery",
            "missingFields": list(self.missingFields),
            "invalidFields": dict(self.invalidFields),
            "beneficiaries": self.beneficiaries,
            "sendAmounts": self.sendAmounts,
            "callBackProviders": self.callBackProviders,
            "description": self.description,
        }


@dataclass
class TransferResult:
    orderNo: str
    paymentLink: str
    callBackProvider: str
    callBackUrl: str
    callBackToken: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": "confirmation",
            "orderNo": self.orderNo,
            "status": sm.PENDING,
            "button": {"title": "Complete Payment", "link": self.paymentLink},
            "paymentLink": self.paymentLink,
            "callBackProvider": self.callBackProvider,
            "callBackUrl": self.callBackUrl,
            "callBackToken": self.callBackToken,
            "transactionDetails": self.details,
        }


class TwoStageTransferProtocol:
    def __init__(self, orders: OrderRepository, bindings: BindingRepository, directory: BeneficiaryDirectory,
                 rates: RateTable, clock: Clock = now_ms):
        self.orders = orders
        self.bindings = bindings
        self.directory = directory
        self.rates = rates
        self.clock = clock

    def discover(self, principal_id: str, args: TransferArgs) -> FieldRequirements:
        """Read-only. Safe to call any number of times."""
        req = FieldRequirements(
            beneficiaries=[b.summary() for b in self.directory.for_principal(principal_id)],
            sendAmounts=[{"id": i + 1, "amount": a} for i, a in enumerate(suggested_amounts())],
            callBackProviders=[
                {"type": p, "url": provider_config(p)["url"], "description": f"{p.capitalize()}-based confirmation callbacks"}
                for p in PROVIDERS
            ],
        )
        if not args.beneficiaryId and not args.beneficiaryName:
            req.missingFields.append("beneficiaryName")
        if args.sendAmount is None:
            req.missingFields.append("sendAmount")
        elif args.sendAmount <= 0:
            req.invalidFields["sendAmount"] = "must be greater than 0"
        if args.callBackProvider and args.callBackProvider.lower() not in PROVIDERS:
            req.invalidFields["callBackProvider"] = "must be one of voice, text"
        return req

    def confirm(self, principal_id: str, args: TransferArgs) -> TransferResult:
        req = self.discover(principal_id, args)
        if req.missingFields:
            raise ValidationError(req.missingFields[0], "is required")
        if req.invalidFields:
            name, detail = next(iter(req.invalidFields.items()))
            raise ValidationError(name, detail)

        beneficiary = self.directory.find(principal_id, args.beneficiaryId, args.beneficiaryName)
        if beneficiary is None:
            raise BusinessRuleRejected(
                CODE_BENEFICIARY_NOT_FOUND,
                "Beneficiary not found, please change beneficiary name.",
                {"beneficiaries": req.beneficiaries},
            )

        amount = float(args.sendAmount)
        if amount > settings.MAX_SEND_AMOUNT:
            raise BusinessRuleRejected(CODE_AMOUNT_LIMIT, "Amount exceeded limit, please set a smaller amount.")
        if amount > settings.KYC_SEND_AMOUNT:
            raise BusinessRuleRejected(CODE_KYC_REQUIRED, "Please do KYC for member")

        rate = self.rates.lookup(beneficiary.country, beneficiary.currency)
        if rate is None:
            raise BusinessRuleRejected(400, "Exchange rate not available for this currency pair.")

        provider = (args.callBackProvider or settings.DEFAULT_CALLBACK_PROVIDER).lower()
        cfg = provider_config(provider)
        fee = calculate_fee(amount)
        total = round(amount + fee, 2)
        received = round(amount * rate.rate, 2)
        now = self.clock()

        order = Order(
            orderNo="",
            principalId=principal_id,
            createdAt=now,
            beneficiaryId=beneficiary.id,
            beneficiaryName=beneficiary.name,
            fromAmount=amount,
            feeAmount=fee,
            totalPayAmount=total,
            receivedAmount=received,
            exchangeRate=rate.rate,
            transferMode=beneficiary.transferModes[0] if beneficiary.transferModes else "BANK_TRANSFER",
            country=beneficiary.country,
            currency=beneficiary.currency,
            callbackProvider=provider,
            statusHistory=[StatusChange(status=sm.PENDING, timestamp=now, reason="Transfer initiated", updatedBy="customer")],
            updatedAt=now,
        )
        token = f"pay_{uuid.uuid4().hex}"
        self._create_unique(order, token, total, beneficiary.name, provider)

        binding = CallbackBinding(orderNo=order.orderNo, provider=provider, callbackUrl=cfg["url"],
                                  callbackToken=token, createdAt=now)
        self.bindings.put(binding)

        log(event="transfer_confirmed", principalId=principal_id, orderNo=order.orderNo, amount=amount,
            fee=fee, provider=provider, token=token)

        return TransferResult(
            orderNo=order.orderNo,
            paymentLink=order.paymentLink,
            callBackProvider=provider,
            callBackUrl=cfg["url"],
            callBackToken=token,
            details={
                "beneficiary": {
                    **beneficiary.summary(),
                    "transferModes": list(beneficiary.transferModes),
                    "bankName": beneficiary.bankName,
                },
                "sendAmount": amount,
                "fee": fee,
                "totalAmount": total,
                "receivedAmount": received,
                "exchangeRate": rate.rate,
                "currency": beneficiary.currency,
            },
        )

    def _create_unique(self, order: Order, token: str, total: float, beneficiary_name: str, provider: str,
                       attempts: int = 5) -> None:
        for _ in range(attempts):
            order.orderNo = f"{secrets.randbelow(10 ** 10):010d}"
            order.paymentLink = payment_link(order.orderNo, token, total, beneficiary_name, provider)
            try:
                self.orders.create(order)
                return
            except ValueError:
                log(event="order_number_collision", orderNo=order.orderNo)
        raise RuntimeError("could not allocate a unique order number")

    def cancel(self, principal_id: str, order_no: str) -> dict:
        """Compensating cancellation. Terminal orders are returned untouched."""
        existing = self.orders.get(order_no)
        if existing is None or existing.principalId != principal_id:
            raise NotFound("Order", order_no)

        def _mutate(o: Order):
            if sm.is_terminal(o.status):
                return False
            now = self.clock()
            o.status = sm.CANCELLED
            o.actualStatus = sm.CANCELLED
            o.updatedAt = now
            # Completion events from before the cancellation are stale from here on
            o.lastCallbackAt = max(o.lastCallbackAt, now)
            o.statusHistory.append(StatusChange(status=sm.CANCELLED, timestamp=now,
                                                reason="Cancelled by customer", updatedBy="customer"))
            return True

        order, changed = self.orders.update(order_no, _mutate)
        if changed:
            self.bindings.consume(order_no, self.clock())
        log(event="transfer_cancel", principalId=principal_id, orderNo=order_no, cancelled=changed,
            status=order.status)
        return {"orderNo": order_no, "cancelled": changed, "status": order.status}


def payment_link(order_no: str, token: str, amount: float, beneficiary_name: str, provider: str) -> str:
    query = urlencode({
        "token": token,
        "orderNo": order_no,
        "amount": f"{amount:.2f}",
        "beneficiary": beneficiary_name,
        "callback": provider,
    })
    return f"{settings.PAYMENT_LINK_BASE}?{query}"
