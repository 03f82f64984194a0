from dataclasses import dataclass, field, asdict, fields as dc_fields
from typing import Any, Dict, List, Optional

from remitdesk.core import state_machine as sm


def _known_kwargs(cls, data: dict) -> dict:
    """Drop unknown fields so cls(**kwargs) never explodes on older documents."""
    allowed = {f.name for f in dc_fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in allowed}


@dataclass
class StatusChange:
    status: str
    timestamp: int
    reason: Optional[str] = None
    updatedBy: str = "system"  # system/bank/customer/admin


@dataclass
class Order:
    orderNo: str
    principalId: str
    createdAt: int  # epoch ms

    # Displayed status and last confirmed authoritative status
    status: str = sm.PENDING
    actualStatus: str = sm.PENDING

    beneficiaryId: Optional[str] = None
    beneficiaryName: str = ""
    fromAmount: float = 0.0
    feeAmount: float = 0.0
    totalPayAmount: float = 0.0
    receivedAmount: float = 0.0
    exchangeRate: float = 0.0
    transferMode: str = "BANK_TRANSFER"
    country: str = ""
    currency: str = ""

    failReason: Optional[str] = None
    # Flagged by compliance; gates targeted lookups like AML_HOLD does
    anomalous: bool = False
    refundInitiated: bool = False
    paymentLink: Optional[str] = None
    callbackProvider: Optional[str] = None

    statusHistory: List[StatusChange] = field(default_factory=list)
    # epoch ms of the last applied completion event; orders stale callbacks
    lastCallbackAt: int = 0
    # Bumped by every conditional update
    version: int = 0
    updatedAt: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        kw = _known_kwargs(cls, data)
        kw["statusHistory"] = [
            h if isinstance(h, StatusChange) else StatusChange(**_known_kwargs(StatusChange, h))
            for h in (kw.get("statusHistory") or [])
        ]
        return cls(**kw)


@dataclass
class CallbackBinding:
    orderNo: str
    provider: str  # voice/text
    callbackUrl: str
    callbackToken: str
    createdAt: int = 0
    consumedAt: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.consumedAt is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallbackBinding":
        return cls(**_known_kwargs(cls, data))


@dataclass
class Beneficiary:
    id: str
    principalId: str
    title: str
    name: str
    country: str
    currency: str
    accountNumber: str
    bankName: str
    # Government ID on file: "784-1990-1234567-1" style number and ISO expiry date
    idNumber: str
    idExpiry: str
    transferModes: List[str] = field(default_factory=lambda: ["BANK_TRANSFER"])
    icon: str = ""
    isActive: bool = True

    @property
    def last_four(self) -> str:
        digits = "".join(ch for ch in self.idNumber if ch.isdigit())
        return digits[-4:]

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "name": self.name,
            "currency": self.currency,
            "country": self.country,
            "icon": self.icon,
        }


@dataclass
class ExchangeRate:
    toCountry: str
    toCurrency: str
    rate: float
    toCountryName: str = ""
    fromCountry: str = "AE"
    fromCurrency: str = "AED"


@dataclass
class VerificationSession:
    principalId: str
    verifiedAt: int
    expiresAt: int
    beneficiaryId: Optional[str] = None
    lastFour: str = ""

    def is_live(self, now: int) -> bool:
        return now < self.expiresAt
