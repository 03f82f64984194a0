from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

TransferMode = Literal["BANK_TRANSFER", "CASH_PICK_UP", "MOBILE_WALLET", "UPI"]
DisputeType = Literal["beneficiary_not_received", "wrong_amount", "delayed_delivery"]

LAST_FOUR_PATTERN = r"^\d{4}$"
EXPIRY_PATTERN = r"^\d{2}/\d{2}/\d{4}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ToolArgs(BaseModel):
    # Agents routinely send extra context fields; ignore them
    model_config = ConfigDict(extra="ignore")


class VerifyIdentityArgs(ToolArgs):
    lastFourDigits: str = Field(pattern=LAST_FOUR_PATTERN)
    expiryDate: str = Field(pattern=EXPIRY_PATTERN)  # DD/MM/YYYY


class TransactionQueryArgs(ToolArgs):
    orderNo: Optional[str] = Field(default=None, min_length=1)
    transferMode: Optional[TransferMode] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    orderDate: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    orderCount: int = Field(default=10, ge=1, le=50)
    includeDelayInfo: bool = False


class TransferMoneyArgs(ToolArgs):
    beneficiaryId: Optional[Union[str, int]] = None
    beneficiaryName: Optional[str] = None
    sendAmount: Optional[float] = None
    callBackProvider: Optional[str] = None

    @field_validator("beneficiaryId")
    @classmethod
    def _id_as_str(cls, v):
        return None if v in (None, "") else str(v)


class DisputeArgs(ToolArgs):
    orderNo: str = Field(min_length=1)
    lastFourDigits: str = Field(pattern=LAST_FOUR_PATTERN)
    expiryDate: Optional[str] = Field(default=None, pattern=EXPIRY_PATTERN)
    customerEmail: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    customerName: Optional[str] = None
    disputeType: DisputeType = "beneficiary_not_received"


class GetBeneficiariesArgs(ToolArgs):
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    transferMode: Optional[TransferMode] = None
    isActive: bool = True
    limit: int = Field(default=50, ge=1, le=100)
    lastFourDigits: str = Field(pattern=LAST_FOUR_PATTERN)
    expiryDate: str = Field(pattern=EXPIRY_PATTERN)


class ExchangeRateArgs(ToolArgs):
    toCountry: str = Field(min_length=2, max_length=2)
    toCurrency: str = Field(min_length=3, max_length=3)


class OrderNoArgs(ToolArgs):
    orderNo: str = Field(min_length=1)


class ToolCallRequest(BaseModel):
    """Either {method: <tool>, params: {...}} or JSON-RPC {jsonrpc, id, method: "tools/call", params: {name, arguments}}."""
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)
    jsonrpc: Optional[str] = None
    id: Optional[Union[int, str]] = None


class CallbackAck(BaseModel):
    status: Literal["received"] = "received"
    orderNo: Optional[str] = None
    result: str
    orderStatus: Optional[str] = None
