"""
Transaction Models
Stored payment transaction and its status vocabulary
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class TransactionStatus(str, Enum):
    """Internal four-state transaction status"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReconciliationSource(str, Enum):
    """Channel that delivered a status update"""
    CALLBACK = "callback"                    # Server-to-server webhook
    REDIRECT = "redirect"                    # Browser redirect to /success or /failure
    STATUS_POLL = "status_poll"              # Status check against the gateway
    EXPLICIT_RETRIEVE = "explicit_retrieve"  # Manual dashboard lookup


SUCCESS_VALUES = frozenset({"success", "completed", "paid"})
FAILED_VALUES = frozenset({"failed", "failure"})
CANCELLED_VALUES = frozenset({"cancelled", "canceled"})


def normalize_status(value: Any) -> TransactionStatus:
    """
    Map a gateway status string onto the internal enum.
    Anything unrecognised (including empty) is pending.
    """
    normalized = str(value or "").strip().lower()
    if normalized in SUCCESS_VALUES:
        return TransactionStatus.SUCCESS
    if normalized in FAILED_VALUES:
        return TransactionStatus.FAILED
    if normalized in CANCELLED_VALUES:
        return TransactionStatus.CANCELLED
    return TransactionStatus.PENDING


class ReconciliationEntry(BaseModel):
    """One entry of the reconciliation audit trail"""
    model_config = ConfigDict(use_enum_values=True)

    source: ReconciliationSource
    received_at: datetime
    status: Optional[TransactionStatus] = None
    previous_status: TransactionStatus
    status_changed: bool = False
    payload: Dict[str, Any] = Field(default_factory=dict)


class TransactionInDB(BaseModel):
    """Transaction document in database"""
    model_config = ConfigDict(use_enum_values=True)

    internal_id: str                # Generated at creation, never reused
    transaction_id: str             # Correlation reference echoed by the gateway
    user_id: str
    payment_method_id: Optional[str] = None

    gateway: str                    # easebuzz, upigateway
    gateway_transaction_id: Optional[str] = None

    amount: float = Field(..., gt=0)
    currency: str = "INR"
    status: TransactionStatus = TransactionStatus.PENDING

    payment_link: Optional[str] = None
    payment_request: Dict[str, Any] = Field(default_factory=dict)
    payment_response: Dict[str, Any] = Field(default_factory=dict)
    reconciliation_log: List[Dict[str, Any]] = Field(default_factory=list)

    callback_url: Optional[str] = None
    return_url: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PaymentStatusRequest(BaseModel):
    """Request to poll a transaction's status"""
    transactionId: str = Field(..., min_length=1)
    txn_date: Optional[str] = None


class RetrieveTransactionRequest(BaseModel):
    """Request for a manual dashboard lookup"""
    txnid: str = Field(..., min_length=1)


class TransactionsByDateRequest(BaseModel):
    transaction_date: str = Field(..., pattern=r"^\d{2}-\d{2}-\d{4}$")


class TransactionsByDateRangeRequest(BaseModel):
    start_date: str = Field(..., pattern=r"^\d{2}-\d{2}-\d{4}$")
    end_date: str = Field(..., pattern=r"^\d{2}-\d{2}-\d{4}$")
