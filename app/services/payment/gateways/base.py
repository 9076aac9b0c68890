"""
Base Payment Gateway
Abstract class defining the interface for all payment gateways
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Tuple, List
from dataclasses import dataclass, field
from enum import Enum

import httpx

from app.models.payment.gateway import GatewayKind, VerificationPolicy
from app.models.payment.transaction import TransactionStatus
from app.services.payment.hashing import VerificationOutcome
from app.services.payment.normalizer import NormalizedPaymentRequest

logger = logging.getLogger(__name__)

CREATE_TIMEOUT = 30.0
STATUS_TIMEOUT = 15.0

ERROR_MESSAGE_FIELDS = ("error_desc", "msg", "message", "error")


class GatewayErrorType(str, Enum):
    """Why an adapter call failed"""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    UPSTREAM = "upstream"
    VERIFICATION = "verification"


@dataclass
class GatewayResult:
    """Result of creating a payment or polling its status"""
    success: bool
    transaction_reference: Optional[str] = None
    payment_link: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    status: Optional[TransactionStatus] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    error_type: Optional[GatewayErrorType] = None
    raw_response: Optional[Dict[str, Any]] = None


@dataclass
class CallbackResult:
    """Result of normalizing a webhook or redirect payload"""
    success: bool
    transaction_reference: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    amount: Optional[float] = None
    verification: VerificationOutcome = VerificationOutcome.NOT_REQUIRED
    error_message: Optional[str] = None
    error_type: Optional[GatewayErrorType] = None
    raw_payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DetailResult:
    """Result of a dashboard-style transaction lookup"""
    success: bool
    details: Optional[Dict[str, Any]] = None
    status: Optional[TransactionStatus] = None
    gateway_transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    error_type: Optional[GatewayErrorType] = None
    raw_response: Optional[Any] = None


@dataclass
class TransactionListResult:
    """Result of a bulk lookup by date"""
    success: bool
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Optional[Any] = None
    error_message: Optional[str] = None
    error_type: Optional[GatewayErrorType] = None
    raw_response: Optional[Any] = None

    @property
    def count(self) -> int:
        return len(self.transactions)


def extract_error_message(body: Any, fallback: str) -> str:
    """
    Pull a human-readable message out of an upstream error body.
    Tries the known error fields in order before the fallback.
    """
    if isinstance(body, str) and body.strip():
        return body.strip()
    if not isinstance(body, dict):
        return fallback

    for key in ERROR_MESSAGE_FIELDS:
        value = body.get(key)
        if isinstance(value, dict):
            value = value.get("message") or value.get("msg")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return fallback


def parse_json_body(response: httpx.Response) -> Tuple[Optional[Any], Optional[str]]:
    """Decode a response body; returns (body, error)"""
    try:
        return response.json(), None
    except ValueError:
        text = response.text[:200] if response.text else ""
        return None, f"Malformed response from gateway (HTTP {response.status_code}): {text}"


def mask(value: Optional[str], keep: int = 4) -> str:
    """Mask a secret for logging"""
    if not value:
        return "MISSING"
    return f"{value[:keep]}..."


def mask_phone(value: Optional[str]) -> str:
    if not value or len(value) < 7:
        return "***"
    return f"{value[:3]}***{value[-4:]}"


def mask_email(value: Optional[str]) -> str:
    if not value or "@" not in value:
        return "***"
    local, domain = value.split("@", 1)
    return f"{local[:3]}***@{domain}"


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.
    All payment gateways must implement these methods.

    Adapters never raise for expected failures: upstream errors, timeouts and
    malformed bodies come back as results with ``success=False``.
    """

    gateway_id: str = "base"
    gateway_name: str = "Base Gateway"
    gateway_kind: GatewayKind = GatewayKind.HOSTED_CHECKOUT

    # Payload fields that may carry the transaction reference / gateway echo id
    reference_fields: Tuple[str, ...] = ()
    echo_id_fields: Tuple[str, ...] = ()
    # Query parameter that identifies a browser redirect from this gateway
    redirect_reference_field: str = ""

    def __init__(
        self,
        config: Dict[str, Any],
        verification_policy: VerificationPolicy = VerificationPolicy.STRICT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize gateway with configuration.

        Args:
            config: Gateway configuration including credentials and endpoints
            verification_policy: How to treat missing or invalid callback hashes
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.verification_policy = verification_policy
        self.transport = transport
        self._validate_config()

    @abstractmethod
    def _validate_config(self):
        """Validate required configuration parameters"""
        pass

    @abstractmethod
    async def create_payment(self, request: NormalizedPaymentRequest) -> GatewayResult:
        """
        Create a payment with the gateway.

        Args:
            request: Canonical payment request

        Returns:
            GatewayResult with the correlation reference and payment link
        """
        pass

    @abstractmethod
    async def check_payment_status(
        self,
        transaction_reference: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> GatewayResult:
        """
        Poll the gateway for the current status.

        Args:
            transaction_reference: Reference the gateway knows the payment by
            extra: Stored transaction context and optional hints (txn_date)
        """
        pass

    @abstractmethod
    async def handle_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        """
        Normalize a webhook or redirect payload and verify its hash.

        Args:
            payload: Fields posted or redirected by the gateway
        """
        pass

    @abstractmethod
    async def retrieve_transaction_details(self, reference: str) -> DetailResult:
        """
        Dashboard-style lookup used for manual reconciliation.

        Args:
            reference: Gateway echo id when known, else the transaction reference
        """
        pass

    def extract_identifiers(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
        """Pick (reference, echo id) out of a payload using this gateway's field names"""
        reference = next((str(payload[f]) for f in self.reference_fields if payload.get(f)), None)
        echo_id = next((str(payload[f]) for f in self.echo_id_fields if payload.get(f)), None)
        return reference, echo_id

    def retrieval_key(self, transaction: Dict[str, Any]) -> str:
        """Identifier passed to retrieve_transaction_details for a stored transaction"""
        return transaction["transaction_id"]

    def apply_verification_policy(
        self,
        outcome: VerificationOutcome,
        reference: Optional[str]
    ) -> Optional[str]:
        """
        Decide whether a verification outcome rejects the callback.

        Returns:
            Rejection message, or None when processing may continue
        """
        if outcome in (VerificationOutcome.VALID, VerificationOutcome.NOT_REQUIRED):
            return None

        if outcome == VerificationOutcome.MISSING:
            message = "Hash is required for callback verification"
        else:
            message = "Invalid hash verification"

        if self.verification_policy == VerificationPolicy.PERMISSIVE:
            logger.warning(
                "%s callback %s for %s; allowed by permissive policy",
                self.gateway_id, outcome.value, reference,
            )
            return None

        logger.warning("%s callback rejected for %s: %s", self.gateway_id, reference, message)
        return message

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    def describe(self) -> Dict[str, Any]:
        """Public gateway info"""
        return {
            "gateway_id": self.gateway_id,
            "name": self.gateway_name,
            "kind": self.gateway_kind.value,
        }
