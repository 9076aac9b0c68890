"""
UPI Gateway Implementation
Implements the BasePaymentGateway for UPI collection through the EKQR API
"""
import logging
from typing import Dict, Any, Optional

import httpx

from app.core.exceptions import GatewayConfigurationError
from app.models.payment.gateway import GatewayKind, GatewayName
from app.models.payment.transaction import normalize_status
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    CallbackResult,
    DetailResult,
    GatewayErrorType,
    GatewayResult,
    CREATE_TIMEOUT,
    STATUS_TIMEOUT,
    extract_error_message,
    mask,
    parse_json_body,
)
from app.services.payment.hashing import VerificationOutcome
from app.services.payment.normalizer import NormalizedPaymentRequest

logger = logging.getLogger(__name__)

PAYMENT_URL_FIELDS = ("payment_url", "upi_url")


def extract_payment_url(body: Dict[str, Any]) -> Optional[str]:
    """Payment URL may sit under data or at the top level"""
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    for source in (data, body):
        for key in PAYMENT_URL_FIELDS:
            if source.get(key):
                return str(source[key])
    return None


class UPIGateway(BasePaymentGateway):
    """
    UPI Gateway (EKQR) Implementation

    The order id handed back to callers is the client_txn_id we generated;
    the gateway never mints a second reference at creation time. Callbacks
    carry no hash, so verification is not required for this gateway.
    """

    gateway_id = GatewayName.UPIGATEWAY.value
    gateway_name = "UPI Gateway"
    gateway_kind = GatewayKind.UPI

    reference_fields = ("client_txn_id", "order_id")
    echo_id_fields = ("upi_txn_id", "txn_id", "gateway_transaction_id")
    redirect_reference_field = "client_txn_id"

    def __init__(self, config: Dict[str, Any], **kwargs):
        super().__init__(config, **kwargs)
        self.key = (config.get("key") or "").strip()
        self.base_url = (config.get("base_url") or "https://api.ekqr.in/api").rstrip("/")
        self.default_redirect_url = config.get("default_redirect_url") or "/payment/status"

    def _validate_config(self):
        if not (self.config.get("key") or "").strip():
            raise GatewayConfigurationError("EKQR_KEY is required")

    def build_order_payload(self, request: NormalizedPaymentRequest, client_txn_id: str) -> Dict[str, Any]:
        """JSON body for /create_order. Amount is sent as a string."""
        amount = request.amount
        return {
            "key": self.key,
            "client_txn_id": client_txn_id,
            "amount": str(int(amount)) if float(amount).is_integer() else str(amount),
            "p_info": request.product_info,
            "customer_name": request.customer_name,
            "customer_email": request.email,
            "customer_mobile": request.phone,
            "redirect_url": request.success_url or self.default_redirect_url,
            "udf1": request.udf.get("udf1", ""),
            "udf2": request.udf.get("udf2", ""),
            "udf3": request.udf.get("udf3", ""),
        }

    def _failure(self, reference: Optional[str], message: str, error_type: GatewayErrorType,
                 body: Any = None) -> GatewayResult:
        if error_type == GatewayErrorType.UPSTREAM:
            logger.error("UPI gateway error for %s: %s", reference, message)
        return GatewayResult(
            success=False,
            transaction_reference=reference,
            error_message=message,
            error_type=error_type,
            raw_response=body if isinstance(body, dict) else None,
        )

    async def _post(self, path: str, payload: Dict[str, Any], timeout: float):
        """POST JSON to the EKQR API; returns (body, error)"""
        try:
            async with self._client(timeout) as client:
                response = await client.post(
                    f"{self.base_url}/{path}",
                    json=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException:
            return None, "UPI gateway request timed out"
        except httpx.HTTPError as e:
            return None, f"UPI gateway request failed: {str(e)}"

        body, parse_error = parse_json_body(response)
        if parse_error:
            return None, parse_error
        if response.status_code not in (200, 201):
            return body, extract_error_message(body, f"UPI gateway returned HTTP {response.status_code}")
        if not isinstance(body, dict) or not body.get("status"):
            return body, extract_error_message(body, "UPI gateway request was not successful")
        return body, None

    async def create_payment(self, request: NormalizedPaymentRequest) -> GatewayResult:
        """Create a UPI order and return its payment URL"""
        client_txn_id = request.gateway_reference

        if not self.key:
            return self._failure(client_txn_id, "EKQR_KEY is not configured", GatewayErrorType.CONFIGURATION)
        if not request.amount or request.amount <= 0:
            return self._failure(client_txn_id, "Amount is required for UPI payment", GatewayErrorType.VALIDATION)
        if not request.email:
            return self._failure(
                client_txn_id,
                "Email (customer_email/email) is required for UPI payment",
                GatewayErrorType.VALIDATION,
            )

        payload = self.build_order_payload(request, client_txn_id)
        logger.info(
            "UPI create order: key=%s client_txn_id=%s amount=%s",
            mask(self.key), client_txn_id, payload["amount"],
        )

        body, error = await self._post("create_order", payload, CREATE_TIMEOUT)
        if error:
            return self._failure(client_txn_id, error, GatewayErrorType.UPSTREAM, body)

        payment_url = extract_payment_url(body)
        if not payment_url:
            return self._failure(
                client_txn_id, "Payment URL not received from UPI gateway", GatewayErrorType.UPSTREAM, body
            )

        logger.info("UPI order created: %s", client_txn_id)
        return GatewayResult(
            success=True,
            transaction_reference=client_txn_id,
            payment_link=payment_url,
            raw_response=body,
        )

    async def check_payment_status(
        self,
        transaction_reference: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> GatewayResult:
        """Query /check_order_status; txn_date is passed through when given"""
        extra = extra or {}
        client_txn_id = (transaction_reference or "").strip()

        if not self.key:
            return self._failure(client_txn_id, "EKQR_KEY is not configured", GatewayErrorType.CONFIGURATION)
        if not client_txn_id:
            return self._failure(client_txn_id, "client_txn_id is required", GatewayErrorType.VALIDATION)

        payload = {"key": self.key, "client_txn_id": client_txn_id}
        if extra.get("txn_date"):
            payload["txn_date"] = extra["txn_date"]

        body, error = await self._post("check_order_status", payload, STATUS_TIMEOUT)
        if error:
            return self._failure(
                client_txn_id, f"Failed to check UPI order status: {error}", GatewayErrorType.UPSTREAM, body
            )

        details = body.get("data") if isinstance(body.get("data"), dict) else {}
        _, echo_id = self.extract_identifiers(details)
        return GatewayResult(
            success=True,
            transaction_reference=client_txn_id,
            gateway_transaction_id=echo_id,
            status=normalize_status(details.get("status")) if details.get("status") else None,
            details=details,
            raw_response=body,
        )

    async def retrieve_transaction_details(self, reference: str) -> DetailResult:
        """
        Manual lookup. EKQR has no separate dashboard API, so this reuses the
        order status endpoint and reduces it to a detail record.
        """
        result = await self.check_payment_status(reference)
        if not result.success:
            return DetailResult(
                success=False,
                error_message=result.error_message,
                error_type=result.error_type,
                raw_response=result.raw_response,
            )
        return DetailResult(
            success=True,
            details=result.details,
            status=result.status,
            gateway_transaction_id=result.gateway_transaction_id,
            raw_response=result.raw_response,
        )

    async def handle_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        """Normalize a UPI webhook or redirect"""
        data = dict(payload or {})
        reference, echo_id = self.extract_identifiers(data)

        if not reference:
            return CallbackResult(
                success=False,
                error_message="client_txn_id or order_id is required",
                error_type=GatewayErrorType.VALIDATION,
                raw_payload=data,
            )

        try:
            amount = float(data["amount"]) if data.get("amount") not in (None, "") else None
        except (TypeError, ValueError):
            amount = None

        return CallbackResult(
            success=True,
            transaction_reference=reference,
            gateway_transaction_id=echo_id,
            status=normalize_status(data.get("status")),
            amount=amount,
            verification=VerificationOutcome.NOT_REQUIRED,
            raw_payload=data,
        )
