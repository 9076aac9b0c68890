"""
Easebuzz Payment Gateway Implementation
Implements the BasePaymentGateway for Easebuzz hosted checkout

Request hash:  key|txnid|amount|productinfo|firstname|email|udf1..udf10|salt
Response hash: salt|status|udf10..udf1|email|firstname|productinfo|amount|txnid|key
Retrieve hash: key|txnid|salt
"""
import logging
import re
from datetime import datetime
from typing import Dict, Any, Optional, List
from urllib.parse import urlencode, urlparse, parse_qsl, urlunparse

import httpx

from app.models.payment.gateway import GatewayKind, GatewayName
from app.models.payment.transaction import normalize_status
from app.services.payment.gateways.base import (
    BasePaymentGateway,
    CallbackResult,
    DetailResult,
    GatewayErrorType,
    GatewayResult,
    TransactionListResult,
    CREATE_TIMEOUT,
    STATUS_TIMEOUT,
    extract_error_message,
    mask,
    mask_email,
    mask_phone,
    parse_json_body,
)
from app.core.exceptions import GatewayConfigurationError
from app.services.payment.hashing import HashCodec, VerificationOutcome
from app.services.payment.normalizer import NormalizedPaymentRequest, UDF_FIELDS, is_valid_url

logger = logging.getLogger(__name__)

# Canonical field order for the request hash (between key and salt)
REQUEST_HASH_FIELDS = ("txnid", "amount", "productinfo", "firstname", "email") + UDF_FIELDS
# Response hash is the same list plus status, hashed in reverse between salt and key
RESPONSE_HASH_FIELDS = REQUEST_HASH_FIELDS + ("status",)

DATE_PATTERN = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")


def set_query_params(url: str, **params: str) -> str:
    """Set (or replace) query parameters on a URL"""
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query.update(params)
    return urlunparse(parsed._replace(query=urlencode(query)))


def normalize_envelope(body: Any) -> Optional[Dict[str, Any]]:
    """
    Reduce the dashboard API's response shapes to one detail record:
    {"msg": [record, ...]}, {"msg": {record}} or a bare record.
    """
    if isinstance(body, list):
        return body[0] if body and isinstance(body[0], dict) else None
    if not isinstance(body, dict):
        return None
    msg = body.get("msg")
    if isinstance(msg, list):
        return msg[0] if msg and isinstance(msg[0], dict) else None
    if isinstance(msg, dict):
        return msg
    return body


def normalize_list_envelope(body: Any) -> List[Dict[str, Any]]:
    """Reduce bulk responses ({"data": [...]}, {"msg": [...]}, [...], {...}) to a list"""
    if isinstance(body, list):
        return body
    if not isinstance(body, dict):
        return []
    for key in ("data", "msg"):
        value = body.get(key)
        if isinstance(value, list):
            return value
        if isinstance(value, dict):
            return [value]
    return [body]


def normalize_phone(value: Any) -> str:
    """Digits only, with a leading 91 country code dropped from 12-digit numbers"""
    digits = re.sub(r"\D", "", str(value or ""))
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    return digits


def parse_dashboard_date(value: str) -> Optional[datetime]:
    match = DATE_PATTERN.match(value or "")
    if not match:
        return None
    day, month, year = match.groups()
    try:
        return datetime(int(year), int(month), int(day))
    except ValueError:
        return None


class EasebuzzGateway(BasePaymentGateway):
    """
    Easebuzz Payment Gateway Implementation

    Features:
    - Payment link creation with hosted checkout
    - Callback hash verification (reverse SHA-512)
    - Status polling and dashboard retrieval
    - Transaction listing by date and date range

    Easebuzz mints its own payment id to build the checkout URL. The txnid we
    send stays the correlation reference; the payment id is recorded as the
    gateway transaction id.
    """

    gateway_id = GatewayName.EASEBUZZ.value
    gateway_name = "Easebuzz"
    gateway_kind = GatewayKind.HOSTED_CHECKOUT

    reference_fields = ("txnid",)
    echo_id_fields = ("easepayid", "gateway_transaction_id")
    redirect_reference_field = "txnid"

    def __init__(self, config: Dict[str, Any], **kwargs):
        """Initialize Easebuzz gateway"""
        super().__init__(config, **kwargs)
        self.codec = HashCodec(config.get("key"), config.get("salt"))
        self.base_url = (config.get("base_url") or "https://testpay.easebuzz.in").rstrip("/")
        self.dashboard_url = (config.get("dashboard_url") or "https://dashboard.easebuzz.in").rstrip("/")
        self.merchant_email = (config.get("merchant_email") or "").strip().lower()

    def retrieval_key(self, transaction: Dict[str, Any]) -> str:
        """Direct lookups key off the Easebuzz-minted id once it is known"""
        return transaction.get("gateway_transaction_id") or transaction["transaction_id"]

    def _validate_config(self):
        """Validate required Easebuzz configuration"""
        if not (self.config.get("key") or "").strip():
            raise GatewayConfigurationError("EASEBUZZ_KEY is required")
        if not (self.config.get("salt") or "").strip():
            raise GatewayConfigurationError("EASEBUZZ_SALT is required")

    def _configuration_failure(self) -> Optional[str]:
        if not self.codec.key:
            return "Easebuzz key is not configured"
        if not self.codec.salt:
            return "Easebuzz salt is not configured"
        return None

    def build_redirect_urls(self, request: NormalizedPaymentRequest, txnid: str) -> Dict[str, str]:
        """
        Success and failure URLs carrying txnid so the redirect identifies itself.
        Without an explicit failure URL one is derived from the success URL with
        status=failure.
        """
        surl = set_query_params(request.success_url, txnid=txnid)
        if request.failure_url:
            furl = set_query_params(request.failure_url, txnid=txnid)
        else:
            furl = set_query_params(request.success_url, status="failure", txnid=txnid)
        return {"surl": surl, "furl": furl}

    def build_payment_params(self, request: NormalizedPaymentRequest, txnid: str) -> Dict[str, Any]:
        """Form fields for payment/initiateLink, hash included"""
        urls = self.build_redirect_urls(request, txnid)
        params: Dict[str, Any] = {
            "txnid": txnid,
            "amount": f"{request.amount:.2f}",
            "productinfo": request.product_info,
            "firstname": request.customer_name,
            "phone": request.phone,
            "email": request.email,
            "surl": urls["surl"],
            "furl": urls["furl"],
            **request.udf,
        }
        params.update(request.extras)

        params["hash"] = self.codec.compute_request_hash([params.get(f, "") for f in REQUEST_HASH_FIELDS])
        return {"key": self.codec.key, **params}

    async def create_payment(self, request: NormalizedPaymentRequest) -> GatewayResult:
        """
        Create an Easebuzz payment link.
        The checkout URL is {base_url}/pay/{payment_id}.
        """
        txnid = request.gateway_reference

        config_error = self._configuration_failure()
        if config_error:
            return GatewayResult(
                success=False,
                transaction_reference=txnid,
                error_message=config_error,
                error_type=GatewayErrorType.CONFIGURATION,
            )

        validation_error = None
        if not request.amount or request.amount <= 0:
            validation_error = "Missing required field: amount"
        elif not request.email:
            validation_error = "Email is required for Easebuzz payment"
        elif not request.success_url:
            validation_error = "Success URL (surl/redirect_url/successUrl/returnUrl) is required for Easebuzz payment"
        elif not is_valid_url(request.success_url) or (request.failure_url and not is_valid_url(request.failure_url)):
            validation_error = "Invalid URL format for success or failure URL"

        if validation_error:
            return GatewayResult(
                success=False,
                transaction_reference=txnid,
                error_message=validation_error,
                error_type=GatewayErrorType.VALIDATION,
            )

        form = self.build_payment_params(request, txnid)
        logger.info(
            "Easebuzz payment request: key=%s txnid=%s amount=%s surl=%s furl=%s",
            mask(self.codec.key), txnid, form["amount"], form["surl"], form["furl"],
        )

        try:
            async with self._client(CREATE_TIMEOUT) as client:
                response = await client.post(
                    f"{self.base_url}/payment/initiateLink",
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException:
            return self._upstream_failure(txnid, "Easebuzz request timed out")
        except httpx.HTTPError as e:
            return self._upstream_failure(txnid, f"Easebuzz request failed: {str(e)}")

        body, parse_error = parse_json_body(response)
        if parse_error:
            return self._upstream_failure(txnid, parse_error)

        if response.status_code not in (200, 201) or not isinstance(body, dict) or body.get("status") != 1:
            message = extract_error_message(body, "Payment link not received from gateway")
            return self._upstream_failure(txnid, message, body)

        payment_id = body.get("data")
        if not payment_id:
            return self._upstream_failure(txnid, "Payment link not received from gateway", body)

        payment_link = f"{self.base_url}/pay/{payment_id}"
        logger.info("Easebuzz payment created: txnid=%s payment_id=%s", txnid, payment_id)

        return GatewayResult(
            success=True,
            transaction_reference=txnid,
            payment_link=payment_link,
            gateway_transaction_id=str(payment_id),
            raw_response=body,
        )

    def _upstream_failure(self, reference: Optional[str], message: str, body: Any = None) -> GatewayResult:
        logger.error("Easebuzz error for %s: %s", reference, message)
        return GatewayResult(
            success=False,
            transaction_reference=reference,
            error_message=message,
            error_type=GatewayErrorType.UPSTREAM,
            raw_response=body if isinstance(body, dict) else None,
        )

    async def _post_dashboard(self, path: str, data: Dict[str, Any] = None, json: Dict[str, Any] = None):
        """POST to the dashboard API; returns (body, error)"""
        try:
            async with self._client(STATUS_TIMEOUT) as client:
                response = await client.post(
                    f"{self.dashboard_url}/{path.lstrip('/')}",
                    data=data,
                    json=json,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException:
            return None, "Easebuzz dashboard request timed out"
        except httpx.HTTPError as e:
            return None, f"Easebuzz dashboard request failed: {str(e)}"

        body, parse_error = parse_json_body(response)
        if parse_error:
            return None, parse_error
        if response.status_code != 200:
            return body, extract_error_message(body, f"Easebuzz dashboard returned HTTP {response.status_code}")
        if isinstance(body, dict) and body.get("status") is False:
            return body, extract_error_message(body, "Easebuzz dashboard lookup failed")
        return body, None

    async def check_payment_status(
        self,
        transaction_reference: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> GatewayResult:
        """
        Poll Easebuzz for a transaction.
        Requires the customer's email and a 10-digit phone from the stored
        transaction. Tries the v1 retrieve endpoint, then v2.1.
        """
        extra = extra or {}
        txnid = (transaction_reference or "").strip()
        email = str(extra.get("email") or "").strip().lower()
        phone = normalize_phone(extra.get("phone"))

        config_error = self._configuration_failure()
        if config_error:
            return GatewayResult(
                success=False,
                transaction_reference=txnid,
                error_message=config_error,
                error_type=GatewayErrorType.CONFIGURATION,
            )

        if not email or not phone:
            return GatewayResult(
                success=False,
                transaction_reference=txnid,
                error_message="Email and phone are required for Easebuzz transaction retrieval",
                error_type=GatewayErrorType.VALIDATION,
            )
        if len(phone) != 10:
            return GatewayResult(
                success=False,
                transaction_reference=txnid,
                error_message="Phone number must be exactly 10 digits",
                error_type=GatewayErrorType.VALIDATION,
            )

        amount = extra.get("amount")
        form = {
            "key": self.codec.key,
            "txnid": txnid,
            "amount": f"{float(amount):.2f}" if amount else "0.00",
            "email": email,
            "phone": phone,
            "hash": self.codec.compute_request_hash([txnid]),
        }
        logger.info(
            "Easebuzz status check: txnid=%s email=%s phone=%s", txnid, mask_email(email), mask_phone(phone)
        )

        body, error = await self._post_dashboard("transaction/v1/retrieve", data=form)
        if error:
            logger.info("Easebuzz v1 retrieve failed (%s), trying v2.1", error)
            body, v2_error = await self._post_dashboard("transaction/v2.1/retrieve", data=form)
            if v2_error:
                return self._upstream_failure(
                    txnid, f"Both v1 and v2.1 endpoints failed. v1: {error}, v2.1: {v2_error}", body
                )

        details = normalize_envelope(body)
        if not details:
            return self._upstream_failure(txnid, "No transaction details received from Easebuzz API", body)

        gateway_status = details.get("status") or details.get("payment_status")
        return GatewayResult(
            success=True,
            transaction_reference=txnid,
            gateway_transaction_id=details.get("easepayid"),
            status=normalize_status(gateway_status) if gateway_status else None,
            details=details,
            raw_response=body if isinstance(body, dict) else {"data": body},
        )

    async def retrieve_transaction_details(self, reference: str) -> DetailResult:
        """Dashboard lookup via /transaction/v2.1/retrieve"""
        txnid = (reference or "").strip()
        if not txnid:
            return DetailResult(
                success=False,
                error_message="Transaction ID (txnid) is required",
                error_type=GatewayErrorType.VALIDATION,
            )

        config_error = self._configuration_failure()
        if config_error:
            return DetailResult(
                success=False,
                error_message="Easebuzz key and salt must be configured",
                error_type=GatewayErrorType.CONFIGURATION,
            )

        form = {
            "key": self.codec.key,
            "txnid": txnid,
            "hash": self.codec.compute_request_hash([txnid]),
        }
        logger.info("Easebuzz retrieve transaction: key=%s txnid=%s", mask(self.codec.key), txnid)

        body, error = await self._post_dashboard("transaction/v2.1/retrieve", data=form)
        if error:
            if "Invalid key" in error or "cannot find associated transaction" in error:
                error += (
                    " Please verify the txnid matches the one sent at payment creation"
                    " and that EASEBUZZ_KEY, EASEBUZZ_SALT and the environment are correct."
                )
            return DetailResult(
                success=False,
                error_message=error,
                error_type=GatewayErrorType.UPSTREAM,
                raw_response=body,
            )

        details = normalize_envelope(body)
        if not details:
            return DetailResult(
                success=False,
                error_message="No transaction details received from Easebuzz API",
                error_type=GatewayErrorType.UPSTREAM,
                raw_response=body,
            )

        gateway_status = details.get("status") or details.get("payment_status")
        return DetailResult(
            success=True,
            details=details,
            status=normalize_status(gateway_status) if gateway_status else None,
            gateway_transaction_id=details.get("easepayid"),
            raw_response=body,
        )

    def _merchant_query_error(self) -> Optional[TransactionListResult]:
        if self._configuration_failure():
            return TransactionListResult(
                success=False,
                error_message="Easebuzz key and salt must be configured",
                error_type=GatewayErrorType.CONFIGURATION,
            )
        if not self.merchant_email:
            return TransactionListResult(
                success=False,
                error_message="EASEBUZZ_MERCHANT_EMAIL is required",
                error_type=GatewayErrorType.CONFIGURATION,
            )
        return None

    async def retrieve_transactions_by_date(self, transaction_date: str) -> TransactionListResult:
        """
        List transactions for one day (dd-mm-yyyy).
        Hash: key|merchant_email|transaction_date|salt
        """
        date = (transaction_date or "").strip()
        if not parse_dashboard_date(date):
            return TransactionListResult(
                success=False,
                error_message="Transaction date must be in dd-mm-yyyy format (e.g., 15-01-2024)",
                error_type=GatewayErrorType.VALIDATION,
            )

        config_error = self._merchant_query_error()
        if config_error:
            return config_error

        form = {
            "merchant_key": self.codec.key,
            "transaction_date": date,
            "merchant_email": self.merchant_email,
            "hash": self.codec.compute_request_hash([self.merchant_email, date]),
        }
        body, error = await self._post_dashboard("transaction/v1/retrieve/date", data=form)
        if error:
            return TransactionListResult(
                success=False, error_message=error, error_type=GatewayErrorType.UPSTREAM, raw_response=body
            )

        transactions = normalize_list_envelope(body)
        logger.info("Easebuzz transactions by date %s: %d", date, len(transactions))
        return TransactionListResult(success=True, transactions=transactions, raw_response=body)

    async def retrieve_transactions_by_date_range(self, start_date: str, end_date: str) -> TransactionListResult:
        """
        List transactions between two days (dd-mm-yyyy, inclusive).
        Hash: key|merchant_email|start_date|end_date|salt
        """
        start = (start_date or "").strip()
        end = (end_date or "").strip()
        start_value = parse_dashboard_date(start)
        end_value = parse_dashboard_date(end)

        if not start_value:
            message = "Start date must be in dd-mm-yyyy format (e.g., 10-05-2024)"
        elif not end_value:
            message = "End date must be in dd-mm-yyyy format (e.g., 23-08-2024)"
        elif end_value < start_value:
            message = "End date must be greater than or equal to start date"
        else:
            message = None

        if message:
            return TransactionListResult(
                success=False, error_message=message, error_type=GatewayErrorType.VALIDATION
            )

        config_error = self._merchant_query_error()
        if config_error:
            return config_error

        payload = {
            "key": self.codec.key,
            "merchant_email": self.merchant_email,
            "date_range": {"start_date": start, "end_date": end},
            "hash": self.codec.compute_request_hash([self.merchant_email, start, end]),
        }
        body, error = await self._post_dashboard("transaction/v2/retrieve/date", json=payload)
        if error:
            return TransactionListResult(
                success=False, error_message=error, error_type=GatewayErrorType.UPSTREAM, raw_response=body
            )

        pagination = None
        if isinstance(body, dict):
            pagination = body.get("pagination") or body.get("next")

        return TransactionListResult(
            success=True,
            transactions=normalize_list_envelope(body),
            pagination=pagination,
            raw_response=body,
        )

    async def handle_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        """
        Verify and normalize an Easebuzz callback or redirect.
        The reverse hash is checked whenever one is present; the verification
        policy decides what happens when it is missing or wrong.
        """
        data = {k: v for k, v in (payload or {}).items()}
        txnid = str(data.get("txnid") or "")
        _, echo_id = self.extract_identifiers(data)

        outcome = self.codec.verify_response_hash(
            [data.get(f) or "" for f in RESPONSE_HASH_FIELDS],
            data.get("hash"),
        )
        if outcome == VerificationOutcome.MISSING:
            logger.warning("No hash provided in Easebuzz callback for %s", txnid)

        rejection = self.apply_verification_policy(outcome, txnid)
        if rejection:
            return CallbackResult(
                success=False,
                transaction_reference=txnid or None,
                verification=outcome,
                error_message=rejection,
                error_type=GatewayErrorType.VERIFICATION,
                raw_payload=data,
            )

        try:
            amount = float(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = None

        return CallbackResult(
            success=True,
            transaction_reference=txnid or None,
            gateway_transaction_id=echo_id,
            status=normalize_status(data.get("status")),
            amount=amount,
            verification=outcome,
            raw_payload=data,
        )
