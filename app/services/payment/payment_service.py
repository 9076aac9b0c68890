"""
Payment Service
Orchestrates payment creation and reconciliation across gateways
"""
import logging
import math
import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple, List

from app.core.exceptions import (
    AccessDeniedError,
    GatewayConfigurationError,
    PaymentError,
    PaymentValidationError,
    TransactionNotFoundError,
    UpstreamGatewayError,
    VerificationError,
)
from app.models.payment.gateway import GatewayName
from app.models.payment.transaction import (
    ReconciliationSource,
    TransactionInDB,
    TransactionStatus,
)
from app.services.payment.gateways.base import BasePaymentGateway, GatewayErrorType
from app.services.payment.gateways.registry import GatewayRegistry
from app.services.payment.normalizer import normalize_payment_request
from app.services.payment.transaction_store import PaymentMethodStore, TransactionStore

logger = logging.getLogger(__name__)

ERROR_TYPE_EXCEPTIONS = {
    GatewayErrorType.CONFIGURATION: GatewayConfigurationError,
    GatewayErrorType.VALIDATION: PaymentValidationError,
    GatewayErrorType.UPSTREAM: UpstreamGatewayError,
    GatewayErrorType.VERIFICATION: VerificationError,
}

REDIRECT_DEFAULT_STATUS = {"success": "success", "failure": "failure"}


def gateway_error(error_type: Optional[GatewayErrorType], message: Optional[str]) -> PaymentError:
    """Translate an adapter failure into the matching PaymentError"""
    error_class = ERROR_TYPE_EXCEPTIONS.get(error_type, UpstreamGatewayError)
    return error_class(message or "Payment gateway request failed")


def serialize_transaction(transaction: Dict[str, Any], detailed: bool = False) -> Dict[str, Any]:
    """Public view of a stored transaction"""
    data = {
        "transactionId": transaction.get("transaction_id"),
        "status": transaction.get("status"),
        "amount": transaction.get("amount"),
        "currency": transaction.get("currency"),
        "gateway": transaction.get("gateway"),
        "gatewayTransactionId": transaction.get("gateway_transaction_id"),
        "createdAt": transaction.get("created_at"),
        "updatedAt": transaction.get("updated_at"),
    }
    if detailed:
        data.update({
            "internalId": transaction.get("internal_id"),
            "userId": transaction.get("user_id"),
            "paymentMethodId": transaction.get("payment_method_id"),
            "paymentLink": transaction.get("payment_link"),
            "paymentRequest": transaction.get("payment_request"),
            "paymentResponse": transaction.get("payment_response"),
            "callbackUrl": transaction.get("callback_url"),
            "returnUrl": transaction.get("return_url"),
        })
    return data


class PaymentOrchestrator:
    """
    Single entry point for creating payments and reconciling their status.

    Status updates arrive from four channels (webhook callback, browser
    redirect, status poll, explicit retrieval) and all go through reconcile().
    Status is written only when it changes; the gateway payload is merged into
    payment_response on every call.
    """

    def __init__(
        self,
        registry: GatewayRegistry,
        transactions: TransactionStore,
        payment_methods: PaymentMethodStore
    ):
        self.registry = registry
        self.transactions = transactions
        self.payment_methods = payment_methods

    @staticmethod
    def generate_transaction_id() -> str:
        """Generate unique transaction reference"""
        suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(9))
        return f"TXN{int(time.time() * 1000)}{suffix}"

    @staticmethod
    def ensure_access(requestor: Dict[str, Any], transaction: Dict[str, Any]):
        """Owners and admins only"""
        if requestor.get("is_admin"):
            return
        if str(transaction.get("user_id")) != str(requestor.get("_id")):
            raise AccessDeniedError("Access denied")

    async def select_gateway(self, requestor: Dict[str, Any], override: Optional[str] = None) -> BasePaymentGateway:
        """
        Pick the gateway for a new payment:
        request override -> user's default -> first active payment method.

        Raises:
            PaymentValidationError: Unknown override or gateway not allowed for the user
            GatewayConfigurationError: Nothing to select, or selected gateway not configured
        """
        if override and GatewayName.parse(override) is None:
            raise PaymentValidationError(
                f"Unsupported gateway: {override}",
                errors={"gateway": f"Must be one of: {', '.join(g.value for g in GatewayName)}"},
            )

        name = override or requestor.get("payment_gateway")
        if not name:
            payment_method = await self.payment_methods.find_active()
            name = payment_method.get("gateway") if payment_method else None

        gateway = GatewayName.parse(name)
        if gateway is None:
            raise GatewayConfigurationError("No payment gateway available")

        allowed = [GatewayName.parse(g) for g in requestor.get("allowed_gateways") or []]
        if allowed and gateway not in allowed:
            raise PaymentValidationError(
                f"Gateway '{gateway.value}' is not allowed for this user",
                errors={"gateway": "Not in the user's allowed gateways"},
            )

        return self.registry.resolve(gateway.value)

    async def create_payment(self, requestor: Dict[str, Any], raw_request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a payment and store it as pending.

        Args:
            requestor: Authenticated user document
            raw_request: Request body with any of the accepted field aliases

        Returns:
            Stored transaction document

        Raises:
            PaymentError: Validation, configuration or gateway failure
        """
        request = normalize_payment_request(raw_request)
        request.transaction_reference = self.generate_transaction_id()

        adapter = await self.select_gateway(requestor, request.gateway)

        if request.client_reference and await self.transactions.exists_with_client_reference(request.client_reference):
            raise PaymentValidationError(
                "Duplicate transaction reference",
                errors={"client_txn_id": f"{request.client_reference} has already been used"},
            )

        payment_method = await self.payment_methods.find_active(adapter.gateway_id)

        result = await adapter.create_payment(request)
        if not result.success:
            logger.warning(
                "Payment creation failed on %s for %s: %s",
                adapter.gateway_id, request.transaction_reference, result.error_message,
            )
            raise gateway_error(result.error_type, result.error_message)

        # The reference the gateway will echo back becomes the correlation key
        reference = result.transaction_reference or request.transaction_reference
        if reference != request.transaction_reference:
            logger.info("Transaction %s correlated as %s", request.transaction_reference, reference)

        transaction = TransactionInDB(
            internal_id=request.transaction_reference,
            transaction_id=reference,
            user_id=str(requestor.get("_id")),
            payment_method_id=payment_method.get("_id") if payment_method else None,
            gateway=adapter.gateway_id,
            gateway_transaction_id=result.gateway_transaction_id,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            payment_link=result.payment_link,
            payment_request=request.to_snapshot(),
            payment_response=result.raw_response or {},
            callback_url=request.callback_url or None,
            return_url=request.return_url or request.success_url or None,
        )
        stored = await self.transactions.insert(transaction)

        logger.info(
            "Payment created: %s via %s amount=%s %s",
            reference, adapter.gateway_id, request.amount, request.currency,
        )
        return stored

    def _status_context(self, transaction: Dict[str, Any], extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Stored customer context the gateway needs for a status check"""
        snapshot = transaction.get("payment_request") or {}
        context = {
            "email": snapshot.get("email"),
            "phone": snapshot.get("phone"),
            "amount": transaction.get("amount"),
        }
        context.update({k: v for k, v in (extra or {}).items() if v is not None})
        return context

    async def reconcile(
        self,
        source: ReconciliationSource,
        reference: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
        echo_id: Optional[str] = None,
        gateway: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Tuple[Dict[str, Any], Any]:
        """
        Apply an inbound status signal to a stored transaction.

        Args:
            source: Channel delivering the update
            reference: Transaction reference (or internal / gateway id)
            payload: Callback or redirect fields (callback and redirect sources)
            echo_id: Gateway echo id, tried when the reference does not match
            gateway: Gateway the signal arrived on; must match the transaction's
            extra: Hints for status polling (txn_date)

        Returns:
            (updated transaction, gateway details)

        Raises:
            TransactionNotFoundError: No transaction matches reference or echo id
            PaymentError: Adapter failure or verification rejection
        """
        source = ReconciliationSource(source)
        transaction = await self.transactions.find_by_either_id(reference, echo_id)
        if transaction is None:
            raise TransactionNotFoundError("Transaction not found")

        if gateway and transaction["gateway"] != gateway:
            raise PaymentValidationError(
                f"Transaction {transaction['transaction_id']} does not belong to gateway {gateway}"
            )

        adapter = self.registry.resolve(transaction["gateway"])

        if source in (ReconciliationSource.CALLBACK, ReconciliationSource.REDIRECT):
            result = await adapter.handle_callback(payload or {})
            if not result.success:
                raise gateway_error(result.error_type, result.error_message)
            derived_status = result.status
            new_echo_id = result.gateway_transaction_id
            fragment = result.raw_payload
            details = result.raw_payload
        elif source == ReconciliationSource.STATUS_POLL:
            result = await adapter.check_payment_status(
                transaction["transaction_id"], self._status_context(transaction, extra)
            )
            if not result.success:
                raise gateway_error(result.error_type, result.error_message)
            derived_status = result.status
            new_echo_id = result.gateway_transaction_id
            fragment = result.details
            details = result.raw_response
        else:
            result = await adapter.retrieve_transaction_details(adapter.retrieval_key(transaction))
            if not result.success:
                raise gateway_error(result.error_type, result.error_message)
            derived_status = result.status
            new_echo_id = result.gateway_transaction_id
            fragment = result.details or {}
            details = result.details

        previous_status = transaction.get("status")
        new_status = None
        if derived_status is not None and TransactionStatus(derived_status).value != previous_status:
            new_status = TransactionStatus(derived_status)

        updated = await self.transactions.update_status_and_merge(
            transaction["transaction_id"],
            new_status,
            fragment or {},
            source,
            echo_id=new_echo_id,
            previous_status=previous_status,
        )
        if updated is None:
            raise TransactionNotFoundError("Transaction not found")

        if new_status is not None:
            logger.info(
                "Transaction %s %s -> %s (%s)",
                transaction["transaction_id"], previous_status, new_status.value, source.value,
            )
        else:
            logger.info("Transaction %s unchanged at %s (%s)", transaction["transaction_id"], previous_status, source.value)

        return updated, details

    async def handle_webhook(self, gateway_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Server-to-server callback from a gateway"""
        adapter = self.registry.resolve(gateway_name)
        reference, echo_id = adapter.extract_identifiers(payload or {})
        if not reference and not echo_id:
            raise PaymentValidationError(
                "Transaction reference missing from callback",
                errors={"reference": f"Expected one of: {', '.join(adapter.reference_fields)}"},
            )
        transaction, _ = await self.reconcile(
            ReconciliationSource.CALLBACK, reference, payload, echo_id=echo_id, gateway=adapter.gateway_id
        )
        return transaction

    async def handle_redirect(self, query: Dict[str, Any], outcome: str) -> Dict[str, Any]:
        """
        Browser redirect back from the gateway.
        Easebuzz identifies itself with txnid (+hash), UPI with client_txn_id (+txn_id).
        """
        adapter = self.registry.find_by_redirect(query)
        if adapter is None:
            raise PaymentValidationError("client_txn_id or txnid is required")

        payload = dict(query)
        payload.setdefault("status", REDIRECT_DEFAULT_STATUS.get(outcome, "success"))
        reference, echo_id = adapter.extract_identifiers(payload)

        transaction, _ = await self.reconcile(
            ReconciliationSource.REDIRECT, reference, payload, echo_id=echo_id, gateway=adapter.gateway_id
        )
        return transaction

    async def get_transaction(self, requestor: Dict[str, Any], reference: str) -> Dict[str, Any]:
        transaction = await self.transactions.find_by_either_id(reference)
        if transaction is None:
            raise TransactionNotFoundError("Transaction not found")
        self.ensure_access(requestor, transaction)
        return transaction

    async def check_payment_status(
        self,
        requestor: Dict[str, Any],
        reference: str,
        txn_date: Optional[str] = None
    ) -> Tuple[Dict[str, Any], Any]:
        """Poll the gateway for one transaction on behalf of its owner"""
        transaction = await self.get_transaction(requestor, reference)
        return await self.reconcile(
            ReconciliationSource.STATUS_POLL,
            transaction["transaction_id"],
            extra={"txn_date": txn_date},
        )

    async def retrieve_transaction(
        self,
        requestor: Dict[str, Any],
        txnid: str
    ) -> Tuple[Optional[Dict[str, Any]], Any]:
        """
        Manual Easebuzz dashboard lookup.
        A stored transaction is reconciled; admins may also look up references
        that were never stored here.
        """
        transaction = await self.transactions.find_by_either_id(txnid, txnid)
        if transaction is not None:
            self.ensure_access(requestor, transaction)
            if transaction["gateway"] != GatewayName.EASEBUZZ.value:
                raise PaymentValidationError(f"Transaction {txnid} was not made through Easebuzz")
            return await self.reconcile(ReconciliationSource.EXPLICIT_RETRIEVE, transaction["transaction_id"])

        if not requestor.get("is_admin"):
            raise TransactionNotFoundError("Transaction not found")

        adapter = self.registry.resolve(GatewayName.EASEBUZZ.value)
        result = await adapter.retrieve_transaction_details(txnid)
        if not result.success:
            raise gateway_error(result.error_type, result.error_message)
        return None, result.details

    async def transactions_by_date(self, transaction_date: str):
        adapter = self.registry.resolve(GatewayName.EASEBUZZ.value)
        result = await adapter.retrieve_transactions_by_date(transaction_date)
        if not result.success:
            raise gateway_error(result.error_type, result.error_message)
        return result

    async def transactions_by_date_range(self, start_date: str, end_date: str):
        adapter = self.registry.resolve(GatewayName.EASEBUZZ.value)
        result = await adapter.retrieve_transactions_by_date_range(start_date, end_date)
        if not result.success:
            raise gateway_error(result.error_type, result.error_message)
        return result

    async def list_transactions(
        self,
        status: Optional[str] = None,
        gateway: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
        """Newest-first transaction history with pagination"""
        filters: Dict[str, Any] = {}
        if status:
            filters["status"] = status
        if gateway:
            parsed = GatewayName.parse(gateway)
            filters["gateway"] = parsed.value if parsed else gateway

        page = max(page, 1)
        skip = (page - 1) * limit
        transactions = await self.transactions.find_many(filters, skip=skip, limit=limit)
        total = await self.transactions.count(filters)

        return transactions, {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        }

    async def poll_pending_transactions(self, min_age_minutes: int = 10, batch_size: int = 50) -> Dict[str, int]:
        """
        Reconcile pending transactions older than min_age_minutes through the
        status poll channel.

        Returns:
            Counts of checked, updated and failed transactions
        """
        cutoff = datetime.utcnow() - timedelta(minutes=min_age_minutes)
        pending = await self.transactions.find_pending(cutoff, batch_size)
        summary = {"checked": 0, "updated": 0, "failed": 0}

        for transaction in pending:
            summary["checked"] += 1
            try:
                updated, _ = await self.reconcile(ReconciliationSource.STATUS_POLL, transaction["transaction_id"])
            except PaymentError as e:
                summary["failed"] += 1
                logger.warning("Status poll failed for %s: %s", transaction["transaction_id"], e.message)
                continue
            if updated.get("status") != transaction.get("status"):
                summary["updated"] += 1

        if summary["checked"]:
            logger.info("Pending poll: %s", summary)
        return summary

    def available_gateways(self) -> List[Dict[str, Any]]:
        return [adapter.describe() for adapter in self.registry.available()]
