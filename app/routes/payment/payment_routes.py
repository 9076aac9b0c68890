"""
Payment Routes
API endpoints for payment operations
"""
import logging
from fastapi import APIRouter, Body, Depends, Query
from typing import Optional, Any, Dict

from app.models.payment.transaction import (
    PaymentStatusRequest,
    RetrieveTransactionRequest,
    TransactionsByDateRangeRequest,
    TransactionsByDateRequest,
)
from app.routes.auth.dependencies import get_current_user, is_admin
from app.routes.payment.dependencies import get_payment_orchestrator
from app.services.payment.payment_service import PaymentOrchestrator, serialize_transaction
from app.utils.response import success_response, error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("/gateways")
async def get_available_gateways(
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """Get list of registered payment gateways."""
    return success_response(
        message="Gateways retrieved successfully",
        data={"gateways": orchestrator.available_gateways()}
    )


@router.post("/create-payment")
async def create_payment(
    payload: Dict[str, Any] = Body(...),
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Create a payment link.

    Accepts amount plus any of the aliased customer and URL fields
    (email / customerEmail / customer_email, surl / successUrl / redirect_url, ...).
    Optional gateway overrides the user's default gateway.
    """
    if not current_user:
        return error_response(message="Authentication required", status_code=401)

    transaction = await orchestrator.create_payment(current_user, payload)

    return success_response(
        message="Payment initiated successfully",
        data={
            "order_id": transaction["transaction_id"],
            "payment_url": transaction["payment_link"],
        }
    )


@router.post("/payment-status")
async def check_payment_status(
    body: PaymentStatusRequest,
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Poll the gateway for a transaction's current status.
    Only the owner or an admin can poll.
    """
    if not current_user:
        return error_response(message="Authentication required", status_code=401)

    transaction, gateway_response = await orchestrator.check_payment_status(
        current_user, body.transactionId, body.txn_date
    )

    data = serialize_transaction(transaction, detailed=True)
    data["gatewayResponse"] = gateway_response
    return success_response(message="Payment status retrieved", data=data)


@router.get("/transaction/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """Get transaction details. Only the owner or an admin can view."""
    if not current_user:
        return error_response(message="Authentication required", status_code=401)

    transaction = await orchestrator.get_transaction(current_user, transaction_id)

    return success_response(
        message="Transaction retrieved successfully",
        data=serialize_transaction(transaction, detailed=True)
    )


@router.post("/easebuzz/retrieve-transaction")
async def retrieve_transaction(
    body: RetrieveTransactionRequest,
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Retrieve transaction details from the Easebuzz dashboard API and
    reconcile the stored transaction with them.
    """
    if not current_user:
        return error_response(message="Authentication required", status_code=401)

    transaction, details = await orchestrator.retrieve_transaction(current_user, body.txnid)

    return success_response(
        message="Transaction details retrieved successfully",
        data={
            "transactionDetails": details,
            "transaction": serialize_transaction(transaction) if transaction else None,
        }
    )


@router.post("/easebuzz/transactions-by-date")
async def transactions_by_date(
    body: TransactionsByDateRequest,
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """List Easebuzz transactions for one day (dd-mm-yyyy). Admin only."""
    if not current_user:
        return error_response(message="Authentication required", status_code=401)
    if not is_admin(current_user):
        return error_response(message="Admin access required", status_code=403)

    result = await orchestrator.transactions_by_date(body.transaction_date)

    return success_response(
        message="Transactions retrieved successfully",
        data={
            "transactions": result.transactions,
            "count": result.count,
            "transaction_date": body.transaction_date,
        }
    )


@router.post("/easebuzz/transactions-by-date-range")
async def transactions_by_date_range(
    body: TransactionsByDateRangeRequest,
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """List Easebuzz transactions between two days (dd-mm-yyyy). Admin only."""
    if not current_user:
        return error_response(message="Authentication required", status_code=401)
    if not is_admin(current_user):
        return error_response(message="Admin access required", status_code=403)

    result = await orchestrator.transactions_by_date_range(body.start_date, body.end_date)

    return success_response(
        message="Transactions retrieved successfully",
        data={
            "transactions": result.transactions,
            "count": result.count,
            "date_range": {"start_date": body.start_date, "end_date": body.end_date},
            "pagination": result.pagination,
        }
    )


@router.get("/")
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None),
    gateway: Optional[str] = Query(None),
    current_user: Optional[dict] = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """Transaction history, newest first. Admin only."""
    if not current_user:
        return error_response(message="Authentication required", status_code=401)
    if not is_admin(current_user):
        return error_response(message="Admin access required", status_code=403)

    transactions, pagination = await orchestrator.list_transactions(
        status=status, gateway=gateway, page=page, limit=limit
    )

    return success_response(
        message="Transactions retrieved successfully",
        data=[serialize_transaction(tx, detailed=True) for tx in transactions],
        pagination=pagination
    )
