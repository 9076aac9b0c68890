"""
Payment Redirect Routes
Browser lands here after checkout; the query string identifies the gateway
"""
from fastapi import APIRouter, Depends, Request

from app.routes.payment.dependencies import get_payment_orchestrator
from app.services.payment.payment_service import PaymentOrchestrator, serialize_transaction
from app.utils.response import success_response

router = APIRouter(prefix="/payments", tags=["Payment Redirects"])


@router.get("/success")
async def payment_success(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Success redirect.
    Easebuzz sends txnid (+hash and response fields), UPI sends client_txn_id (+txn_id).
    """
    transaction = await orchestrator.handle_redirect(dict(request.query_params), "success")
    return success_response(
        message="Payment processed successfully",
        data=serialize_transaction(transaction)
    )


@router.get("/failure")
async def payment_failure(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """Failure redirect; status defaults to failure when the gateway omits it."""
    transaction = await orchestrator.handle_redirect(dict(request.query_params), "failure")
    return success_response(
        message="Payment failure recorded",
        data=serialize_transaction(transaction)
    )
