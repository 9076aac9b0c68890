"""
Payment Webhook Routes
Endpoints for payment gateway callbacks
SECURITY: Easebuzz callbacks are hash-verified before processing
"""
import logging
import traceback
from typing import Any, Dict
from fastapi import APIRouter, Depends, Request

from app.core.config import get_settings
from app.core.exceptions import GatewayConfigurationError, PaymentError, PaymentValidationError
from app.models.payment.gateway import GatewayName
from app.routes.payment.dependencies import get_payment_orchestrator
from app.services.payment.payment_service import PaymentOrchestrator, serialize_transaction
from app.utils.response import success_response, error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payment Webhooks"])


async def read_callback_payload(request: Request) -> Dict[str, Any]:
    """Gateways post either form-encoded or JSON bodies"""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise PaymentValidationError("Malformed JSON callback body")
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


async def process_webhook(gateway: str, request: Request, orchestrator: PaymentOrchestrator):
    """
    Shared webhook handling.

    Expected failures (bad hash, unknown transaction, gateway errors) answer
    200 with success=false so the gateway does not retry. Configuration
    problems and unexpected errors answer 500.
    """
    try:
        payload = await read_callback_payload(request)
        logger.info("%s callback received: %s", gateway, {k: v for k, v in payload.items() if k != "hash"})

        transaction = await orchestrator.handle_webhook(gateway, payload)

        return success_response(
            message="Webhook processed successfully",
            data=serialize_transaction(transaction, detailed=True)
        )

    except GatewayConfigurationError as e:
        logger.error("%s webhook configuration error: %s", gateway, e.message)
        return error_response(message=e.message, status_code=500)

    except PaymentError as e:
        logger.warning("%s webhook processing failed: %s", gateway, e.message)
        return error_response(message=e.message, status_code=200, errors=e.errors)

    except Exception as e:
        logger.exception("%s webhook handler error", gateway)
        stack = traceback.format_exc() if get_settings().include_stack_traces else None
        return error_response(message=str(e) or "Failed to process webhook", status_code=500, stack=stack)


@router.post("/easebuzz-response")
async def easebuzz_response(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """Easebuzz payment callback (form-encoded, carries hash)."""
    return await process_webhook(GatewayName.EASEBUZZ.value, request, orchestrator)


@router.post("/upigateway-response")
async def upigateway_response(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """UPI gateway callback (client_txn_id or order_id identifies the transaction)."""
    return await process_webhook(GatewayName.UPIGATEWAY.value, request, orchestrator)


@router.get("/webhook/health")
async def webhook_health():
    """Health check for webhook endpoint"""
    return {"status": "healthy", "service": "payment-webhooks"}
