from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.routes.auth.dependencies import get_database
from app.services.payment.gateways.registry import GatewayRegistry
from app.services.payment.payment_service import PaymentOrchestrator
from app.services.payment.transaction_store import PaymentMethodStore, TransactionStore


def get_gateway_registry(request: Request) -> GatewayRegistry:
    """Registry built once during application startup"""
    return request.app.state.gateway_registry


async def get_payment_orchestrator(
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: AsyncIOMotorDatabase = Depends(get_database)
) -> PaymentOrchestrator:
    return PaymentOrchestrator(registry, TransactionStore(db), PaymentMethodStore(db))
