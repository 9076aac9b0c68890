import logging
import traceback
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.core import (
    PaymentError,
    get_scheduler_status,
    get_settings,
    setup_scheduler,
    start_scheduler,
    stop_scheduler,
)
from app.database import Database
from app.services.payment.gateways.registry import GatewayRegistry
from app.routes.payment.payment_routes import router as payment_router
from app.routes.payment.webhook_routes import router as webhook_router
from app.routes.payment.redirect_routes import router as redirect_router
from app.utils.response import error_response

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the application"""
    # Startup
    await Database.connect_db()
    app.state.gateway_registry = GatewayRegistry.from_settings(settings)

    if settings.status_poll_enabled:
        setup_scheduler(app.state.gateway_registry, settings)
        start_scheduler()

    yield
    # Shutdown
    stop_scheduler()
    await Database.close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Payment orchestration API for Easebuzz and UPI gateways",
    lifespan=lifespan
)

# Wildcard origins cannot be combined with credentials
wildcard = "*" in settings.cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if wildcard else settings.cors_origins,
    allow_credentials=not wildcard,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /api prefix
app.include_router(payment_router, prefix="/api")  # Payment operations
app.include_router(webhook_router, prefix="/api")  # Gateway callbacks
app.include_router(redirect_router, prefix="/api")  # Browser redirects


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(message=exc.message, status_code=exc.status_code, errors=exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {
        ".".join(str(part) for part in error["loc"] if part != "body"): error["msg"]
        for error in exc.errors()
    }
    return error_response(message="Validation error", status_code=400, errors=errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    stack = traceback.format_exc() if settings.include_stack_traces else None
    return error_response(message=str(exc) or "Internal server error", status_code=500, stack=stack)


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.app_name} API",
        "version": settings.app_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    registry = getattr(app.state, "gateway_registry", None)
    return {
        "status": "healthy",
        "environment": settings.app_env,
        "gateways": [adapter.gateway_id for adapter in registry.available()] if registry else [],
        "scheduler": get_scheduler_status()["running"],
    }
