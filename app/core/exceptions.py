"""
Payment Errors
Error taxonomy shared by the orchestrator and the HTTP layer
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for all expected payment failures"""

    status_code: int = 400

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class GatewayConfigurationError(PaymentError):
    """Missing credentials or unregistered gateway. Never retried."""
    status_code = 500


class PaymentValidationError(PaymentError):
    """Request rejected before any outbound call"""
    status_code = 400


class UpstreamGatewayError(PaymentError):
    """Gateway returned an error, timed out, or sent a malformed body"""
    status_code = 502


class VerificationError(PaymentError):
    """Callback hash missing or invalid under the strict policy"""
    status_code = 401


class TransactionNotFoundError(PaymentError):
    """No stored transaction matches the supplied identifiers"""
    status_code = 404


class AccessDeniedError(PaymentError):
    status_code = 403
