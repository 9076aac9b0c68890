"""
Payment Gateway Registry
Builds gateway adapters once at startup and resolves them by name
"""
import logging
from types import MappingProxyType
from typing import Dict, List, Optional, Type

import httpx

from app.core.config import Settings
from app.core.exceptions import GatewayConfigurationError
from app.models.payment.gateway import GatewayName
from app.services.payment.gateways.base import BasePaymentGateway
from app.services.payment.gateways.easebuzz import EasebuzzGateway
from app.services.payment.gateways.upigateway import UPIGateway

logger = logging.getLogger(__name__)


GATEWAY_CLASSES: Dict[str, Type[BasePaymentGateway]] = {
    GatewayName.EASEBUZZ.value: EasebuzzGateway,
    GatewayName.UPIGATEWAY.value: UPIGateway,
}


class GatewayRegistry:
    """
    Read-only map of gateway id -> adapter.

    Registration is partial: a gateway whose credentials are absent is simply
    left out, and resolving it later raises GatewayConfigurationError.
    """

    def __init__(self, gateways: Dict[str, BasePaymentGateway]):
        self._gateways = MappingProxyType(dict(gateways))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "GatewayRegistry":
        """Build adapters for every gateway that has credentials configured"""
        policy = settings.verification_policy
        gateways: Dict[str, BasePaymentGateway] = {}

        if settings.easebuzz_key and settings.easebuzz_salt:
            gateways[GatewayName.EASEBUZZ.value] = EasebuzzGateway(
                {
                    "key": settings.easebuzz_key,
                    "salt": settings.easebuzz_salt,
                    "base_url": settings.easebuzz_base_url,
                    "dashboard_url": settings.easebuzz_dashboard_url,
                    "merchant_email": settings.easebuzz_merchant_email,
                },
                verification_policy=policy,
                transport=transport,
            )
        else:
            logger.warning("Easebuzz not registered: EASEBUZZ_KEY/EASEBUZZ_SALT missing")

        if settings.ekqr_key:
            gateways[GatewayName.UPIGATEWAY.value] = UPIGateway(
                {
                    "key": settings.ekqr_key,
                    "base_url": settings.upigateway_base_url,
                    "default_redirect_url": settings.upigateway_default_redirect_url,
                },
                verification_policy=policy,
                transport=transport,
            )
        else:
            logger.warning("UPI gateway not registered: EKQR_KEY missing")

        logger.info("Registered gateways: %s (verification policy: %s)", list(gateways), policy.value)
        return cls(gateways)

    def resolve(self, name: Optional[str]) -> BasePaymentGateway:
        """
        Get the adapter for a gateway name ("upi" is accepted for upigateway).

        Raises:
            GatewayConfigurationError: If the gateway is unknown or not configured
        """
        gateway = GatewayName.parse(name)
        if gateway is None:
            raise GatewayConfigurationError(
                f"Unknown payment gateway: {name}. Available: {list(GATEWAY_CLASSES)}"
            )
        adapter = self._gateways.get(gateway.value)
        if adapter is None:
            raise GatewayConfigurationError(f"Payment gateway '{gateway.value}' is not configured")
        return adapter

    def is_registered(self, name: Optional[str]) -> bool:
        gateway = GatewayName.parse(name)
        return gateway is not None and gateway.value in self._gateways

    def available(self) -> List[BasePaymentGateway]:
        return list(self._gateways.values())

    def find_by_redirect(self, query: Dict[str, str]) -> Optional[BasePaymentGateway]:
        """Identify which gateway a browser redirect came from by its query fields"""
        for adapter in self._gateways.values():
            if adapter.redirect_reference_field and query.get(adapter.redirect_reference_field):
                return adapter
        return None

    def __contains__(self, name: str) -> bool:
        return self.is_registered(name)

    def __len__(self) -> int:
        return len(self._gateways)
