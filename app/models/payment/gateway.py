"""
Payment Gateway Models
Gateway identifiers and verification policy
"""
from enum import Enum
from typing import Optional


class GatewayName(str, Enum):
    """Supported payment gateways"""
    EASEBUZZ = "easebuzz"        # Hosted checkout
    UPIGATEWAY = "upigateway"    # UPI (EKQR)

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["GatewayName"]:
        """
        Parse a gateway identifier, accepting the short "upi" alias.
        Returns None for unknown values.
        """
        if not value:
            return None
        normalized = str(value).strip().lower()
        if normalized == "upi":
            return cls.UPIGATEWAY
        try:
            return cls(normalized)
        except ValueError:
            return None


class GatewayKind(str, Enum):
    HOSTED_CHECKOUT = "hosted_checkout"
    UPI = "upi"


class VerificationPolicy(str, Enum):
    """How callbacks with a missing or invalid hash are treated"""
    STRICT = "strict"            # Reject
    PERMISSIVE = "permissive"    # Proceed with a logged warning
