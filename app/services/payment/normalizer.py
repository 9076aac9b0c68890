"""
Normalizes heterogeneous payment request bodies into one canonical request.

Callers send the same logical field under several names (email may arrive as
``email``, ``customerEmail`` or ``customer_email``). Each canonical field has a
closed list of accepted aliases; the first non-empty alias in the list wins.
"""
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email

from app.core.exceptions import PaymentValidationError


# canonical field -> aliases in precedence order
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "amount": ("amount",),
    "currency": ("currency",),
    "gateway": ("gateway",),
    "client_reference": ("client_txn_id",),
    "email": ("email", "customerEmail", "customer_email"),
    "phone": ("phone", "customerPhone", "customer_mobile"),
    "customer_name": ("firstname", "firstName", "customerName", "customer_name"),
    "product_info": ("productinfo", "productInfo", "p_info", "description"),
    "success_url": ("surl", "successUrl", "returnUrl", "redirect_url"),
    "failure_url": ("furl", "failureUrl", "failure_redirect_url"),
    "callback_url": ("callbackUrl", "callback_url"),
    "return_url": ("returnUrl", "successUrl"),
}

UDF_FIELDS = tuple(f"udf{i}" for i in range(1, 11))

# Passed through to the hosted checkout when present
EXTRA_FIELDS = (
    "address1", "address2", "city", "state", "country", "zipcode",
    "show_payment_mode", "split_payments", "request_flow", "sub_merchant_id",
    "payment_category", "account_no", "ifsc", "unique_id",
)

URL_FIELDS = ("success_url", "failure_url", "callback_url", "return_url")

DEFAULT_PRODUCT_INFO = "Payment"
DEFAULT_CUSTOMER_NAME = "Customer"
DEFAULT_CURRENCY = "INR"


@dataclass
class NormalizedPaymentRequest:
    """Canonical payment request handed to gateway adapters"""
    amount: float
    email: str
    transaction_reference: str = ""
    client_reference: str = ""
    currency: str = DEFAULT_CURRENCY
    gateway: str = ""
    phone: str = ""
    customer_name: str = DEFAULT_CUSTOMER_NAME
    product_info: str = DEFAULT_PRODUCT_INFO
    success_url: str = ""
    failure_url: str = ""
    callback_url: str = ""
    return_url: str = ""
    udf: Dict[str, str] = field(default_factory=lambda: {name: "" for name in UDF_FIELDS})
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def gateway_reference(self) -> str:
        """Reference sent to the gateway: caller-supplied one wins"""
        return self.client_reference or self.transaction_reference

    def to_snapshot(self) -> Dict[str, Any]:
        """Plain dict stored on the transaction for audit and replay"""
        return asdict(self)


def _first_value(raw: Dict[str, Any], aliases: Tuple[str, ...]) -> Any:
    for alias in aliases:
        value = raw.get(alias)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _parse_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) and amount > 0 else None


def normalize_payment_request(raw: Dict[str, Any]) -> NormalizedPaymentRequest:
    """
    Map a raw request body onto NormalizedPaymentRequest.

    Raises:
        PaymentValidationError: with per-field messages when amount, email or
            any supplied URL is invalid
    """
    values = {name: _first_value(raw, aliases) for name, aliases in FIELD_ALIASES.items()}
    errors: Dict[str, str] = {}

    amount = _parse_amount(values["amount"])
    if amount is None:
        errors["amount"] = "Valid amount is required"

    email = values["email"]
    if not email:
        errors["email"] = "Email is required (provide email, customerEmail, or customer_email)"
    else:
        try:
            email = validate_email(str(email), check_deliverability=False).normalized
        except EmailNotValidError:
            errors["email"] = "Valid email is required"

    for name in URL_FIELDS:
        url = values[name]
        if url and not is_valid_url(str(url)):
            errors[name] = f"Valid {name.replace('_', ' ')} is required"

    if errors:
        raise PaymentValidationError("Validation error", errors=errors)

    return NormalizedPaymentRequest(
        amount=round(amount, 2),
        email=email,
        client_reference=str(values["client_reference"] or ""),
        currency=str(values["currency"] or DEFAULT_CURRENCY).upper(),
        gateway=str(values["gateway"] or "").lower(),
        phone=str(values["phone"] or ""),
        customer_name=str(values["customer_name"] or DEFAULT_CUSTOMER_NAME),
        product_info=str(values["product_info"] or DEFAULT_PRODUCT_INFO),
        success_url=str(values["success_url"] or ""),
        failure_url=str(values["failure_url"] or ""),
        callback_url=str(values["callback_url"] or ""),
        return_url=str(values["return_url"] or ""),
        udf={name: str(raw.get(name) or "") for name in UDF_FIELDS},
        extras={name: raw[name] for name in EXTRA_FIELDS if raw.get(name) not in (None, "")},
    )
