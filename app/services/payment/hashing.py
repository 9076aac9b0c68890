"""
Gateway Hash Codec
SHA-512 request signing and callback verification over pipe-delimited field lists
"""
import hashlib
import hmac
import logging
from enum import Enum
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

DELIMITER = "|"


class VerificationOutcome(str, Enum):
    """Result of checking an inbound hash"""
    VALID = "valid"
    MISMATCH = "mismatch"
    MISSING = "missing"          # No hash supplied by the caller
    NOT_REQUIRED = "not_required"  # Gateway has no hash contract


def sha512_hex(value: str) -> str:
    return hashlib.sha512(value.encode("utf-8")).hexdigest()


def _field(value: Any) -> str:
    return "" if value is None else str(value)


class HashCodec:
    """
    Computes and verifies the hashes a gateway requires.

    Key and salt are trimmed once here so signing and verification can never
    disagree on whitespace.
    """

    def __init__(self, key: Optional[str], salt: Optional[str]):
        self.key = (key or "").strip()
        self.salt = (salt or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.key) and bool(self.salt)

    def compute_request_hash(self, fields: Sequence[Any]) -> str:
        """
        Hash of key|field1|...|fieldN|salt.
        Field order is the gateway's canonical order; absent fields hash as "".
        """
        parts = [self.key, *(_field(value) for value in fields), self.salt]
        return sha512_hex(DELIMITER.join(parts))

    def compute_response_hash(self, fields: Sequence[Any]) -> str:
        """Hash of salt|fieldN|...|field1|key (reverse order)."""
        parts = [self.salt, *(_field(value) for value in reversed(fields)), self.key]
        return sha512_hex(DELIMITER.join(parts))

    def verify_response_hash(self, fields: Sequence[Any], received_digest: Optional[str]) -> VerificationOutcome:
        """
        Recompute the reverse hash and compare it with the received digest,
        ignoring case. Failures are reported, never raised.
        """
        if not received_digest or not str(received_digest).strip():
            return VerificationOutcome.MISSING

        received = str(received_digest).strip().lower()
        generated = self.compute_response_hash(fields)

        if hmac.compare_digest(generated.lower(), received):
            return VerificationOutcome.VALID

        logger.warning(
            "Hash verification failed: received=%s... generated=%s...",
            received[:10],
            generated[:10],
        )
        return VerificationOutcome.MISMATCH
