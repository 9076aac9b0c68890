"""
Tests for the SHA-512 hash codec.
Expected digests are computed independently with hashlib.
"""
import hashlib

import pytest

from app.services.payment.gateways.easebuzz import REQUEST_HASH_FIELDS, RESPONSE_HASH_FIELDS
from app.services.payment.hashing import HashCodec, VerificationOutcome

KEY = "2PBP7IABZ2"
SALT = "DAH88E3UWQ"

CALLBACK = {
    "txnid": "TXN1700000000000ABC123XYZ",
    "amount": "499.00",
    "productinfo": "Annual plan",
    "firstname": "Asha",
    "email": "asha@shop.in",
    "udf1": "order-42",
    "udf2": "", "udf3": "", "udf4": "", "udf5": "",
    "udf6": "", "udf7": "", "udf8": "", "udf9": "", "udf10": "",
    "status": "success",
}


def sha512(text: str) -> str:
    return hashlib.sha512(text.encode("utf-8")).hexdigest()


def known_good_digest() -> str:
    c = CALLBACK
    udf10_to_udf2 = [""] * 9
    parts = [SALT, c["status"], *udf10_to_udf2, c["udf1"], c["email"], c["firstname"],
             c["productinfo"], c["amount"], c["txnid"], KEY]
    return sha512("|".join(parts))


def response_fields(payload):
    return [payload[name] for name in RESPONSE_HASH_FIELDS]


class TestRequestHash:
    def test_matches_pipe_joined_sha512(self):
        codec = HashCodec(KEY, SALT)
        fields = ["TXN1", "100.00", "Payment", "Customer", "a@b.com"] + [""] * 10
        expected = sha512("|".join([KEY, "TXN1", "100.00", "Payment", "Customer", "a@b.com"] + [""] * 10 + [SALT]))
        assert codec.compute_request_hash(fields) == expected

    def test_field_order_matters(self):
        codec = HashCodec(KEY, SALT)
        assert codec.compute_request_hash(["a", "b"]) != codec.compute_request_hash(["b", "a"])

    def test_none_hashes_as_empty_string(self):
        codec = HashCodec(KEY, SALT)
        assert codec.compute_request_hash(["TXN1", None]) == codec.compute_request_hash(["TXN1", ""])

    def test_retrieval_hash_is_key_txnid_salt(self):
        codec = HashCodec(KEY, SALT)
        assert codec.compute_request_hash(["TXN1"]) == sha512(f"{KEY}|TXN1|{SALT}")

    def test_request_field_order_is_canonical(self):
        assert REQUEST_HASH_FIELDS[:5] == ("txnid", "amount", "productinfo", "firstname", "email")
        assert REQUEST_HASH_FIELDS[5:] == tuple(f"udf{i}" for i in range(1, 11))


class TestResponseHashVerification:
    def test_known_good_fixture_verifies(self):
        codec = HashCodec(KEY, SALT)
        assert codec.verify_response_hash(response_fields(CALLBACK), known_good_digest()) == VerificationOutcome.VALID

    def test_comparison_ignores_case(self):
        codec = HashCodec(KEY, SALT)
        digest = known_good_digest().upper()
        assert codec.verify_response_hash(response_fields(CALLBACK), digest) == VerificationOutcome.VALID

    @pytest.mark.parametrize("field", ["txnid", "amount", "productinfo", "firstname", "email", "udf1", "status"])
    def test_single_character_mutation_fails(self, field):
        codec = HashCodec(KEY, SALT)
        mutated = dict(CALLBACK)
        value = mutated[field]
        mutated[field] = value[:-1] + ("X" if value[-1:] != "X" else "Y")
        outcome = codec.verify_response_hash(response_fields(mutated), known_good_digest())
        assert outcome == VerificationOutcome.MISMATCH

    def test_mutated_digest_fails(self):
        codec = HashCodec(KEY, SALT)
        digest = known_good_digest()
        tampered = ("0" if digest[0] != "0" else "1") + digest[1:]
        assert codec.verify_response_hash(response_fields(CALLBACK), tampered) == VerificationOutcome.MISMATCH

    @pytest.mark.parametrize("digest", [None, "", "   "])
    def test_missing_hash_is_distinct_from_mismatch(self, digest):
        codec = HashCodec(KEY, SALT)
        assert codec.verify_response_hash(response_fields(CALLBACK), digest) == VerificationOutcome.MISSING

    def test_request_hash_does_not_verify_as_response_hash(self):
        codec = HashCodec(KEY, SALT)
        request_digest = codec.compute_request_hash([CALLBACK[name] for name in REQUEST_HASH_FIELDS])
        assert codec.verify_response_hash(response_fields(CALLBACK), request_digest) == VerificationOutcome.MISMATCH


class TestCredentialTrimming:
    def test_whitespace_around_key_and_salt_is_ignored(self):
        padded = HashCodec(f"  {KEY}\n", f"\t{SALT} ")
        assert padded.key == KEY
        assert padded.salt == SALT
        assert padded.verify_response_hash(response_fields(CALLBACK), known_good_digest()) == VerificationOutcome.VALID

    def test_is_configured(self):
        assert HashCodec(KEY, SALT).is_configured
        assert not HashCodec(KEY, "  ").is_configured
        assert not HashCodec(None, SALT).is_configured
