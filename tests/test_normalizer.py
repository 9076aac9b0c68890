"""
Unit tests for payment request normalization.
"""
import pytest

from app.core.exceptions import PaymentValidationError
from app.services.payment.normalizer import FIELD_ALIASES, normalize_payment_request


class TestAliases:
    @pytest.mark.parametrize("alias", ["email", "customerEmail", "customer_email"])
    def test_every_email_alias_is_accepted(self, alias):
        request = normalize_payment_request({"amount": 100, alias: "a@b.com"})
        assert request.email == "a@b.com"

    def test_first_alias_in_precedence_order_wins(self):
        request = normalize_payment_request({
            "amount": 100,
            "customer_email": "third@b.com",
            "customerEmail": "second@b.com",
            "email": "first@b.com",
        })
        assert request.email == "first@b.com"

    def test_blank_alias_falls_through_to_next(self):
        request = normalize_payment_request({"amount": 100, "email": "  ", "customerEmail": "x@b.com"})
        assert request.email == "x@b.com"

    @pytest.mark.parametrize("alias", ["surl", "successUrl", "returnUrl", "redirect_url"])
    def test_success_url_aliases(self, alias):
        request = normalize_payment_request({"amount": 1, "email": "a@b.com", alias: "https://shop.in/done"})
        assert request.success_url == "https://shop.in/done"

    def test_success_url_precedence(self):
        request = normalize_payment_request({
            "amount": 1,
            "email": "a@b.com",
            "redirect_url": "https://shop.in/redirect",
            "surl": "https://shop.in/surl",
        })
        assert request.success_url == "https://shop.in/surl"

    def test_customer_and_product_aliases(self):
        request = normalize_payment_request({
            "amount": 1,
            "email": "a@b.com",
            "customerName": "Ravi",
            "p_info": "Gold plan",
            "customer_mobile": "9876543210",
        })
        assert request.customer_name == "Ravi"
        assert request.product_info == "Gold plan"
        assert request.phone == "9876543210"

    def test_alias_table_has_no_duplicates_within_a_field(self):
        for aliases in FIELD_ALIASES.values():
            assert len(aliases) == len(set(aliases))


class TestDefaults:
    def test_optional_fields_default(self):
        request = normalize_payment_request({"amount": "250.5", "email": "a@b.com"})
        assert request.amount == 250.5
        assert request.currency == "INR"
        assert request.customer_name == "Customer"
        assert request.product_info == "Payment"
        assert request.phone == ""
        assert request.success_url == ""
        assert request.failure_url == ""
        assert request.client_reference == ""
        assert request.udf == {f"udf{i}": "" for i in range(1, 11)}

    def test_currency_is_uppercased(self):
        assert normalize_payment_request({"amount": 1, "email": "a@b.com", "currency": "usd"}).currency == "USD"

    def test_gateway_reference_prefers_client_reference(self):
        request = normalize_payment_request({"amount": 1, "email": "a@b.com", "client_txn_id": "ORDER-9"})
        request.transaction_reference = "TXN123"
        assert request.gateway_reference == "ORDER-9"

        plain = normalize_payment_request({"amount": 1, "email": "a@b.com"})
        plain.transaction_reference = "TXN123"
        assert plain.gateway_reference == "TXN123"

    def test_udfs_and_extras_pass_through(self):
        request = normalize_payment_request({
            "amount": 1, "email": "a@b.com", "udf1": "cart-7", "city": "Pune", "unknown": "dropped",
        })
        assert request.udf["udf1"] == "cart-7"
        assert request.extras == {"city": "Pune"}

    def test_snapshot_is_plain_dict(self):
        snapshot = normalize_payment_request({"amount": 1, "email": "a@b.com"}).to_snapshot()
        assert snapshot["email"] == "a@b.com"
        assert snapshot["amount"] == 1.0


class TestValidation:
    @pytest.mark.parametrize("amount", [None, 0, -5, "abc", "", True, "inf", "Infinity", "nan", "-inf", 1e400])
    def test_invalid_amount_rejected(self, amount):
        with pytest.raises(PaymentValidationError) as exc:
            normalize_payment_request({"amount": amount, "email": "a@b.com"})
        assert "amount" in exc.value.errors

    def test_missing_email_rejected(self):
        with pytest.raises(PaymentValidationError) as exc:
            normalize_payment_request({"amount": 100})
        assert "email" in exc.value.errors

    def test_malformed_email_rejected(self):
        with pytest.raises(PaymentValidationError) as exc:
            normalize_payment_request({"amount": 100, "email": "not-an-email"})
        assert exc.value.errors == {"email": "Valid email is required"}

    def test_invalid_url_rejected(self):
        with pytest.raises(PaymentValidationError) as exc:
            normalize_payment_request({"amount": 100, "email": "a@b.com", "surl": "shop.in/done"})
        assert "success_url" in exc.value.errors

    def test_all_field_errors_reported_together(self):
        with pytest.raises(PaymentValidationError) as exc:
            normalize_payment_request({"furl": "ftp://x"})
        assert set(exc.value.errors) == {"amount", "email", "failure_url"}
        assert exc.value.message == "Validation error"
