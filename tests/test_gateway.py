"""Tests for the Stripe billing gateway."""

import os
import pytest
import stripe
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from billing_recon.reconciliation import (
    BillingGatewayError,
    RemoteRecordNotFound,
    StripeGateway,
    get_billing_gateway,
)


@pytest.fixture
def gateway(mock_stripe_api_key):
    return StripeGateway(webhook_secret="whsec_test_secret")


class TestStripeGatewayInit:
    """Tests for gateway construction."""

    def test_api_key_from_env(self, mock_stripe_api_key):
        gateway = StripeGateway()
        assert gateway._api_key == "sk_test_mock_key"

    def test_missing_api_key(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError):
                StripeGateway()

    def test_factory(self, mock_stripe_api_key):
        assert isinstance(get_billing_gateway("stripe"), StripeGateway)
        assert isinstance(get_billing_gateway("Stripe"), StripeGateway)

    def test_factory_unknown_provider(self, mock_stripe_api_key):
        with pytest.raises(ValueError, match="Unsupported billing provider"):
            get_billing_gateway("paypal")


class TestStripeLookups:
    """Tests for subscription, invoice and customer lookups."""

    def test_get_subscription(self, gateway):
        sub = SimpleNamespace(id="sub_1", status="past_due", customer="cus_1")
        with patch("stripe.Subscription.retrieve", return_value=sub) as retrieve:
            result = gateway.get_subscription("sub_1")

        retrieve.assert_called_once_with("sub_1", api_key="sk_test_mock_key")
        assert result.id == "sub_1"
        assert result.status == "past_due"
        assert result.customer == "cus_1"

    def test_get_subscription_expanded_customer(self, gateway):
        sub = SimpleNamespace(id="sub_1", status="active", customer=SimpleNamespace(id="cus_9"))
        with patch("stripe.Subscription.retrieve", return_value=sub):
            assert gateway.get_subscription("sub_1").customer == "cus_9"

    def test_get_invoice(self, gateway):
        inv = SimpleNamespace(id="in_1", amount_paid=2500, status="paid", currency="usd")
        with patch("stripe.Invoice.retrieve", return_value=inv):
            result = gateway.get_invoice("in_1")

        assert result.amount_paid == 2500
        assert result.status == "paid"

    def test_get_invoice_without_payment(self, gateway):
        inv = SimpleNamespace(id="in_1", amount_paid=None, status="open", currency="usd")
        with patch("stripe.Invoice.retrieve", return_value=inv):
            assert gateway.get_invoice("in_1").amount_paid == 0

    def test_get_customer(self, gateway):
        cust = SimpleNamespace(id="cus_1", email="user@example.com")
        with patch("stripe.Customer.retrieve", return_value=cust):
            assert gateway.get_customer("cus_1").email == "user@example.com"

    def test_get_customer_without_email(self, gateway):
        cust = SimpleNamespace(id="cus_1", email=None)
        with patch("stripe.Customer.retrieve", return_value=cust):
            assert gateway.get_customer("cus_1").email == ""

    def test_deleted_customer_is_not_found(self, gateway):
        cust = SimpleNamespace(id="cus_1", deleted=True)
        with patch("stripe.Customer.retrieve", return_value=cust):
            with pytest.raises(RemoteRecordNotFound):
                gateway.get_customer("cus_1")

    def test_resource_missing(self, gateway):
        error = stripe.InvalidRequestError(
            "No such subscription: 'sub_x'",
            param="id",
            code="resource_missing",
            http_status=404,
        )
        with patch("stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(RemoteRecordNotFound):
                gateway.get_subscription("sub_x")

    def test_other_invalid_request(self, gateway):
        error = stripe.InvalidRequestError("Bad parameter", param="expand", http_status=400)
        with patch("stripe.Invoice.retrieve", side_effect=error):
            with pytest.raises(BillingGatewayError):
                gateway.get_invoice("in_1")

    def test_connection_error(self, gateway):
        error = stripe.APIConnectionError("Network error")
        with patch("stripe.Customer.retrieve", side_effect=error):
            with pytest.raises(BillingGatewayError):
                gateway.get_customer("cus_1")

    def test_rate_limit_error(self, gateway):
        error = stripe.RateLimitError("Too many requests", http_status=429)
        with patch("stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(BillingGatewayError):
                gateway.get_subscription("sub_1")


class TestWebhookVerification:
    """Tests for webhook signature verification."""

    def test_valid_signature(self, gateway):
        event = MagicMock()
        event.to_dict.return_value = {"id": "evt_1", "type": "invoice.paid"}
        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            result = gateway.verify_webhook_signature(b'{"id": "evt_1"}', "t=1,v1=abc")

        construct.assert_called_once_with(
            payload=b'{"id": "evt_1"}',
            sig_header="t=1,v1=abc",
            secret="whsec_test_secret",
        )
        assert result["type"] == "invoice.paid"

    def test_invalid_signature(self, gateway):
        error = stripe.SignatureVerificationError("Invalid signature", "t=1,v1=bad")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(ValueError, match="Invalid webhook signature"):
                gateway.verify_webhook_signature(b"{}", "t=1,v1=bad")

    def test_malformed_payload(self, gateway):
        with pytest.raises(ValueError):
            gateway.verify_webhook_signature(b"not json", "t=1,v1=bad")

    def test_missing_secret(self, mock_stripe_api_key):
        with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": ""}):
            gateway = StripeGateway()
        with pytest.raises(ValueError, match="not configured"):
            gateway.verify_webhook_signature(b"{}", "t=1,v1=abc")
