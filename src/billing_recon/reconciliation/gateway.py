"""Remote billing state lookups for reconciliation."""

import os
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

import stripe

from .models import (
    RemoteSubscription,
    RemoteInvoice,
    RemoteCustomer,
    RemoteRecordNotFound,
    BillingGatewayError,
)

logger = logging.getLogger(__name__)


class BillingGatewayBase(ABC):
    """Read access to the billing provider's records by identifier.

    Lookups are blocking network calls; async callers run them in a worker
    thread.
    """

    @abstractmethod
    def get_subscription(self, subscription_id: str) -> RemoteSubscription:
        """Fetch a subscription.

        Raises:
            RemoteRecordNotFound: If the provider has no such subscription.
            BillingGatewayError: If the lookup fails.
        """
        raise NotImplementedError

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> RemoteInvoice:
        """Fetch an invoice.

        Raises:
            RemoteRecordNotFound: If the provider has no such invoice.
            BillingGatewayError: If the lookup fails.
        """
        raise NotImplementedError

    @abstractmethod
    def get_customer(self, customer_id: str) -> RemoteCustomer:
        """Fetch a customer.

        Raises:
            RemoteRecordNotFound: If the provider has no such customer.
            BillingGatewayError: If the lookup fails.
        """
        raise NotImplementedError

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify a webhook payload against the shared secret.

        Returns:
            The decoded event.

        Raises:
            ValueError: If the signature does not match.
        """
        raise NotImplementedError


class StripeGateway(BillingGatewayBase):
    """Stripe-backed billing gateway."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """Initialize the Stripe gateway.

        Args:
            api_key: Stripe API key. Falls back to STRIPE_API_KEY env var.
            webhook_secret: Webhook signing secret. Falls back to
                STRIPE_WEBHOOK_SECRET env var.

        Raises:
            ValueError: If no API key is provided or found.
        """
        self._api_key = api_key or os.getenv("STRIPE_API_KEY")
        if not self._api_key:
            raise ValueError(
                "STRIPE_API_KEY must be provided either as argument or environment variable"
            )
        self._webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

    def _retrieve(self, resource: Any, object_name: str, object_id: str) -> Any:
        """Retrieve one Stripe object, mapping errors to gateway exceptions."""
        try:
            obj = resource.retrieve(object_id, api_key=self._api_key)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing" or getattr(e, "http_status", None) == 404:
                logger.warning(f"Stripe {object_name} {object_id} not found")
                raise RemoteRecordNotFound(f"{object_name} {object_id} not found") from e
            logger.error(f"Invalid Stripe request for {object_name} {object_id}: {e}")
            raise BillingGatewayError(f"Invalid request for {object_name} {object_id}") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe API error fetching {object_name} {object_id}: {type(e).__name__}")
            raise BillingGatewayError(f"Failed to fetch {object_name} {object_id}: {e}") from e

        if getattr(obj, "deleted", False):
            logger.warning(f"Stripe {object_name} {object_id} is deleted")
            raise RemoteRecordNotFound(f"{object_name} {object_id} is deleted")
        return obj

    def get_subscription(self, subscription_id: str) -> RemoteSubscription:
        sub = self._retrieve(stripe.Subscription, "subscription", subscription_id)
        customer = sub.customer
        return RemoteSubscription(
            id=sub.id,
            status=sub.status,
            customer=customer if isinstance(customer, str) or customer is None else customer.id,
        )

    def get_invoice(self, invoice_id: str) -> RemoteInvoice:
        inv = self._retrieve(stripe.Invoice, "invoice", invoice_id)
        return RemoteInvoice(
            id=inv.id,
            amount_paid=inv.amount_paid or 0,
            status=inv.status,
            currency=inv.currency,
        )

    def get_customer(self, customer_id: str) -> RemoteCustomer:
        cust = self._retrieve(stripe.Customer, "customer", customer_id)
        return RemoteCustomer(id=cust.id, email=cust.email or "")

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not self._webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self._webhook_secret,
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValueError("Invalid webhook signature") from e
        return event.to_dict()


def get_billing_gateway(provider: str = "stripe", api_key: Optional[str] = None) -> BillingGatewayBase:
    """Factory function to get the billing gateway for a provider.

    Args:
        provider: Billing provider name.
        api_key: Optional API key for the provider.

    Returns:
        BillingGatewayBase implementation for the provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    gateways = {
        "stripe": StripeGateway,
    }

    gateway_class = gateways.get(provider.lower())
    if not gateway_class:
        raise ValueError(f"Unsupported billing provider: {provider}")

    return gateway_class(api_key=api_key)
