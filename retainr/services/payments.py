from typing import Any, Dict, Optional

import stripe
from flask import current_app
from stripe import StripeClient


class PaymentGateway:
    """
    Thin wrapper over the Stripe SDK calls we make.
    One instance lives in app.extensions["payment_gateway"]; tests swap in a fake.
    """

    def __init__(self, api_key: Optional[str], *, timeout: int = 10, max_network_retries: int = 2):
        self._api_key = api_key
        self._timeout = timeout
        self._max_network_retries = max_network_retries
        self._stripe: Optional[StripeClient] = None

    @property
    def client(self) -> StripeClient:
        if not self._api_key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")
        if self._stripe is None:
            self._stripe = StripeClient(
                self._api_key,
                http_client=stripe.RequestsClient(timeout=self._timeout),
                max_network_retries=self._max_network_retries,
            )
        return self._stripe

    def customer_email(self, customer_id: str) -> Optional[str]:
        customer = self.client.customers.retrieve(customer_id)
        if getattr(customer, "deleted", False):
            return None
        return getattr(customer, "email", None) or None

    def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        self.client.payment_methods.attach(payment_method_id, params={"customer": customer_id})
        self.client.customers.update(
            customer_id,
            params={"invoice_settings": {"default_payment_method": payment_method_id}},
        )

    def confirm_payment_intent(self, payment_intent_id: str, payment_method_id: str) -> Dict[str, Any]:
        intent = self.client.payment_intents.confirm(
            payment_intent_id,
            params={"payment_method": payment_method_id},
        )
        return {
            "id": intent.id,
            "status": intent.status,
            "client_secret": getattr(intent, "client_secret", None),
        }

    def create_checkout_session(
        self, *, price_id: str, user_id: int, email: str, success_url: str, cancel_url: str,
        customer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Subscription Checkout Session for an account holder; user_id rides along for the webhook."""
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": str(user_id),
            "metadata": {"user_id": str(user_id)},
            "subscription_data": {"metadata": {"user_id": str(user_id)}},
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = email
        session = self.client.checkout.sessions.create(params=params)
        return {"id": session.id, "url": getattr(session, "url", None)}


def init_gateway(app) -> None:
    app.extensions["payment_gateway"] = PaymentGateway(
        app.config.get("STRIPE_SECRET_KEY"),
        timeout=app.config.get("STRIPE_TIMEOUT_SECONDS", 10),
        max_network_retries=app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2),
    )


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
