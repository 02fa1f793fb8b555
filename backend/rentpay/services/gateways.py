# Overview: Payment gateway adapters; Stripe Checkout for collection, Stripe Connect transfers for payouts.

"""
Gateway adapters

The ledger never talks to Stripe directly. Checkout initiation, checkout
confirmation and payout execution go through these small adapters so the app can inject fakes
(app.config["CHECKOUT_GATEWAY"] / ["TRANSFER_GATEWAY"]) in tests and
sandboxes.

Transfers are idempotent on "payout-<id>": retrying a failed process call
for the same request can never create a second transfer at Stripe.
"""

from __future__ import annotations

from dataclasses import dataclass

import stripe
from flask import current_app


class GatewayError(Exception):
    """Raised when the external gateway rejects or fails a call."""
    pass


class CheckoutSessionNotFound(GatewayError):
    pass


@dataclass
class CheckoutSession:
    session_id: str
    url: str | None


def transfer_idempotency_key(payout_request_id: int) -> str:
    return f"payout-{payout_request_id}"


class StripeTransferGateway:
    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def transfer(self, *, payout_request_id: int, amount: int, currency: str, destination: str) -> str:
        """Create a Connect transfer; returns the Stripe transfer id."""
        if not self.api_key:
            raise GatewayError("Stripe is not configured (STRIPE_SECRET_KEY missing)")
        try:
            transfer = stripe.Transfer.create(
                api_key=self.api_key,
                amount=amount,
                currency=currency.lower(),
                destination=destination,
                metadata={"payout_request_id": str(payout_request_id)},
                idempotency_key=transfer_idempotency_key(payout_request_id),
            )
        except stripe.StripeError as e:
            raise GatewayError(getattr(e, "user_message", None) or str(e))
        return transfer.id


class StripeCheckoutGateway:
    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def create_session(
        self,
        *,
        amount: int,
        currency: str,
        product_name: str,
        metadata: dict,
        customer_email: str | None,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        if not self.api_key:
            raise GatewayError("Stripe is not configured (STRIPE_SECRET_KEY missing)")
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": product_name},
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }],
                customer_email=customer_email,
                metadata={k: str(v) for k, v in metadata.items()},
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            raise GatewayError(getattr(e, "user_message", None) or str(e))
        return CheckoutSession(session_id=session.id, url=session.url)

    def retrieve_session(self, session_id: str) -> dict:
        """Current state of a checkout session, as the webhook payload would carry it."""
        if not self.api_key:
            raise GatewayError("Stripe is not configured (STRIPE_SECRET_KEY missing)")
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            raise CheckoutSessionNotFound(getattr(e, "user_message", None) or str(e))
        except stripe.StripeError as e:
            raise GatewayError(getattr(e, "user_message", None) or str(e))
        return session.to_dict()


def get_transfer_gateway():
    gateway = current_app.config.get("TRANSFER_GATEWAY")
    if gateway is not None:
        return gateway
    return StripeTransferGateway(current_app.config.get("STRIPE_SECRET_KEY"))


def get_checkout_gateway():
    gateway = current_app.config.get("CHECKOUT_GATEWAY")
    if gateway is not None:
        return gateway
    return StripeCheckoutGateway(current_app.config.get("STRIPE_SECRET_KEY"))
