"""Stripe Checkout: create the signup checkout session and verify it was paid."""
import json
import logging
from dataclasses import dataclass

import stripe

log = logging.getLogger("uvicorn.error")

PAID = "paid"


class PaymentProcessorError(Exception):
    """Stripe could not be reached or rejected the call. Detail is for server logs only."""


class WebhookSignatureError(Exception):
    """Webhook payload is malformed or its Stripe-Signature header does not match."""


@dataclass(frozen=True)
class PaymentVerification:
    paid: bool
    status: str | None
    customer_id: str | None = None


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None


def _customer_id(customer) -> str | None:
    if not customer:
        return None
    if isinstance(customer, str):
        return customer
    return getattr(customer, "id", None)


class PaymentVerifier:
    def __init__(self, api_key: str):
        self.api_key = api_key

    def verify(self, session_id: str) -> PaymentVerification:
        """Retrieve the checkout session; paid only when Stripe reports payment_status == 'paid'."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            log.error(
                "[Stripe] RETRIEVE FAILED session_id=%s error=%s: %s",
                session_id, type(e).__name__, getattr(e, "user_message", None) or str(e),
            )
            raise PaymentProcessorError(str(e)) from e

        status = getattr(session, "payment_status", None)
        if status != PAID:
            log.info("[Stripe] session_id=%s not paid (payment_status=%s)", session_id, status)
            return PaymentVerification(paid=False, status=status)
        return PaymentVerification(paid=True, status=status, customer_id=_customer_id(getattr(session, "customer", None)))

    def create_checkout_session(
        self,
        *,
        email: str,
        slug: str,
        product_name: str,
        product_description: str,
        unit_amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": product_name, "description": product_description},
                            "unit_amount": unit_amount,
                        },
                        "quantity": 1,
                    },
                ],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"email": email, "slug": slug, "type": "new_signup"},
                customer_email=email,
                allow_promotion_codes=True,
                billing_address_collection="auto",
            )
        except stripe.StripeError as e:
            log.error("[Stripe] CHECKOUT CREATE FAILED slug=%s error=%s: %s", slug, type(e).__name__, e)
            raise PaymentProcessorError(str(e)) from e
        return CheckoutSession(id=session.id, url=getattr(session, "url", None))


def parse_webhook_event(payload: bytes, signature: str, secret: str) -> dict:
    """Verify the Stripe-Signature header and return the event as a plain dict."""
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
        return json.loads(payload)
    except stripe.SignatureVerificationError as e:
        log.warning("[Stripe] Webhook signature verification failed: %s", e)
        raise WebhookSignatureError("Invalid signature") from e
    except ValueError as e:
        log.warning("[Stripe] Webhook payload is not valid JSON: %s", e)
        raise WebhookSignatureError("Invalid payload") from e
