"""Stripe integration service for payment processing.

Wraps the Stripe Python SDK. All amounts are in minor currency units.
"""

import contextlib

import stripe

from clubhouse.core.config import settings
from clubhouse.models.resource import ResourceKind


def _configure() -> None:
    """Set the Stripe API key from settings."""
    stripe.api_key = settings.stripe_secret_key


def is_enabled() -> bool:
    return bool(settings.stripe_secret_key)


def create_payment_intent(
    amount: int,
    booking_type: ResourceKind,
    booking_id: int,
    consumer_number: str,
    email: str | None = None,
) -> stripe.PaymentIntent:
    """Create a Stripe PaymentIntent for a voucher.

    The booking reference travels in the metadata; the webhook reads it back
    to confirm the right booking. Returns the PaymentIntent object (caller
    reads .id and .client_secret).
    """
    _configure()

    return stripe.PaymentIntent.create(
        amount=amount,
        currency=settings.currency,
        receipt_email=email,
        metadata={
            "booking_type": booking_type.value,
            "booking_id": str(booking_id),
            "consumer_number": consumer_number,
        },
        automatic_payment_methods={"enabled": True},
    )


def cancel_payment_intent(payment_intent_id: str) -> None:
    """Cancel a pending PaymentIntent (e.g. on booking cancellation)."""
    _configure()

    with contextlib.suppress(stripe.StripeError):
        stripe.PaymentIntent.cancel(payment_intent_id)


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event."""
    return stripe.Webhook.construct_event(
        payload,
        sig_header,
        settings.stripe_webhook_secret,
    )
