"""Async Stripe API wrapper for processor-side payment confirmation."""

import logging

import stripe
from stripe import StripeClient

from campflow.config import settings

logger = logging.getLogger(__name__)

# Intent statuses that mean the processor has accepted the payment.
SUCCEEDED_STATUSES = frozenset({"succeeded", "processing", "requires_capture"})

# Stripe error code for confirming an intent that is no longer confirmable.
UNEXPECTED_STATE = "payment_intent_unexpected_state"


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def retrieve_payment_intent(intent_id: str) -> stripe.PaymentIntent:
    """Retrieve a Stripe payment intent by ID."""
    client = get_stripe_client()
    return await client.v1.payment_intents.retrieve_async(intent_id)


async def confirm_payment_intent(
    intent_id: str,
    payment_method: str,
    return_url: str | None = None,
) -> stripe.PaymentIntent:
    """Confirm a payment intent with a payment method collected by staff."""
    client = get_stripe_client()
    logger.info("Confirming payment intent %s", intent_id)
    params: dict = {"payment_method": payment_method}
    if return_url:
        params["return_url"] = return_url
    try:
        intent = await client.v1.payment_intents.confirm_async(intent_id, params=params)
    except stripe.InvalidRequestError as e:
        if e.code != UNEXPECTED_STATE:
            raise
        # Already confirmed by an earlier submit: report where it stands now.
        logger.info("Payment intent %s was already confirmed, fetching status", intent_id)
        intent = await retrieve_payment_intent(intent_id)
    logger.info("Payment intent %s is now %s", intent.id, intent.status)
    return intent


def intent_succeeded(intent: stripe.PaymentIntent) -> bool:
    """True when the processor has accepted the payment."""
    return intent.status in SUCCEEDED_STATUSES


def decline_message(intent: stripe.PaymentIntent) -> str | None:
    """Extract the processor's decline message from a failed intent, if any."""
    error = getattr(intent, "last_payment_error", None)
    if error is None:
        return None
    return getattr(error, "message", None)
