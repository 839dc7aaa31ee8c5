import logging
from typing import Optional

import stripe

from settings import PAYMENT_CURRENCY, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

stripe.api_key = STRIPE_SECRET_KEY


class PaymentError(Exception):
    """Raised when the payment gateway rejects or fails a call.

    ``declined`` is set when the card itself was refused, as opposed to the
    gateway being unreachable or misconfigured.
    """

    def __init__(self, message: str, declined: bool = False):
        super().__init__(message)
        self.declined = declined


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def create_payment_intent(amount: float, currency: str = PAYMENT_CURRENCY, metadata: Optional[dict] = None):
    try:
        return stripe.PaymentIntent.create(
            amount=to_cents(amount),
            currency=currency,
            metadata=metadata or {},
        )
    except stripe.CardError as e:
        logger.warning("Card declined creating payment intent: %s", e)
        raise PaymentError("Payment failed", declined=True) from e
    except stripe.StripeError as e:
        logger.error("Stripe error creating payment intent: %s", e)
        raise PaymentError("Payment processing failed") from e


def retrieve_payment_intent(payment_intent_id: str):
    try:
        return stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        logger.error("Stripe error retrieving %s: %s", payment_intent_id, e)
        raise PaymentError("Payment confirmation failed") from e


def refund_payment(payment_intent_id: str, amount: float):
    try:
        return stripe.Refund.create(payment_intent=payment_intent_id, amount=to_cents(amount))
    except stripe.StripeError as e:
        logger.error("Stripe error refunding %s: %s", payment_intent_id, e)
        raise PaymentError("Refund processing failed") from e
