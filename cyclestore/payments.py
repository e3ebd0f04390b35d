"""Stripe payment intents."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Tuple

import stripe


class PaymentConfigurationError(RuntimeError):
    """Raised when Stripe is used without a secret key."""


def to_minor_units(amount) -> int:
    """Convert a decimal currency amount into integer cents (19.99 -> 1999)."""
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePayments:
    def __init__(self, api_key: str, currency: str = "usd"):
        self.api_key = (api_key or "").strip()
        self.currency = currency

    def _require_key(self) -> str:
        if not self.api_key:
            raise PaymentConfigurationError("stripe_secret_key_missing")
        return self.api_key

    def create_intent(self, amount: int, currency: Optional[str] = None) -> str:
        """Create a card-only payment intent and return its client secret."""
        intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=currency or self.currency,
            payment_method_types=["card"],
            api_key=self._require_key(),
        )
        return intent["client_secret"]

    def retrieve_intent(self, intent_id: str) -> Any:
        return stripe.PaymentIntent.retrieve(intent_id, api_key=self._require_key())

    def is_settled(self, intent_id: str) -> bool:
        intent = self.retrieve_intent(intent_id)
        return intent.get("status") == "succeeded"


def stripe_error_response(error: stripe.StripeError, logger) -> Tuple[str, int]:
    """Map a Stripe error to a user-facing message and HTTP status.

    - CardError: 402, the card was declined
    - RateLimitError: 429
    - InvalidRequestError: 400
    - AuthenticationError: 500, the API key is wrong
    - APIConnectionError: 503
    - anything else: 500
    """
    logger.error("Stripe error: %s: %s", type(error).__name__, error)

    if isinstance(error, stripe.CardError):
        return (
            error.user_message
            or "Your card was declined. Please try a different payment method.",
            402,
        )
    if isinstance(error, stripe.RateLimitError):
        return "Too many payment requests. Please wait a moment and try again.", 429
    if isinstance(error, stripe.InvalidRequestError):
        return "Invalid payment request. Please check your details and try again.", 400
    if isinstance(error, stripe.AuthenticationError):
        logger.critical("Stripe authentication failed: %s", error)
        return "Payment service configuration error. Please contact support.", 500
    if isinstance(error, stripe.APIConnectionError):
        return "Payment service temporarily unavailable. Please try again.", 503
    return "Payment processing failed. Please try again or contact support.", 500
