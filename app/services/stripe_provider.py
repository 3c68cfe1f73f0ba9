"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

import stripe
from structlog import get_logger

from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.services.payment_provider import (
    PaymentIntent,
    PaymentResult,
    WebhookEvent,
)

logger = get_logger(__name__)


def _to_result(payment_intent: stripe.PaymentIntent) -> PaymentResult:
    metadata = payment_intent.metadata or {}
    return PaymentResult(
        payment_id=payment_intent.id,
        client_secret=payment_intent.client_secret or "",
        status=payment_intent.status,
        amount_minor=payment_intent.amount,
        currency=payment_intent.currency.upper(),
        customer_id=metadata.get("customer_id"),
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def create_payment_intent(self, intent: PaymentIntent) -> PaymentResult:
        """
        Create a Stripe PaymentIntent for a wallet top-up.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_payment_intent",
                amount_minor=intent.amount_minor,
                currency=intent.currency,
                customer_id=intent.customer_id,
            )

            metadata = {
                "customer_id": intent.customer_id,
                "name": intent.customer_name,
                "email": intent.customer_email,
            }
            if intent.customer_contact:
                metadata["contact"] = intent.customer_contact

            payment_intent = stripe.PaymentIntent.create(
                amount=intent.amount_minor,
                currency=intent.currency.lower(),
                description=intent.description,
                receipt_email=intent.customer_email,
                metadata=metadata,
                idempotency_key=intent.idempotency_key,
            )

            logger.info(
                "stripe_payment_intent_created",
                payment_intent_id=payment_intent.id,
                status=payment_intent.status,
            )
            return _to_result(payment_intent)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_intent_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe payment failed: {exc}") from exc

    async def get_payment_status(self, payment_id: str) -> PaymentResult:
        """
        Get current status of a payment intent from Stripe.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            payment_intent = stripe.PaymentIntent.retrieve(payment_id)
            logger.info(
                "stripe_payment_status_retrieved",
                payment_intent_id=payment_id,
                status=payment_intent.status,
            )
            return _to_result(payment_intent)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_status_failed",
                payment_intent_id=payment_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Failed to get payment status: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        payment_intent = event.data.object
        metadata = payment_intent.get("metadata") or {}
        currency = payment_intent.get("currency")

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)
        return WebhookEvent(
            event_id=event.id,
            event_type=event.type,
            payment_id=payment_intent.get("id", ""),
            status=payment_intent.get("status", ""),
            amount_minor=payment_intent.get("amount"),
            currency=currency.upper() if currency else None,
            customer_id=metadata.get("customer_id"),
        )
