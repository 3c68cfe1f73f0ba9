"""
Payment Provider Protocol - Gateway-agnostic interface for wallet top-ups.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol

SUCCEEDED_STATUS = "succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    """
    Request to collect a wallet top-up.

    Customer name and contact are passed to the gateway as prefill metadata.
    """

    amount_minor: int
    currency: str
    description: str
    customer_id: str
    customer_name: str
    customer_email: str
    customer_contact: str | None
    idempotency_key: str


@dataclass(frozen=True)
class PaymentResult:
    """Gateway view of a payment."""

    payment_id: str  # Gateway-specific payment ID
    client_secret: str  # For client-side payment confirmation
    status: str
    amount_minor: int
    currency: str
    customer_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED_STATUS


@dataclass(frozen=True)
class WebhookEvent:
    """Verified gateway notification."""

    event_id: str
    event_type: str
    payment_id: str
    status: str
    amount_minor: int | None
    currency: str | None
    customer_id: str | None


class PaymentProvider(Protocol):
    """
    Payment gateway protocol.

    The gateway only collects money; the wallet is credited by the ledger
    once a payment is confirmed.
    """

    async def create_payment_intent(self, intent: PaymentIntent) -> PaymentResult:
        """
        Create a payment with the gateway.

        Raises:
            PaymentProviderError: If payment creation fails
        """
        ...

    async def get_payment_status(self, payment_id: str) -> PaymentResult:
        """
        Fetch the current state of a payment.

        Raises:
            PaymentProviderError: If the gateway call fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse a gateway webhook.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
