"""
Top-Up Service - Collects wallet top-ups through the payment gateway.

The wallet is only credited once the gateway reports success, either via
webhook or an explicit confirm. Without a gateway, simulated top-ups credit
immediately when payment_simulation_enabled is set.
"""

from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import Customer
from app.exceptions import IdempotencyConflictError, PaymentProviderError, ResourceNotFoundError
from app.models.domain import TopUpResult
from app.services.ledger import LedgerService
from app.services.payment_provider import PaymentIntent, PaymentProvider
from app.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"
SIMULATED_REFERENCE_PREFIX = "sim_"


def get_payment_provider(settings: Settings) -> PaymentProvider | None:
    """Configured gateway, or None when no Stripe key is set."""
    if not settings.payment_gateway_enabled:
        return None
    return StripeProvider(settings.stripe_api_key, settings.stripe_webhook_secret)


class TopUpService:
    """Wallet top-up orchestration."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        provider: PaymentProvider | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.provider = provider if provider is not None else get_payment_provider(self.settings)
        self.ledger = LedgerService(session, self.settings)

    async def initiate_top_up(self, customer_id: UUID, amount_minor: int) -> TopUpResult:
        """
        Start a top-up.

        Raises:
            ValueError: Amount below the minimum top-up
            ResourceNotFoundError: Customer doesn't exist
            PaymentProviderError: Gateway failed or none is configured
        """
        if amount_minor < self.settings.min_top_up_minor:
            raise ValueError(
                f"Minimum top-up is {self.settings.min_top_up_minor}, got {amount_minor}"
            )

        customer = await self.session.get(Customer, customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        if self.provider is None:
            if not self.settings.payment_simulation_enabled:
                raise PaymentProviderError("No payment gateway configured")
            return await self._simulate(customer, amount_minor)

        result = await self.provider.create_payment_intent(
            PaymentIntent(
                amount_minor=amount_minor,
                currency=customer.currency,
                description="Wallet Top-up",
                customer_id=str(customer.id),
                customer_name=customer.name,
                customer_email=customer.email,
                customer_contact=customer.phone,
                idempotency_key=f"topup-{customer.id}-{uuid4()}",
            )
        )
        logger.info(
            "top_up_initiated",
            customer_id=str(customer.id),
            payment_id=result.payment_id,
            amount_minor=amount_minor,
        )
        return TopUpResult(
            payment_id=result.payment_id,
            status=result.status,
            amount_minor=result.amount_minor,
            currency=result.currency,
            client_secret=result.client_secret,
            publishable_key=self.settings.stripe_publishable_key or None,
        )

    async def confirm_top_up(self, customer_id: UUID, payment_id: str) -> TopUpResult:
        """
        Credit the wallet for a payment the gateway reports as succeeded.

        Confirming an already applied payment returns the current balance.
        """
        if self.provider is None:
            raise PaymentProviderError("No payment gateway configured")

        result = await self.provider.get_payment_status(payment_id)
        if result.customer_id != str(customer_id):
            raise ResourceNotFoundError("Payment", payment_id)

        balance: int | None = None
        if result.succeeded:
            balance = await self._apply(customer_id, payment_id, result.amount_minor)

        return TopUpResult(
            payment_id=payment_id,
            status=result.status,
            amount_minor=result.amount_minor,
            currency=result.currency,
            wallet_balance_minor=balance,
        )

    async def handle_webhook(self, payload: bytes, signature: str) -> bool:
        """
        Apply a verified gateway webhook. Returns True if the wallet was credited.

        Raises:
            WebhookVerificationError: Signature invalid
        """
        if self.provider is None:
            raise PaymentProviderError("No payment gateway configured")

        event = await self.provider.verify_webhook(payload, signature)
        if event.event_type != PAYMENT_SUCCEEDED_EVENT:
            logger.info("payment_webhook_ignored", event_id=event.event_id, type=event.event_type)
            return False
        if not event.customer_id or not event.amount_minor:
            logger.warning("payment_webhook_missing_customer", event_id=event.event_id)
            return False

        await self._apply(UUID(event.customer_id), event.payment_id, event.amount_minor)
        return True

    async def _apply(self, customer_id: UUID, payment_id: str, amount_minor: int) -> int:
        """Credit the wallet once per payment and return the resulting balance."""
        try:
            tx = await self.ledger.top_up_wallet(customer_id, amount_minor, payment_id)
        except IdempotencyConflictError:
            logger.info("top_up_already_applied", customer_id=str(customer_id), payment_id=payment_id)
            await self.session.rollback()
            customer = await self.ledger.get_customer(customer_id)
            return customer.wallet_balance_minor
        return tx.balance_after_minor

    async def _simulate(self, customer: Customer, amount_minor: int) -> TopUpResult:
        reference = f"{SIMULATED_REFERENCE_PREFIX}{uuid4().hex}"
        tx = await self.ledger.top_up_wallet(customer.id, amount_minor, reference)
        logger.warning(
            "top_up_simulated",
            customer_id=str(customer.id),
            amount_minor=amount_minor,
            reference_id=reference,
        )
        return TopUpResult(
            payment_id=reference,
            status="succeeded",
            amount_minor=amount_minor,
            currency=customer.currency,
            simulated=True,
            wallet_balance_minor=tx.balance_after_minor,
        )
