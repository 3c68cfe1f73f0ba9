"""
Ledger Service - Wallet and AI credit accounting with write verification.

NO DICTIONARIES - All operations use strongly typed domain models.

Every mutating operation follows the same pattern:
1. Lock the customer row (SELECT FOR UPDATE)
2. Validate every precondition before touching state
3. Mutate and append immutable ledger rows
4. Flush and verify balance invariants
5. Commit
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import CreditLedgerEntry, Customer, PricingPlan, WalletTransaction
from app.exceptions import (
    DataIntegrityError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    InsufficientFundsError,
    InvalidTransitionError,
    ResourceNotFoundError,
)
from app.models.api import (
    BillingCycle,
    CreditSource,
    LedgerEntryStatus,
    SubscriptionStatus,
    WalletTransactionType,
)
from app.models.domain import (
    CreditLedgerEntryData,
    CreditPurchaseResult,
    CreditSummary,
    CustomerData,
    PlanData,
    RenewalResult,
    WalletTransactionData,
)
from app.observability.metrics import metrics

logger = get_logger(__name__)

# Additional credits are priced per block of this many credits
CREDIT_PRICE_BLOCK = 1000
MINOR_PER_UNIT = 100
BPS_DENOMINATOR = 10_000


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def credit_purchase_cost(quantity: int, price_per_block_minor: int) -> int:
    """
    Cost of buying `quantity` credits, rounded up to a whole currency unit.

    500 credits at 5000.00 per 1000 costs 2500.00 (250000 minor).
    """
    if quantity <= 0:
        raise ValueError(f"Credit quantity must be positive: {quantity}")
    units = -(-(quantity * price_per_block_minor) // (CREDIT_PRICE_BLOCK * MINOR_PER_UNIT))
    return units * MINOR_PER_UNIT


def requires_review(quantity: int, threshold: int) -> bool:
    """Purchases at or above the threshold wait for admin approval."""
    return quantity >= threshold


def renewal_cost(monthly_price_minor: int, tax_rate_bps: int) -> int:
    """Monthly price plus tax, rounded half up to minor units."""
    gross = monthly_price_minor * (BPS_DENOMINATOR + tax_rate_bps)
    return (gross + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def extend_subscription(current_end: datetime | None, now: datetime, days: int) -> datetime:
    """Renewal never stacks onto a lapsed period: extend from max(end, now)."""
    base = now if current_end is None or current_end < now else current_end
    return base + timedelta(days=days)


def subscription_is_active(customer: Customer, now: datetime) -> bool:
    """A subscription is usable while active and not past its end date."""
    if customer.subscription_status != SubscriptionStatus.ACTIVE.value:
        return False
    return customer.subscription_end_date is None or customer.subscription_end_date > now


def remaining_credits(available: int, amount: int) -> int:
    """Credits left after consuming `amount`; refuses to go negative."""
    if amount < 0:
        raise ValueError(f"Credit amount cannot be negative: {amount}")
    if available < amount:
        raise InsufficientCreditsError(available, amount)
    return available - amount


# ============================================================================
# ORM -> Domain conversion
# ============================================================================


def customer_to_domain(customer: Customer) -> CustomerData:
    """Convert ORM customer to domain model."""
    return CustomerData(
        customer_id=customer.id,
        name=customer.name,
        email=customer.email,
        phone=customer.phone,
        plan_id=customer.plan_id,
        billing_cycle=BillingCycle(customer.billing_cycle),
        subscription_status=SubscriptionStatus(customer.subscription_status),
        subscription_end_date=customer.subscription_end_date,
        wallet_balance_minor=customer.wallet_balance_minor,
        ai_credits=customer.ai_credits,
        currency=customer.currency,
        onboarded_at=customer.onboarded_at,
        created_at=customer.created_at,
    )


def plan_to_domain(plan: PricingPlan) -> PlanData:
    """Convert ORM plan to domain model."""
    return PlanData(
        plan_id=plan.id,
        name=plan.name,
        monthly_price_minor=plan.monthly_price_minor,
        yearly_price_minor=plan.yearly_price_minor,
        currency=plan.currency,
        max_projects=plan.max_projects,
        ai_credits=plan.ai_credits,
        additional_credit_price_minor=plan.additional_credit_price_minor,
        features=list(plan.features or []),
        visible=plan.visible,
        recommended=plan.recommended,
    )


def wallet_tx_to_domain(tx: WalletTransaction) -> WalletTransactionData:
    """Convert ORM wallet transaction to domain model."""
    return WalletTransactionData(
        transaction_id=tx.id,
        customer_id=tx.customer_id,
        type=WalletTransactionType(tx.type),
        amount_minor=tx.amount_minor,
        balance_after_minor=tx.balance_after_minor,
        description=tx.description,
        reference_id=tx.reference_id,
        created_at=tx.created_at,
    )


def ledger_entry_to_domain(entry: CreditLedgerEntry) -> CreditLedgerEntryData:
    """Convert ORM ledger entry to domain model."""
    return CreditLedgerEntryData(
        entry_id=entry.id,
        customer_id=entry.customer_id,
        credits_added=entry.credits_added,
        credits_consumed=entry.credits_consumed,
        source=CreditSource(entry.source),
        status=LedgerEntryStatus(entry.status),
        description=entry.description,
        cost_minor=entry.cost_minor,
        review_note=entry.review_note,
        created_at=entry.created_at,
    )


class LedgerService:
    """
    Wallet and AI credit ledger for customers.

    Balances live on the customer row; WalletTransaction and CreditLedgerEntry
    rows are the append-only audit trail of every movement.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        """Initialize ledger service with database session."""
        self.session = session
        self.settings = settings or get_settings()

    # ========================================================================
    # Credit purchases
    # ========================================================================

    async def purchase_credits(self, customer_id: UUID, quantity: int) -> CreditPurchaseResult:
        """
        Buy additional AI credits from the wallet.

        Below the auto-approve threshold the credits are granted at once.
        Otherwise the wallet is debited and the entry waits for admin review.

        Raises:
            ResourceNotFoundError: Customer or plan doesn't exist
            InsufficientFundsError: Wallet cannot cover the cost
        """
        if quantity <= 0:
            raise ValueError(f"Credit quantity must be positive: {quantity}")

        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        plan = await self._get_plan(customer.plan_id)
        cost = credit_purchase_cost(quantity, plan.additional_credit_price_minor)

        if customer.wallet_balance_minor < cost:
            raise InsufficientFundsError(customer.wallet_balance_minor, cost)

        auto_approved = not requires_review(quantity, self.settings.credit_auto_approve_threshold)
        description = (
            f"Purchased {quantity} AI credits (Auto-Approved)"
            if auto_approved
            else f"Purchased {quantity} AI credits (Pending Admin Approval)"
        )

        tx = self._append_wallet_tx(
            customer, WalletTransactionType.DEBIT, cost, f"Credit purchase: {quantity} credits"
        )
        await self.session.flush()

        entry = CreditLedgerEntry(
            id=uuid4(),
            customer_id=customer.id,
            credits_added=quantity,
            credits_consumed=0,
            source=CreditSource.PURCHASE.value,
            status=(LedgerEntryStatus.APPROVED if auto_approved else LedgerEntryStatus.PENDING).value,
            description=description,
            cost_minor=cost,
            wallet_transaction_id=tx.id,
            created_at=_utc_now(),
        )
        self.session.add(entry)

        if auto_approved:
            customer.ai_credits = customer.ai_credits + quantity

        await self.session.flush()
        self._verify_customer_balances(customer)
        await self.session.commit()

        status = LedgerEntryStatus(entry.status)
        metrics.record_credit_purchase(status.value)
        metrics.record_wallet_movement("debit", "credit_purchase", cost)
        logger.info(
            "credits_purchased",
            customer_id=str(customer.id),
            quantity=quantity,
            cost_minor=cost,
            status=status.value,
        )

        return CreditPurchaseResult(
            entry=ledger_entry_to_domain(entry),
            cost_minor=cost,
            auto_approved=auto_approved,
            wallet_balance_minor=customer.wallet_balance_minor,
            ai_credits=customer.ai_credits,
        )

    async def approve_credit_purchase(
        self, entry_id: UUID, note: str | None = None
    ) -> CreditLedgerEntryData:
        """
        Approve a pending credit purchase and grant its credits.

        Raises:
            ResourceNotFoundError: Entry or customer doesn't exist
            InvalidTransitionError: Entry is not a pending purchase
        """
        entry = await self._lock_pending_purchase(entry_id, "approve")
        customer = await self._lock_customer_for_update(entry.customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", entry.customer_id)

        entry.status = LedgerEntryStatus.APPROVED.value
        entry.review_note = note
        entry.reviewed_at = _utc_now()
        customer.ai_credits = customer.ai_credits + entry.credits_added

        await self.session.flush()
        self._verify_customer_balances(customer)
        await self.session.commit()

        metrics.record_credit_purchase("approved")
        logger.info(
            "credit_purchase_approved",
            entry_id=str(entry.id),
            customer_id=str(customer.id),
            credits=entry.credits_added,
        )
        return ledger_entry_to_domain(entry)

    async def reject_credit_purchase(
        self, entry_id: UUID, note: str | None = None
    ) -> CreditLedgerEntryData:
        """
        Reject a pending credit purchase and refund its cost to the wallet.

        Raises:
            ResourceNotFoundError: Entry or customer doesn't exist
            InvalidTransitionError: Entry is not a pending purchase
        """
        entry = await self._lock_pending_purchase(entry_id, "reject")
        customer = await self._lock_customer_for_update(entry.customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", entry.customer_id)

        entry.status = LedgerEntryStatus.REJECTED.value
        entry.review_note = note
        entry.reviewed_at = _utc_now()

        if entry.cost_minor > 0:
            self._append_wallet_tx(
                customer,
                WalletTransactionType.CREDIT,
                entry.cost_minor,
                f"Refund: rejected purchase of {entry.credits_added} credits",
            )

        await self.session.flush()
        self._verify_customer_balances(customer)
        await self.session.commit()

        metrics.record_credit_purchase("rejected")
        if entry.cost_minor > 0:
            metrics.record_wallet_movement("credit", "purchase_refund", entry.cost_minor)
        logger.info(
            "credit_purchase_rejected",
            entry_id=str(entry.id),
            customer_id=str(customer.id),
            refunded_minor=entry.cost_minor,
        )
        return ledger_entry_to_domain(entry)

    # ========================================================================
    # Wallet
    # ========================================================================

    async def top_up_wallet(
        self,
        customer_id: UUID,
        amount_minor: int,
        reference_id: str,
        description: str = "Wallet Top-up",
    ) -> WalletTransactionData:
        """
        Credit the wallet after the payment gateway confirmed the payment.

        The gateway reference is recorded on the transaction and may only be
        applied once.

        Raises:
            ResourceNotFoundError: Customer doesn't exist
            IdempotencyConflictError: Reference already applied
        """
        if amount_minor <= 0:
            raise ValueError(f"Top-up amount must be positive: {amount_minor}")
        if not reference_id:
            raise ValueError("Top-up requires a payment reference")

        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        existing = await self._find_wallet_tx_by_reference(customer.id, reference_id)
        if existing is not None:
            logger.warning(
                "top_up_replayed",
                customer_id=str(customer.id),
                reference_id=reference_id,
                existing_id=str(existing.id),
            )
            raise IdempotencyConflictError(existing.id)

        tx = self._append_wallet_tx(
            customer, WalletTransactionType.CREDIT, amount_minor, description, reference_id
        )
        await self.session.flush()
        self._verify_customer_balances(customer)
        await self.session.commit()

        metrics.record_wallet_movement("credit", "top_up", amount_minor)
        logger.info(
            "wallet_topped_up",
            customer_id=str(customer.id),
            amount_minor=amount_minor,
            reference_id=reference_id,
            balance_after=customer.wallet_balance_minor,
        )
        return wallet_tx_to_domain(tx)

    async def renew_subscription(self, customer_id: UUID) -> RenewalResult:
        """
        Renew the subscription for one period from the wallet.

        Raises:
            ResourceNotFoundError: Customer or plan doesn't exist
            InsufficientFundsError: Wallet is short; shortfall_minor says by how much
        """
        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        plan = await self._get_plan(customer.plan_id)
        cost = renewal_cost(plan.monthly_price_minor, self.settings.tax_rate_bps)

        if customer.wallet_balance_minor < cost:
            logger.info(
                "renewal_needs_top_up",
                customer_id=str(customer.id),
                cost_minor=cost,
                balance_minor=customer.wallet_balance_minor,
            )
            raise InsufficientFundsError(customer.wallet_balance_minor, cost)

        now = _utc_now()
        new_end = extend_subscription(
            customer.subscription_end_date, now, self.settings.subscription_period_days
        )

        if cost > 0:
            self._append_wallet_tx(
                customer,
                WalletTransactionType.DEBIT,
                cost,
                f"Subscription renewal: {plan.name} (incl. tax)",
            )
        customer.subscription_end_date = new_end
        customer.subscription_status = SubscriptionStatus.ACTIVE.value

        await self.session.flush()
        self._verify_customer_balances(customer)
        await self.session.commit()

        if cost > 0:
            metrics.record_wallet_movement("debit", "renewal", cost)
        logger.info(
            "subscription_renewed",
            customer_id=str(customer.id),
            plan_id=plan.id,
            cost_minor=cost,
            subscription_end_date=new_end.isoformat(),
        )
        return RenewalResult(
            cost_minor=cost,
            wallet_balance_minor=customer.wallet_balance_minor,
            subscription_end_date=new_end,
        )

    # ========================================================================
    # Credit consumption
    # ========================================================================

    async def consume_credits(
        self,
        customer_id: UUID,
        project_id: UUID,
        workflow_run_id: UUID,
        amount: int,
        description: str,
    ) -> CreditLedgerEntryData:
        """
        Consume credits for a recorded workflow run in its own transaction.

        Raises:
            ResourceNotFoundError: Customer doesn't exist
            InsufficientCreditsError: Not enough credits
        """
        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        entry = self.apply_usage(customer, project_id, workflow_run_id, amount, description)
        await self.session.flush()
        self._verify_customer_balances(customer)
        await self.session.commit()
        return ledger_entry_to_domain(entry)

    def apply_usage(
        self,
        customer: Customer,
        project_id: UUID,
        workflow_run_id: UUID,
        amount: int,
        description: str,
    ) -> CreditLedgerEntry:
        """
        Deduct credits from an already locked customer and append the usage entry.

        Does not flush or commit; the caller owns the transaction.
        """
        customer.ai_credits = remaining_credits(customer.ai_credits, amount)
        entry = CreditLedgerEntry(
            id=uuid4(),
            customer_id=customer.id,
            credits_added=0,
            credits_consumed=amount,
            source=CreditSource.USAGE.value,
            status=LedgerEntryStatus.APPROVED.value,
            description=description,
            cost_minor=0,
            project_id=project_id,
            workflow_run_id=workflow_run_id,
            created_at=_utc_now(),
        )
        self.session.add(entry)
        return entry

    def apply_bonus(self, customer: Customer, credits: int, description: str) -> CreditLedgerEntry:
        """
        Grant bonus credits to a customer inside the caller's transaction.

        Used for the plan allotment at checkout.
        """
        if credits <= 0:
            raise ValueError(f"Bonus credits must be positive: {credits}")
        customer.ai_credits = customer.ai_credits + credits
        entry = CreditLedgerEntry(
            id=uuid4(),
            customer_id=customer.id,
            credits_added=credits,
            credits_consumed=0,
            source=CreditSource.BONUS.value,
            status=LedgerEntryStatus.APPROVED.value,
            description=description,
            cost_minor=0,
            created_at=_utc_now(),
        )
        self.session.add(entry)
        return entry

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_customer(self, customer_id: UUID) -> CustomerData:
        """Get customer profile and balances."""
        customer = await self.session.get(Customer, customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)
        return customer_to_domain(customer)

    async def list_wallet_transactions(
        self, customer_id: UUID, limit: int = 50, offset: int = 0
    ) -> tuple[list[WalletTransactionData], int]:
        """List wallet transactions, newest first, with total count."""
        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.customer_id == customer_id)
            .order_by(WalletTransaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        rows = list(result.scalars().all())

        count_stmt = select(func.count(WalletTransaction.id)).where(
            WalletTransaction.customer_id == customer_id
        )
        total = (await self.session.execute(count_stmt)).scalar_one()
        return [wallet_tx_to_domain(r) for r in rows], total

    async def list_credit_ledger(
        self, customer_id: UUID, limit: int = 50, offset: int = 0
    ) -> tuple[list[CreditLedgerEntryData], int]:
        """List credit ledger entries, newest first, with total count."""
        stmt = (
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.customer_id == customer_id)
            .order_by(CreditLedgerEntry.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        rows = list(result.scalars().all())

        count_stmt = select(func.count(CreditLedgerEntry.id)).where(
            CreditLedgerEntry.customer_id == customer_id
        )
        total = (await self.session.execute(count_stmt)).scalar_one()
        return [ledger_entry_to_domain(r) for r in rows], total

    async def list_pending_credit_purchases(self, limit: int = 100) -> list[CreditLedgerEntryData]:
        """Admin review queue: pending purchases, oldest first."""
        stmt = (
            select(CreditLedgerEntry)
            .where(
                CreditLedgerEntry.source == CreditSource.PURCHASE.value,
                CreditLedgerEntry.status == LedgerEntryStatus.PENDING.value,
            )
            .order_by(CreditLedgerEntry.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [ledger_entry_to_domain(r) for r in result.scalars().all()]

    async def credit_summary(self, customer_id: UUID) -> CreditSummary:
        """Available credits, lifetime consumption and credits awaiting review."""
        customer = await self.session.get(Customer, customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        consumed_stmt = select(
            func.coalesce(func.sum(CreditLedgerEntry.credits_consumed), 0)
        ).where(
            CreditLedgerEntry.customer_id == customer_id,
            CreditLedgerEntry.source == CreditSource.USAGE.value,
        )
        pending_stmt = select(func.coalesce(func.sum(CreditLedgerEntry.credits_added), 0)).where(
            CreditLedgerEntry.customer_id == customer_id,
            CreditLedgerEntry.status == LedgerEntryStatus.PENDING.value,
        )
        consumed = (await self.session.execute(consumed_stmt)).scalar_one()
        pending = (await self.session.execute(pending_stmt)).scalar_one()
        return CreditSummary(
            available=customer.ai_credits,
            total_consumed=int(consumed),
            pending_purchased=int(pending),
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _append_wallet_tx(
        self,
        customer: Customer,
        tx_type: WalletTransactionType,
        amount_minor: int,
        description: str,
        reference_id: str | None = None,
    ) -> WalletTransaction:
        """Move the wallet balance and append the matching transaction row."""
        before = customer.wallet_balance_minor
        if tx_type == WalletTransactionType.DEBIT:
            if before < amount_minor:
                raise InsufficientFundsError(before, amount_minor)
            after = before - amount_minor
        else:
            after = before + amount_minor

        tx = WalletTransaction(
            id=uuid4(),
            customer_id=customer.id,
            type=tx_type.value,
            amount_minor=amount_minor,
            balance_before_minor=before,
            balance_after_minor=after,
            description=description,
            reference_id=reference_id,
            created_at=_utc_now(),
        )
        self.session.add(tx)
        customer.wallet_balance_minor = after
        return tx

    def _verify_customer_balances(self, customer: Customer) -> None:
        """Validate balance invariants after flush."""
        if customer.wallet_balance_minor < 0:
            raise DataIntegrityError(
                f"Wallet balance negative for customer {customer.id}: "
                f"{customer.wallet_balance_minor}"
            )
        if customer.ai_credits < 0:
            raise DataIntegrityError(
                f"AI credits negative for customer {customer.id}: {customer.ai_credits}"
            )

    async def _lock_customer_for_update(self, customer_id: UUID) -> Customer | None:
        """Lock customer row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_plan(self, plan_id: str) -> PricingPlan:
        """Get the customer's plan; a dangling plan id is an integrity problem."""
        plan = await self.session.get(PricingPlan, plan_id)
        if plan is None:
            raise ResourceNotFoundError("PricingPlan", plan_id)
        return plan

    async def _lock_pending_purchase(self, entry_id: UUID, action: str) -> CreditLedgerEntry:
        """Lock a ledger entry and require it to be a pending purchase."""
        stmt = (
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        entry = result.scalar_one_or_none()
        if entry is None:
            raise ResourceNotFoundError("CreditLedgerEntry", entry_id)
        if (
            entry.source != CreditSource.PURCHASE.value
            or entry.status != LedgerEntryStatus.PENDING.value
        ):
            raise InvalidTransitionError("credit purchase", entry.status, action)
        return entry

    async def _find_wallet_tx_by_reference(
        self, customer_id: UUID, reference_id: str
    ) -> WalletTransaction | None:
        """Find a wallet transaction by payment reference."""
        stmt = select(WalletTransaction).where(
            WalletTransaction.customer_id == customer_id,
            WalletTransaction.reference_id == reference_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
