"""
Checkout Service - Cart, customer sign-up and onboarding.

NO DICTIONARIES - All operations use strongly typed domain models.

Checkout creates the customer on the carted plan, grants the plan's AI
credits and attributes the sale to a referral partner in one transaction.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import Cart, Customer, PricingPlan, Project
from app.exceptions import EmailAlreadyRegisteredError, ResourceNotFoundError
from app.models.api import BillingCycle, SubscriptionStatus
from app.models.domain import (
    CartData,
    CheckoutResult,
    OnboardingProfile,
    OnboardingResult,
)
from app.services.commission import CommissionService
from app.services.ledger import BPS_DENOMINATOR, LedgerService, customer_to_domain
from app.services.projects import ProjectService, project_to_domain

logger = get_logger(__name__)

YEARLY_PERIOD_DAYS = 365


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def tax_amount(subtotal_minor: int, tax_rate_bps: int) -> int:
    """Tax on a subtotal, rounded half up to minor units."""
    return (subtotal_minor * tax_rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def cycle_price(plan: PricingPlan, cycle: BillingCycle) -> int:
    """Plan price for one billing cycle."""
    if cycle == BillingCycle.YEARLY:
        return plan.yearly_price_minor
    return plan.monthly_price_minor


def cart_to_domain(cart: Cart, plan: PricingPlan, tax_rate_bps: int) -> CartData:
    """Price a cart row."""
    cycle = BillingCycle(cart.billing_cycle)
    subtotal = cycle_price(plan, cycle)
    tax = tax_amount(subtotal, tax_rate_bps)
    return CartData(
        session_id=cart.session_id,
        plan_id=plan.id,
        plan_name=plan.name,
        billing_cycle=cycle,
        subtotal_minor=subtotal,
        tax_minor=tax,
        total_minor=subtotal + tax,
        currency=plan.currency,
    )


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively."""
    return email.strip().lower()


class CheckoutService:
    """Cart, checkout and onboarding."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    # ========================================================================
    # Cart
    # ========================================================================

    async def add_to_cart(self, session_id: str, plan_id: str, cycle: BillingCycle) -> CartData:
        """Put a plan in the cart, replacing whatever was there."""
        plan = await self._get_plan(plan_id)
        cart = await self.session.get(Cart, session_id)
        if cart is None:
            cart = Cart(session_id=session_id)
            self.session.add(cart)
        cart.plan_id = plan.id
        cart.billing_cycle = cycle.value
        cart.updated_at = _utc_now()
        await self.session.commit()

        logger.info("cart_updated", session_id=session_id, plan_id=plan.id, cycle=cycle.value)
        return cart_to_domain(cart, plan, self.settings.tax_rate_bps)

    async def get_cart(self, session_id: str) -> CartData:
        """Priced cart contents."""
        cart = await self._get_cart(session_id)
        plan = await self._get_plan(cart.plan_id)
        return cart_to_domain(cart, plan, self.settings.tax_rate_bps)

    async def remove_from_cart(self, session_id: str) -> None:
        """Empty the cart."""
        cart = await self._get_cart(session_id)
        await self.session.delete(cart)
        await self.session.commit()
        logger.info("cart_cleared", session_id=session_id)

    # ========================================================================
    # Checkout
    # ========================================================================

    async def checkout(
        self,
        session_id: str,
        name: str,
        email: str,
        phone: str | None = None,
        payment_reference: str | None = None,
        referral_code: str | None = None,
    ) -> CheckoutResult:
        """
        Turn a paid cart into a customer.

        The partner commission is computed on the pre-tax plan price. An
        unknown referral code never fails checkout.

        Raises:
            ResourceNotFoundError: Cart or plan doesn't exist
            EmailAlreadyRegisteredError: Email already belongs to a customer
        """
        cart = await self._get_cart(session_id)
        plan = await self._get_plan(cart.plan_id)
        priced = cart_to_domain(cart, plan, self.settings.tax_rate_bps)

        email = normalize_email(email)
        if await self._find_customer_by_email(email) is not None:
            raise EmailAlreadyRegisteredError(email)

        now = _utc_now()
        customer = Customer(
            id=uuid4(),
            name=name.strip(),
            email=email,
            phone=phone,
            referral_code=referral_code or None,
            plan_id=plan.id,
            billing_cycle=priced.billing_cycle.value,
            subscription_status=SubscriptionStatus.ACTIVE.value,
            subscription_end_date=None,
            wallet_balance_minor=0,
            currency=plan.currency,
            ai_credits=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(customer)
        await self.session.flush()

        if plan.ai_credits > 0:
            LedgerService(self.session, self.settings).apply_bonus(
                customer, plan.ai_credits, f"{plan.name} plan allotment"
            )

        commission = await CommissionService(self.session, self.settings).apply_commission(
            referral_code,
            sale_amount_minor=priced.subtotal_minor,
            customer_name=customer.name,
            plan_name=plan.name,
            commit=False,
        )

        await self.session.delete(cart)
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "checkout_completed",
            customer_id=str(customer.id),
            plan_id=plan.id,
            cycle=priced.billing_cycle.value,
            total_minor=priced.total_minor,
            payment_reference=payment_reference,
            commission_applied=commission is not None,
        )
        return CheckoutResult(
            customer=customer_to_domain(customer),
            total_paid_minor=priced.total_minor,
            commission_applied=commission is not None,
        )

    # ========================================================================
    # Onboarding
    # ========================================================================

    async def complete_onboarding(
        self, customer_id: UUID, profile: OnboardingProfile
    ) -> OnboardingResult:
        """
        Store the business profile and start the subscription period.

        Starter projects are provisioned on the first onboarding only; a
        repeat call just updates the profile.
        """
        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        customer.phone = profile.phone
        customer.whatsapp = profile.whatsapp
        customer.address = profile.address
        customer.city = profile.city
        customer.pin = profile.pin
        customer.state = profile.state
        customer.business_name = profile.business_name
        customer.industry = profile.industry
        customer.gst_no = profile.gst_no

        now = _utc_now()
        projects_service = ProjectService(self.session, self.settings)
        first_time = customer.onboarded_at is None
        provisioned: list[Project] = []
        if first_time:
            days = (
                YEARLY_PERIOD_DAYS
                if customer.billing_cycle == BillingCycle.YEARLY.value
                else self.settings.subscription_period_days
            )
            customer.subscription_end_date = now + timedelta(days=days)
            customer.subscription_status = SubscriptionStatus.ACTIVE.value
            customer.onboarded_at = now
            plan = await self._get_plan(customer.plan_id)
            provisioned = projects_service.provision_default_projects(customer, plan)
        customer.updated_at = now

        await self.session.flush()
        await self.session.commit()

        if first_time:
            projects = [project_to_domain(p) for p in provisioned]
        else:
            projects = await projects_service.list_projects(customer.id)

        logger.info(
            "onboarding_completed",
            customer_id=str(customer.id),
            first_time=first_time,
            project_count=len(projects),
        )
        return OnboardingResult(customer=customer_to_domain(customer), projects=projects)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _get_cart(self, session_id: str) -> Cart:
        cart = await self.session.get(Cart, session_id)
        if cart is None:
            raise ResourceNotFoundError("Cart", session_id)
        return cart

    async def _get_plan(self, plan_id: str) -> PricingPlan:
        plan = await self.session.get(PricingPlan, plan_id)
        if plan is None:
            raise ResourceNotFoundError("PricingPlan", plan_id)
        return plan

    async def _find_customer_by_email(self, email: str) -> Customer | None:
        stmt = select(Customer).where(Customer.email == email)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

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
