"""
Tests for CheckoutService.

Unit tests for cart pricing, checkout and onboarding.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from app.config import Settings
from app.db.models import Cart, CommissionLog, CreditLedgerEntry, Customer, PricingPlan
from app.exceptions import EmailAlreadyRegisteredError, ResourceNotFoundError
from app.models.api import BillingCycle, CreditSource
from app.models.domain import OnboardingProfile
from app.services.checkout import CheckoutService, normalize_email, tax_amount
from tests.conftest import (
    create_mock_cart,
    create_mock_customer,
    create_mock_partner,
    create_mock_plan,
    create_mock_project,
    make_result,
)


def _added(db_session: AsyncMock, model: type) -> list:
    """Objects of one model type passed to session.add()."""
    return [c.args[0] for c in db_session.add.call_args_list if isinstance(c.args[0], model)]


def _get_by_model(**rows):
    """session.get side effect returning rows keyed by model name."""

    async def _get(model, key):
        return rows.get(model.__name__)

    return _get


@pytest.fixture
def profile() -> OnboardingProfile:
    """Standard onboarding profile."""
    return OnboardingProfile(
        phone="+919800000000",
        address="12 MG Road",
        city="Pune",
        pin="411001",
        state="Maharashtra",
        business_name="Asha Traders",
        gst_no="27ABCDE1234F1Z5",
    )


class TestPricing:
    """Tests for cart pricing helpers."""

    def test_tax_half_up(self) -> None:
        """18% GST on 9999.00 is 1799.82."""
        assert tax_amount(999_900, 1800) == 179_982

    def test_email_normalization(self) -> None:
        """Emails compare case-insensitively."""
        assert normalize_email("  Asha@Example.COM ") == "asha@example.com"


class TestCart:
    """Tests for cart operations."""

    async def test_add_creates_cart(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """A new session gets a priced cart."""
        db_session.get = AsyncMock(side_effect=_get_by_model(PricingPlan=create_mock_plan()))
        service = CheckoutService(db_session, test_settings)

        cart = await service.add_to_cart("sess-1", "pro", BillingCycle.MONTHLY)

        assert cart.subtotal_minor == 999_900
        assert cart.tax_minor == 179_982
        assert cart.total_minor == 1_179_882
        assert len(_added(db_session, Cart)) == 1

    async def test_add_replaces_plan(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """The cart holds one plan; adding replaces it."""
        existing = create_mock_cart(plan_id="starter")
        db_session.get = AsyncMock(
            side_effect=_get_by_model(PricingPlan=create_mock_plan(), Cart=existing)
        )
        service = CheckoutService(db_session, test_settings)

        cart = await service.add_to_cart("sess-123", "pro", BillingCycle.YEARLY)

        assert existing.plan_id == "pro"
        assert cart.billing_cycle == BillingCycle.YEARLY
        assert cart.subtotal_minor == 9_999_000
        db_session.add.assert_not_called()

    async def test_unknown_plan(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """Only catalog plans can be carted."""
        service = CheckoutService(db_session, test_settings)

        with pytest.raises(ResourceNotFoundError):
            await service.add_to_cart("sess-1", "nope", BillingCycle.MONTHLY)

    async def test_empty_cart(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """Reading a missing cart raises."""
        service = CheckoutService(db_session, test_settings)

        with pytest.raises(ResourceNotFoundError):
            await service.get_cart("sess-1")


class TestCheckout:
    """Tests for turning a cart into a customer."""

    async def test_checkout_with_channel_referral(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """The customer gets plan credits and the partner a commission on the subtotal."""
        cart = create_mock_cart()
        partner = create_mock_partner(code="RAHUL20")
        db_session.get = AsyncMock(
            side_effect=_get_by_model(Cart=cart, PricingPlan=create_mock_plan())
        )
        db_session.execute = AsyncMock(
            side_effect=[make_result(one=None), make_result(one=partner)]
        )
        service = CheckoutService(db_session, test_settings)

        result = await service.checkout(
            "sess-123",
            name="Asha Traders",
            email="Asha@Example.com",
            payment_reference="pay_123",
            referral_code="RAHUL20",
        )

        assert result.total_paid_minor == 1_179_882
        assert result.commission_applied is True
        assert result.customer.email == "asha@example.com"
        assert result.customer.ai_credits == 500
        assert result.customer.subscription_end_date is None

        commission = _added(db_session, CommissionLog)[0]
        assert commission.sale_amount_minor == 999_900
        assert commission.amount_minor == 199_980
        bonus = _added(db_session, CreditLedgerEntry)[0]
        assert bonus.source == CreditSource.BONUS.value

        db_session.delete.assert_called_once_with(cart)
        db_session.commit.assert_called_once()

    async def test_checkout_without_referral(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """No referral code means no commission."""
        db_session.get = AsyncMock(
            side_effect=_get_by_model(Cart=create_mock_cart(), PricingPlan=create_mock_plan())
        )
        service = CheckoutService(db_session, test_settings)

        result = await service.checkout("sess-123", name="Asha", email="asha@example.com")

        assert result.commission_applied is False
        assert _added(db_session, CommissionLog) == []
        assert len(_added(db_session, Customer)) == 1

    async def test_duplicate_email(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """An email can only sign up once."""
        db_session.get = AsyncMock(
            side_effect=_get_by_model(Cart=create_mock_cart(), PricingPlan=create_mock_plan())
        )
        db_session.execute = AsyncMock(return_value=make_result(one=create_mock_customer()))
        service = CheckoutService(db_session, test_settings)

        with pytest.raises(EmailAlreadyRegisteredError):
            await service.checkout("sess-123", name="Asha", email="asha@example.com")

        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()

    async def test_checkout_without_cart(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """Checkout needs a cart."""
        service = CheckoutService(db_session, test_settings)

        with pytest.raises(ResourceNotFoundError):
            await service.checkout("sess-404", name="Asha", email="asha@example.com")


class TestOnboarding:
    """Tests for onboarding."""

    async def test_first_onboarding_starts_period_and_provisions(
        self, db_session: AsyncMock, test_settings: Settings, profile: OnboardingProfile
    ) -> None:
        """First onboarding sets the end date and creates starter projects."""
        customer = create_mock_customer(onboarded_at=None)
        customer.subscription_end_date = None
        db_session.execute = AsyncMock(return_value=make_result(one=customer))
        db_session.get = AsyncMock(return_value=create_mock_plan(max_projects=3))
        service = CheckoutService(db_session, test_settings)

        before = datetime.now(UTC)
        result = await service.complete_onboarding(customer.id, profile)

        assert len(result.projects) == 3
        assert customer.onboarded_at is not None
        assert customer.business_name == "Asha Traders"
        assert customer.subscription_end_date >= before + timedelta(days=30)
        assert customer.subscription_end_date < before + timedelta(days=31)
        db_session.add_all.assert_called_once()

    async def test_yearly_customer_gets_a_year(
        self, db_session: AsyncMock, test_settings: Settings, profile: OnboardingProfile
    ) -> None:
        """Yearly billing runs 365 days."""
        customer = create_mock_customer(billing_cycle=BillingCycle.YEARLY)
        db_session.execute = AsyncMock(return_value=make_result(one=customer))
        db_session.get = AsyncMock(return_value=create_mock_plan())
        service = CheckoutService(db_session, test_settings)

        before = datetime.now(UTC)
        await service.complete_onboarding(customer.id, profile)

        assert customer.subscription_end_date >= before + timedelta(days=365)

    async def test_repeat_onboarding_does_not_reprovision(
        self, db_session: AsyncMock, test_settings: Settings, profile: OnboardingProfile
    ) -> None:
        """A second onboarding only updates the profile."""
        onboarded = datetime.now(UTC) - timedelta(days=3)
        end = datetime.now(UTC) + timedelta(days=27)
        customer = create_mock_customer(onboarded_at=onboarded, subscription_end_date=end)
        existing = create_mock_project(customer_id=customer.id)
        db_session.execute = AsyncMock(
            side_effect=[make_result(one=customer), make_result(rows=[existing])]
        )
        service = CheckoutService(db_session, test_settings)

        result = await service.complete_onboarding(customer.id, profile)

        assert [p.project_id for p in result.projects] == [existing.id]
        assert customer.onboarded_at == onboarded
        assert customer.subscription_end_date == end
        db_session.add_all.assert_not_called()

    async def test_unknown_customer(
        self, db_session: AsyncMock, test_settings: Settings, profile: OnboardingProfile
    ) -> None:
        """Onboarding needs an existing customer."""
        service = CheckoutService(db_session, test_settings)

        with pytest.raises(ResourceNotFoundError):
            await service.complete_onboarding(uuid4(), profile)
