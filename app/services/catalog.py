"""
Catalog Service - Pricing plans and project templates.

NO DICTIONARIES - All operations use strongly typed domain models.

Customers read the catalog; admins upsert it. seed_catalog installs the
launch catalog on an empty database.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import Partner, PricingPlan, ProjectTemplate
from app.exceptions import ResourceNotFoundError
from app.models.api import PartnerType
from app.models.domain import PlanData, TemplateData
from app.services.ledger import plan_to_domain

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _inr(amount: int) -> int:
    """Whole rupees to paise."""
    return amount * 100


# ============================================================================
# Launch catalog
# ============================================================================

DEFAULT_PLANS: tuple[PlanData, ...] = (
    PlanData(
        plan_id="free", name="Free",
        monthly_price_minor=0, yearly_price_minor=0, currency="INR",
        max_projects=1, ai_credits=0, additional_credit_price_minor=_inr(5000),
        features=["1 Basic Workflow", "Community Support", "No AI Credits"],
    ),
    PlanData(
        plan_id="starter", name="Starter",
        monthly_price_minor=_inr(2999), yearly_price_minor=_inr(29990), currency="INR",
        max_projects=1, ai_credits=100, additional_credit_price_minor=_inr(5000),
        features=["3 Workflows", "Email Support", "100 AI Credits", "1 Project"],
    ),
    PlanData(
        plan_id="creator", name="Creator",
        monthly_price_minor=_inr(5999), yearly_price_minor=_inr(59990), currency="INR",
        max_projects=2, ai_credits=300, additional_credit_price_minor=_inr(5000),
        features=["5 Workflows", "Priority Email", "300 AI Credits", "2 Projects"],
    ),
    PlanData(
        plan_id="pro", name="Pro",
        monthly_price_minor=_inr(9999), yearly_price_minor=_inr(99990), currency="INR",
        max_projects=3, ai_credits=500, additional_credit_price_minor=_inr(5000),
        features=["10 Workflows", "WhatsApp Support", "500 AI Credits", "3 Projects"],
        recommended=True,
    ),
    PlanData(
        plan_id="scale", name="Scale",
        monthly_price_minor=_inr(19999), yearly_price_minor=_inr(199990), currency="INR",
        max_projects=5, ai_credits=1000, additional_credit_price_minor=_inr(4500),
        features=["Unlimited Workflows", "Dedicated Manager", "1000 AI Credits", "5 Projects"],
    ),
    PlanData(
        plan_id="business", name="Business",
        monthly_price_minor=_inr(39999), yearly_price_minor=_inr(399990), currency="INR",
        max_projects=10, ai_credits=2500, additional_credit_price_minor=_inr(4000),
        features=["Custom AI Training", "SLA Support", "2500 AI Credits", "10 Projects"],
    ),
    PlanData(
        plan_id="enterprise", name="Enterprise",
        monthly_price_minor=_inr(99999), yearly_price_minor=_inr(999990), currency="INR",
        max_projects=999, ai_credits=10000, additional_credit_price_minor=_inr(3000),
        features=[
            "White Labeling", "24/7 Phone Support", "Unlimited AI Credits", "Unlimited Projects",
        ],
    ),
)

DEFAULT_TEMPLATES: tuple[TemplateData, ...] = (
    TemplateData(
        template_id="marketing-auto",
        name="Social Media Autopilot",
        description="Generates and posts content to LinkedIn & Twitter.",
        webhook_url_template="https://n8n.inflow.co.in/webhook/marketing-v1",
        ai_credit_cost=15,
        default_workflow_count=100,
    ),
    TemplateData(
        template_id="sales-bot",
        name="WhatsApp Lead Qualifier",
        description="Responds to incoming leads and scores them.",
        webhook_url_template="https://n8n.inflow.co.in/webhook/sales-v1",
        ai_credit_cost=10,
        default_workflow_count=500,
    ),
    TemplateData(
        template_id="invoice-gen",
        name="Invoice Generator",
        description="Creates PDF invoices from form data and emails them.",
        webhook_url_template="https://n8n.inflow.co.in/webhook/finance-v1",
        ai_credit_cost=12,
        default_workflow_count=50,
        allowed_plan_ids=["pro", "business", "enterprise"],
    ),
)

# Launch channel partner
DEFAULT_PARTNER_NAME = "Rahul Sharma"
DEFAULT_PARTNER_EMAIL = "rahul@example.com"
DEFAULT_PARTNER_CODE = "RAHUL20"


def template_to_domain(template: ProjectTemplate) -> TemplateData:
    """Convert ORM template to domain model."""
    return TemplateData(
        template_id=template.id,
        name=template.name,
        description=template.description,
        webhook_url_template=template.webhook_url_template,
        ai_credit_cost=template.ai_credit_cost,
        default_workflow_count=template.default_workflow_count,
        allowed_plan_ids=list(template.allowed_plan_ids or []),
    )


class CatalogService:
    """Pricing plan and project template catalog."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    async def list_plans(self, include_hidden: bool = False) -> list[PlanData]:
        """List plans in display order."""
        stmt = select(PricingPlan).order_by(PricingPlan.sort_order.asc(), PricingPlan.id.asc())
        if not include_hidden:
            stmt = stmt.where(PricingPlan.visible.is_(True))
        result = await self.session.execute(stmt)
        return [plan_to_domain(p) for p in result.scalars().all()]

    async def get_plan(self, plan_id: str) -> PlanData:
        """Get one plan."""
        plan = await self.session.get(PricingPlan, plan_id)
        if plan is None:
            raise ResourceNotFoundError("PricingPlan", plan_id)
        return plan_to_domain(plan)

    async def list_templates(self, plan_id: str | None = None) -> list[TemplateData]:
        """List templates, optionally only those a plan may use."""
        result = await self.session.execute(select(ProjectTemplate).order_by(ProjectTemplate.id))
        templates = [template_to_domain(t) for t in result.scalars().all()]
        if plan_id is not None:
            templates = [t for t in templates if t.allows_plan(plan_id)]
        return templates

    async def upsert_plan(self, plan: PlanData, sort_order: int | None = None) -> PlanData:
        """Create or replace a pricing plan."""
        row = await self.session.get(PricingPlan, plan.plan_id)
        now = _utc_now()
        if row is None:
            row = PricingPlan(id=plan.plan_id, created_at=now, sort_order=sort_order or 0)
            self.session.add(row)
        elif sort_order is not None:
            row.sort_order = sort_order

        row.name = plan.name
        row.monthly_price_minor = plan.monthly_price_minor
        row.yearly_price_minor = plan.yearly_price_minor
        row.currency = plan.currency
        row.max_projects = plan.max_projects
        row.ai_credits = plan.ai_credits
        row.additional_credit_price_minor = plan.additional_credit_price_minor
        row.features = list(plan.features)
        row.visible = plan.visible
        row.recommended = plan.recommended
        row.updated_at = now

        await self.session.commit()
        logger.info("plan_upserted", plan_id=plan.plan_id)
        return plan_to_domain(row)

    async def upsert_template(self, template: TemplateData) -> TemplateData:
        """Create or replace a project template."""
        row = await self.session.get(ProjectTemplate, template.template_id)
        now = _utc_now()
        if row is None:
            row = ProjectTemplate(id=template.template_id, created_at=now)
            self.session.add(row)

        row.name = template.name
        row.description = template.description
        row.webhook_url_template = template.webhook_url_template
        row.ai_credit_cost = template.ai_credit_cost
        row.default_workflow_count = template.default_workflow_count
        row.allowed_plan_ids = list(template.allowed_plan_ids)
        row.updated_at = now

        await self.session.commit()
        logger.info("template_upserted", template_id=template.template_id)
        return template_to_domain(row)

    async def delete_template(self, template_id: str) -> None:
        """Remove a template. Projects created from it keep working."""
        row = await self.session.get(ProjectTemplate, template_id)
        if row is None:
            raise ResourceNotFoundError("ProjectTemplate", template_id)
        await self.session.delete(row)
        await self.session.commit()
        logger.info("template_deleted", template_id=template_id)

    async def seed_catalog(self) -> bool:
        """
        Install launch plans, templates and the launch partner.

        Returns False without writing anything when plans already exist.
        """
        result = await self.session.execute(select(func.count(PricingPlan.id)))
        if int(result.scalar_one()) > 0:
            logger.info("catalog_seed_skipped")
            return False

        now = _utc_now()
        for order, plan in enumerate(DEFAULT_PLANS):
            self.session.add(
                PricingPlan(
                    id=plan.plan_id,
                    name=plan.name,
                    monthly_price_minor=plan.monthly_price_minor,
                    yearly_price_minor=plan.yearly_price_minor,
                    currency=plan.currency,
                    max_projects=plan.max_projects,
                    ai_credits=plan.ai_credits,
                    additional_credit_price_minor=plan.additional_credit_price_minor,
                    features=list(plan.features),
                    visible=plan.visible,
                    recommended=plan.recommended,
                    sort_order=order,
                    created_at=now,
                    updated_at=now,
                )
            )
        for template in DEFAULT_TEMPLATES:
            self.session.add(
                ProjectTemplate(
                    id=template.template_id,
                    name=template.name,
                    description=template.description,
                    webhook_url_template=template.webhook_url_template,
                    ai_credit_cost=template.ai_credit_cost,
                    default_workflow_count=template.default_workflow_count,
                    allowed_plan_ids=list(template.allowed_plan_ids),
                    created_at=now,
                    updated_at=now,
                )
            )
        self.session.add(
            Partner(
                id=uuid4(),
                name=DEFAULT_PARTNER_NAME,
                email=DEFAULT_PARTNER_EMAIL,
                type=PartnerType.CHANNEL.value,
                code=DEFAULT_PARTNER_CODE,
                clicks=0,
                signups=0,
                wallet_balance_minor=0,
                locked_balance_minor=0,
                total_earned_minor=0,
                created_at=now,
                updated_at=now,
            )
        )
        await self.session.commit()

        logger.info(
            "catalog_seeded",
            plans=len(DEFAULT_PLANS),
            templates=len(DEFAULT_TEMPLATES),
            partner_code=DEFAULT_PARTNER_CODE,
        )
        return True
