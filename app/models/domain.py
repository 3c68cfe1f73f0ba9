"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from app.models.api import (
    BillingCycle,
    CommissionStatus,
    CommissionType,
    CreditSource,
    LeadStatus,
    LedgerEntryStatus,
    OutboxStatus,
    PartnerType,
    PayoutStatus,
    ProjectStatus,
    RunStatus,
    SubscriptionStatus,
    TaskPriority,
    TaskStatus,
    WalletTransactionType,
)

# ============================================================================
# Catalog
# ============================================================================


@dataclass(frozen=True)
class PlanData:
    """Pricing plan. Prices are minor units; additional credits are priced per 1000."""

    plan_id: str
    name: str
    monthly_price_minor: int
    yearly_price_minor: int
    currency: str
    max_projects: int
    ai_credits: int
    additional_credit_price_minor: int
    features: list[str] = field(default_factory=list)
    visible: bool = True
    recommended: bool = False

    def __post_init__(self) -> None:
        """Validate plan constraints."""
        if self.monthly_price_minor < 0 or self.yearly_price_minor < 0:
            raise ValueError(f"Plan prices cannot be negative: {self.plan_id}")
        if self.max_projects < 1:
            raise ValueError(f"Plan must allow at least one project: {self.plan_id}")
        if self.additional_credit_price_minor < 0:
            raise ValueError(f"Credit price cannot be negative: {self.plan_id}")

    def price_for_cycle(self, cycle: BillingCycle) -> int:
        """Plan price for one billing cycle."""
        if cycle == BillingCycle.YEARLY:
            return self.yearly_price_minor
        return self.monthly_price_minor


@dataclass(frozen=True)
class TemplateData:
    """Project template - read-only blueprint for customer projects."""

    template_id: str
    name: str
    description: str | None
    webhook_url_template: str | None
    ai_credit_cost: int
    default_workflow_count: int
    allowed_plan_ids: list[str] = field(default_factory=list)

    def allows_plan(self, plan_id: str) -> bool:
        """Empty allow-list means every plan may use the template."""
        return not self.allowed_plan_ids or plan_id in self.allowed_plan_ids


# ============================================================================
# Customer, Wallet & Credits
# ============================================================================


@dataclass(frozen=True)
class CustomerData:
    """Customer profile snapshot."""

    customer_id: UUID
    name: str
    email: str
    phone: str | None
    plan_id: str
    billing_cycle: BillingCycle
    subscription_status: SubscriptionStatus
    subscription_end_date: datetime | None
    wallet_balance_minor: int
    ai_credits: int
    currency: str
    onboarded_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class WalletTransactionData:
    """Immutable wallet transaction."""

    transaction_id: UUID
    customer_id: UUID
    type: WalletTransactionType
    amount_minor: int
    balance_after_minor: int
    description: str
    reference_id: str | None
    created_at: datetime


@dataclass(frozen=True)
class CreditLedgerEntryData:
    """Immutable credit ledger entry."""

    entry_id: UUID
    customer_id: UUID
    credits_added: int
    credits_consumed: int
    source: CreditSource
    status: LedgerEntryStatus
    description: str
    cost_minor: int
    review_note: str | None
    created_at: datetime


@dataclass(frozen=True)
class CreditPurchaseResult:
    """Outcome of a credit purchase."""

    entry: CreditLedgerEntryData
    cost_minor: int
    auto_approved: bool
    wallet_balance_minor: int
    ai_credits: int


@dataclass(frozen=True)
class CreditSummary:
    """Aggregated credit position for a customer."""

    available: int
    total_consumed: int
    pending_purchased: int


@dataclass(frozen=True)
class RenewalResult:
    """Outcome of a subscription renewal."""

    cost_minor: int
    wallet_balance_minor: int
    subscription_end_date: datetime


@dataclass(frozen=True)
class TopUpResult:
    """Outcome of a top-up initiation or confirmation."""

    payment_id: str
    status: str
    amount_minor: int
    currency: str
    client_secret: str | None = None
    publishable_key: str | None = None
    simulated: bool = False
    wallet_balance_minor: int | None = None


# ============================================================================
# Projects & Runs
# ============================================================================


@dataclass(frozen=True)
class ProjectData:
    """Customer project snapshot."""

    project_id: UUID
    customer_id: UUID
    name: str
    status: ProjectStatus
    template_id: str | None
    webhook_url: str | None
    ai_credit_cost: int
    workflow_count_limit: int
    run_count: int
    created_at: datetime


@dataclass(frozen=True)
class WorkflowPayload:
    """JSON body posted to a project webhook."""

    project_id: UUID
    user_id: UUID
    workflow: str
    input: str
    timestamp: datetime
    credits: int

    def to_json(self) -> dict[str, Any]:
        """Wire representation (camelCase keys expected by the automation host)."""
        return {
            "projectId": str(self.project_id),
            "userId": str(self.user_id),
            "workflow": self.workflow,
            "input": self.input,
            "timestamp": self.timestamp.isoformat(),
            "credits": self.credits,
        }


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of dispatching a workflow (real or simulated)."""

    status: RunStatus
    response_summary: str
    simulated: bool


@dataclass(frozen=True)
class WorkflowRunData:
    """Immutable workflow run record."""

    run_id: UUID
    project_id: UUID | None
    customer_id: UUID
    template_name: str
    workflow: str
    status: RunStatus
    inputs: str
    response_summary: str
    credits_deducted: int
    simulated: bool
    created_at: datetime


# ============================================================================
# Tasks
# ============================================================================


@dataclass(frozen=True)
class TaskData:
    """Task snapshot."""

    task_id: UUID
    customer_id: UUID
    project_id: UUID | None
    title: str
    description: str | None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime | None
    dependencies: list[UUID]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TaskHistoryData:
    """One status change of a task."""

    task_id: UUID
    field: str
    old_value: str | None
    new_value: str | None
    changed_at: datetime


@dataclass(frozen=True)
class NewTask:
    """Task creation intent."""

    title: str
    description: str | None = None
    project_id: UUID | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None
    dependencies: tuple[UUID, ...] = ()

    def __post_init__(self) -> None:
        """Validate task creation."""
        if not self.title.strip():
            raise ValueError("Task title cannot be empty")


@dataclass(frozen=True)
class TaskUpdate:
    """
    Partial task update.

    Only names listed in fields_set are applied, so a field can be cleared
    by setting it to None explicitly.
    """

    fields_set: frozenset[str]
    title: str | None = None
    description: str | None = None
    project_id: UUID | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None
    dependencies: tuple[UUID, ...] | None = None

    def __post_init__(self) -> None:
        """Validate update fields."""
        if "title" in self.fields_set and (self.title is None or not self.title.strip()):
            raise ValueError("Task title cannot be empty")
        if "status" in self.fields_set and self.status is None:
            raise ValueError("Task status cannot be cleared")
        if "priority" in self.fields_set and self.priority is None:
            raise ValueError("Task priority cannot be cleared")


# ============================================================================
# Checkout
# ============================================================================


@dataclass(frozen=True)
class CartData:
    """Cart contents with totals."""

    session_id: str
    plan_id: str
    plan_name: str
    billing_cycle: BillingCycle
    subtotal_minor: int
    tax_minor: int
    total_minor: int
    currency: str


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of checkout."""

    customer: CustomerData
    total_paid_minor: int
    commission_applied: bool


@dataclass(frozen=True)
class OnboardingProfile:
    """Profile fields captured at onboarding."""

    phone: str
    address: str
    city: str
    pin: str
    state: str
    business_name: str
    whatsapp: str | None = None
    industry: str | None = None
    gst_no: str | None = None


@dataclass(frozen=True)
class OnboardingResult:
    """Outcome of onboarding."""

    customer: CustomerData
    projects: list[ProjectData]


# ============================================================================
# Partners & Commissions
# ============================================================================


@dataclass(frozen=True)
class PartnerData:
    """Partner snapshot with balances."""

    partner_id: UUID
    name: str
    email: str
    type: PartnerType
    code: str
    clicks: int
    signups: int
    wallet_balance_minor: int
    locked_balance_minor: int
    total_earned_minor: int

    @property
    def referral_link(self) -> str:
        """Relative referral link shared by the partner."""
        return f"/?ref={self.code}"


@dataclass(frozen=True)
class LeadInput:
    """Lead registration intent."""

    name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        """Validate lead fields."""
        if not self.name.strip():
            raise ValueError("Lead name cannot be empty")

    def to_json(self) -> dict[str, Any]:
        """Serialized form for outbound webhooks."""
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class LeadData:
    """Partner lead snapshot."""

    lead_id: UUID
    partner_id: UUID
    name: str
    email: str | None
    phone: str | None
    company: str | None
    status: LeadStatus
    created_at: datetime


@dataclass(frozen=True)
class LeadImportResult:
    """Outcome of a bulk lead import."""

    imported: list[LeadData]
    skipped_rows: int
    outbox_event_id: UUID | None


@dataclass(frozen=True)
class ProofOfWork:
    """Partner-submitted evidence for a commission."""

    description: str
    checklist: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate proof of work."""
        if not self.description.strip():
            raise ValueError("Proof of work description cannot be empty")


@dataclass(frozen=True)
class CommissionData:
    """Commission log snapshot."""

    commission_id: UUID
    partner_id: UUID
    lead_id: UUID | None
    customer_name: str
    plan_name: str | None
    sale_amount_minor: int
    rate_bps: int
    amount_minor: int
    type: CommissionType
    status: CommissionStatus
    proof_description: str | None
    proof_checklist: list[str]
    admin_feedback: str | None
    created_at: datetime


@dataclass(frozen=True)
class PayoutData:
    """Payout request snapshot."""

    payout_id: UUID
    partner_id: UUID
    amount_minor: int
    status: PayoutStatus
    admin_note: str | None
    created_at: datetime
    processed_at: datetime | None


# ============================================================================
# Content store & Outbox
# ============================================================================


@dataclass(frozen=True)
class SiteDocument:
    """Versioned site content document."""

    key: str
    schema_version: int
    revision: int
    content: dict[str, Any]
    updated_at: datetime | None


@dataclass(frozen=True)
class OutboxEventData:
    """Outbox event delivery state."""

    event_id: UUID
    event_type: str
    aggregate_id: str
    target_url: str
    status: OutboxStatus
    attempts: int
    next_attempt_at: datetime | None
    last_error: str | None
    delivered_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class OutboxDeliveryStats:
    """Counts from one outbox delivery pass."""

    delivered: int
    retried: int
    failed: int
