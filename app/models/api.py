"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Customer subscription status."""

    ACTIVE = "active"
    EXPIRED = "expired"


class BillingCycle(str, Enum):
    """Plan billing cycle."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class WalletTransactionType(str, Enum):
    """Wallet transaction direction."""

    CREDIT = "credit"
    DEBIT = "debit"


class CreditSource(str, Enum):
    """Origin of a credit ledger entry."""

    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"
    REFUND = "refund"


class LedgerEntryStatus(str, Enum):
    """Review status of a credit ledger entry. Only approved entries move credits."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProjectStatus(str, Enum):
    """Project status."""

    ACTIVE = "active"
    PAUSED = "paused"


class RunStatus(str, Enum):
    """Workflow run outcome."""

    SUCCESS = "success"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Task status."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"


class TaskPriority(str, Enum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PartnerType(str, Enum):
    """Partner tier. Channel partners earn the higher commission rate."""

    REFERRAL = "Referral"
    CHANNEL = "Channel"


class CommissionStatus(str, Enum):
    """Commission log lifecycle."""

    LOCKED = "Locked"
    UNDER_REVIEW = "Under Review"
    CHANGES_REQUESTED = "Changes Requested"
    PAYABLE = "Payable"
    PAID = "Paid"
    VOID = "Void"


class CommissionType(str, Enum):
    """Commission type: signup path is recurring, lead conversion is one-time."""

    ONE_TIME = "One-time"
    RECURRING = "Recurring"


class LeadStatus(str, Enum):
    """Partner lead pipeline status."""

    NEW = "New"
    CONTACTED = "Contacted"
    IN_DISCUSSION = "In-Discussion"
    CONVERTED = "Converted"
    LOST = "Lost"


class PayoutStatus(str, Enum):
    """Partner payout request status."""

    PENDING = "Pending"
    PROCESSED = "Processed"
    REJECTED = "Rejected"


class OutboxStatus(str, Enum):
    """Outbox event delivery status."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class _Response(BaseModel):
    """Response base - built from domain dataclasses."""

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Customer & Wallet Models
# ============================================================================


class CustomerResponse(_Response):
    """Customer profile and balances."""

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


class TopUpRequest(BaseModel):
    """POST /v1/customers/{id}/wallet/top-ups request body."""

    amount_minor: int = Field(..., gt=0, description="Top-up amount in minor units")
    return_url: str | None = Field(None, max_length=2048)


class TopUpResponse(BaseModel):
    """Top-up initiation result."""

    payment_id: str
    status: str
    amount_minor: int
    currency: str
    client_secret: str | None = None
    publishable_key: str | None = None
    simulated: bool = False
    wallet_balance_minor: int | None = None


class WalletTransactionResponse(_Response):
    """One wallet transaction."""

    transaction_id: UUID
    type: WalletTransactionType
    amount_minor: int
    balance_after_minor: int
    description: str
    reference_id: str | None
    created_at: datetime


class WalletTransactionListResponse(BaseModel):
    """Wallet transaction history."""

    transactions: list[WalletTransactionResponse]
    total_count: int


# ============================================================================
# Credit Models
# ============================================================================


class CreditPurchaseRequest(BaseModel):
    """POST /v1/customers/{id}/credits/purchases request body."""

    quantity: int = Field(..., gt=0, le=10_000_000, description="Number of AI credits")


class CreditLedgerEntryResponse(_Response):
    """One credit ledger entry."""

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


class CreditPurchaseResponse(_Response):
    """Result of a credit purchase."""

    entry: CreditLedgerEntryResponse
    cost_minor: int
    auto_approved: bool
    wallet_balance_minor: int
    ai_credits: int


class CreditLedgerListResponse(BaseModel):
    """Credit ledger history."""

    entries: list[CreditLedgerEntryResponse]
    total_count: int


class CreditSummaryResponse(_Response):
    """Aggregated credit position."""

    available: int
    total_consumed: int
    pending_purchased: int


class ReviewRequest(BaseModel):
    """Admin review body with an optional note."""

    note: str | None = Field(None, max_length=2000)


class RenewalResponse(_Response):
    """Subscription renewal result."""

    cost_minor: int
    wallet_balance_minor: int
    subscription_end_date: datetime


# ============================================================================
# Project & Run Models
# ============================================================================


class CreateProjectRequest(BaseModel):
    """POST /v1/customers/{id}/projects request body."""

    template_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Project names cannot be blank."""
        if not v.strip():
            raise ValueError("Project name cannot be blank")
        return v.strip()


class UpdateProjectRequest(BaseModel):
    """PATCH /v1/customers/{id}/projects/{project_id} request body."""

    status: ProjectStatus


class ProjectResponse(_Response):
    """Project details."""

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


class RunWorkflowRequest(BaseModel):
    """POST /v1/customers/{id}/projects/{project_id}/runs request body."""

    workflow: str = Field(..., min_length=1, max_length=255)
    input: str = Field("", max_length=20_000)


class WorkflowRunResponse(_Response):
    """One workflow run."""

    run_id: UUID
    project_id: UUID | None
    template_name: str
    workflow: str
    status: RunStatus
    inputs: str
    response_summary: str
    credits_deducted: int
    simulated: bool
    created_at: datetime


class WorkflowRunListResponse(BaseModel):
    """Workflow run history."""

    runs: list[WorkflowRunResponse]
    total_count: int


# ============================================================================
# Task Models
# ============================================================================


class CreateTaskRequest(BaseModel):
    """POST /v1/customers/{id}/tasks request body."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    project_id: UUID | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None
    dependencies: list[UUID] = Field(default_factory=list)


class UpdateTaskRequest(BaseModel):
    """PATCH /v1/customers/{id}/tasks/{task_id} request body. Omitted fields are unchanged."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    project_id: UUID | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None
    dependencies: list[UUID] | None = None


class TaskResponse(_Response):
    """Task details."""

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


class TaskHistoryResponse(_Response):
    """One task history item."""

    field: str
    old_value: str | None
    new_value: str | None
    changed_at: datetime


# ============================================================================
# Checkout & Onboarding Models
# ============================================================================


class CartRequest(BaseModel):
    """PUT /v1/carts/{session_id} request body."""

    plan_id: str = Field(..., min_length=1, max_length=100)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class CartResponse(_Response):
    """Cart contents and totals."""

    session_id: str
    plan_id: str
    plan_name: str
    billing_cycle: BillingCycle
    subtotal_minor: int
    tax_minor: int
    total_minor: int
    currency: str


class CheckoutRequest(BaseModel):
    """POST /v1/checkout request body."""

    session_id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone: str | None = Field(None, max_length=32)
    payment_reference: str | None = Field(None, max_length=255)
    referral_code: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Minimal email shape check."""
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v.strip().lower()


class CheckoutResponse(_Response):
    """Checkout result."""

    customer: CustomerResponse
    total_paid_minor: int
    commission_applied: bool


class OnboardingRequest(BaseModel):
    """POST /v1/customers/{id}/onboarding request body."""

    phone: str = Field(..., min_length=10, max_length=15)
    whatsapp: str | None = Field(None, max_length=15)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    pin: str = Field(..., min_length=6, max_length=6)
    state: str = Field(..., min_length=1, max_length=100)
    business_name: str = Field(..., min_length=1, max_length=255)
    industry: str | None = Field(None, max_length=100)
    gst_no: str | None = Field(None, max_length=20)

    @field_validator("phone", "whatsapp")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Phone numbers are digits with an optional leading +."""
        if v is None:
            return v
        if not v.lstrip("+").isdigit():
            raise ValueError("Phone number must contain only digits")
        return v

    @field_validator("pin")
    @classmethod
    def validate_pin(cls, v: str) -> str:
        """PIN codes are six digits."""
        if not v.isdigit():
            raise ValueError("PIN code must be 6 digits")
        return v


class OnboardingResponse(_Response):
    """Onboarding result."""

    customer: CustomerResponse
    projects: list[ProjectResponse]


# ============================================================================
# Partner Models
# ============================================================================


class CreatePartnerRequest(BaseModel):
    """POST /admin/partners request body."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    type: PartnerType = PartnerType.REFERRAL
    code: str | None = Field(None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")


class PartnerResponse(_Response):
    """Partner details and balances."""

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
    referral_link: str


class LeadRequest(BaseModel):
    """POST /v1/partners/{id}/leads request body."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)
    company: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=2000)


class LeadImportRequest(BaseModel):
    """POST /v1/partners/{id}/leads/import request body (CSV with a header row)."""

    csv_text: str = Field(..., min_length=1, max_length=1_000_000)


class LeadStatusRequest(BaseModel):
    """PATCH /v1/partners/{id}/leads/{lead_id} request body."""

    status: LeadStatus


class LeadConversionRequest(BaseModel):
    """POST /v1/partners/{id}/leads/{lead_id}/conversion request body."""

    plan_name: str = Field(..., min_length=1, max_length=100)
    amount_minor: int = Field(..., gt=0)


class LeadResponse(_Response):
    """Partner lead."""

    lead_id: UUID
    partner_id: UUID
    name: str
    email: str | None
    phone: str | None
    company: str | None
    status: LeadStatus
    created_at: datetime


class LeadImportResponse(_Response):
    """CSV import result."""

    imported: list[LeadResponse]
    skipped_rows: int
    outbox_event_id: UUID | None


class CommissionResponse(_Response):
    """Commission log."""

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


class ProofOfWorkRequest(BaseModel):
    """POST /v1/partners/{id}/commissions/{commission_id}/proof request body."""

    description: str = Field(..., min_length=1, max_length=5000)
    checklist: list[str] = Field(default_factory=list, max_length=50)


class RejectWorkRequest(BaseModel):
    """POST /admin/commissions/{id}/reject request body."""

    feedback: str = Field(..., min_length=1, max_length=2000)


class PayoutRequestBody(BaseModel):
    """POST /v1/partners/{id}/payouts request body."""

    amount_minor: int = Field(..., gt=0)


class PayoutResponse(_Response):
    """Partner payout request."""

    payout_id: UUID
    partner_id: UUID
    amount_minor: int
    status: PayoutStatus
    admin_note: str | None
    created_at: datetime
    processed_at: datetime | None


# ============================================================================
# Catalog & Content Models
# ============================================================================


class PlanRequest(BaseModel):
    """PUT /admin/plans/{plan_id} request body."""

    name: str = Field(..., min_length=1, max_length=100)
    monthly_price_minor: int = Field(..., ge=0)
    yearly_price_minor: int = Field(..., ge=0)
    max_projects: int = Field(..., ge=1)
    ai_credits: int = Field(..., ge=0)
    additional_credit_price_minor: int = Field(..., ge=0)
    features: list[str] = Field(default_factory=list)
    visible: bool = True
    recommended: bool = False


class PlanResponse(_Response):
    """Pricing plan."""

    plan_id: str
    name: str
    monthly_price_minor: int
    yearly_price_minor: int
    currency: str
    max_projects: int
    ai_credits: int
    additional_credit_price_minor: int
    features: list[str]
    visible: bool
    recommended: bool


class TemplateRequest(BaseModel):
    """PUT /admin/templates/{template_id} request body."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    webhook_url_template: str | None = Field(None, max_length=2048)
    ai_credit_cost: int = Field(..., ge=0)
    default_workflow_count: int = Field(..., ge=1)
    allowed_plan_ids: list[str] = Field(default_factory=list)


class TemplateResponse(_Response):
    """Project template."""

    template_id: str
    name: str
    description: str | None
    webhook_url_template: str | None
    ai_credit_cost: int
    default_workflow_count: int
    allowed_plan_ids: list[str]


class SiteConfigResponse(_Response):
    """Site content document."""

    key: str
    schema_version: int
    revision: int
    content: dict[str, Any]
    updated_at: datetime | None


class SiteConfigUpdateRequest(BaseModel):
    """PUT /admin/site-config request body - whole-document replace."""

    content: dict[str, Any]
    expected_revision: int = Field(..., ge=0)


class OutboxEventResponse(_Response):
    """Outbox event delivery status."""

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


class OutboxDeliveryResponse(BaseModel):
    """Result of an outbox delivery pass."""

    delivered: int
    retried: int
    failed: int


# ============================================================================
# Health & Error Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: datetime


class ErrorDetail(BaseModel):
    """Error detail for API responses."""

    detail: str
    error_code: str | None = None


class ValidationErrorDetail(BaseModel):
    """Validation error detail."""

    loc: list[str | int]
    msg: str
    type: str


class ValidationErrorResponse(BaseModel):
    """Validation error response."""

    detail: list[ValidationErrorDetail]
