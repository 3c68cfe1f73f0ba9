"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
JSONB is used only for free-form content (site documents, outbox payloads).
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


# ============================================================================
# Catalog
# ============================================================================


class PricingPlan(Base):
    """
    ORM model for pricing_plans table.

    Admin-managed; customers only read plans.
    """

    __tablename__ = "pricing_plans"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    monthly_price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    yearly_price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    max_projects: Mapped[int] = mapped_column(Integer, nullable=False)
    ai_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # Price per 1000 additional credits
    additional_credit_price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    features: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    recommended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("monthly_price_minor >= 0", name="ck_plan_monthly_non_negative"),
        CheckConstraint("yearly_price_minor >= 0", name="ck_plan_yearly_non_negative"),
        CheckConstraint("max_projects >= 1", name="ck_plan_max_projects_positive"),
        CheckConstraint("additional_credit_price_minor >= 0", name="ck_plan_credit_price"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<PricingPlan(id={self.id}, monthly={self.monthly_price_minor})>"


class ProjectTemplate(Base):
    """ORM model for project_templates table."""

    __tablename__ = "project_templates"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_url_template: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    ai_credit_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    default_workflow_count: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    # Empty list means every plan may use the template
    allowed_plan_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("ai_credit_cost >= 0", name="ck_template_cost_non_negative"),
        CheckConstraint("default_workflow_count >= 1", name="ck_template_count_positive"),
    )


# ============================================================================
# Customers
# ============================================================================


class Customer(Base):
    """
    ORM model for customers table.

    Holds profile, subscription and both balances (wallet money and AI credits).
    Rows are never hard-deleted.
    """

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity & profile
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    whatsapp: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pin: Mapped[str | None] = mapped_column(String(10), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gst_no: Mapped[str | None] = mapped_column(String(20), nullable=True)
    referral_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Subscription
    plan_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("pricing_plans.id"), nullable=False
    )
    billing_cycle: Mapped[str] = mapped_column(String(10), nullable=False, default="monthly")
    subscription_status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    subscription_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Balances
    wallet_balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    ai_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    onboarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("wallet_balance_minor >= 0", name="ck_customer_wallet_non_negative"),
        CheckConstraint("ai_credits >= 0", name="ck_customer_credits_non_negative"),
        CheckConstraint("billing_cycle IN ('monthly', 'yearly')", name="ck_customer_cycle"),
        CheckConstraint(
            "subscription_status IN ('active', 'expired')", name="ck_customer_subscription"
        ),
        Index("idx_customers_plan", "plan_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Customer(id={self.id}, plan={self.plan_id}, "
            f"wallet={self.wallet_balance_minor}, credits={self.ai_credits})>"
        )


class WalletTransaction(Base):
    """
    ORM model for wallet_transactions table.

    Immutable, append-only record of wallet movements.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_before_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    # Payment gateway reference (top-ups)
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_wallet_tx_amount_positive"),
        CheckConstraint("type IN ('credit', 'debit')", name="ck_wallet_tx_type"),
        UniqueConstraint("customer_id", "reference_id", name="uq_wallet_tx_reference"),
        Index("idx_wallet_tx_created_at", "created_at"),
    )


class CreditLedgerEntry(Base):
    """
    ORM model for credit_ledger table.

    Append-only record of AI credit changes. Only approved entries move
    Customer.ai_credits; status of a purchase entry changes once on review.
    """

    __tablename__ = "credit_ledger"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True
    )
    credits_added: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    credits_consumed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    cost_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Links
    project_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    workflow_run_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("workflow_runs.id"), nullable=True, unique=True
    )
    wallet_transaction_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("wallet_transactions.id"), nullable=True
    )

    # Review
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_added >= 0", name="ck_ledger_added_non_negative"),
        CheckConstraint("credits_consumed >= 0", name="ck_ledger_consumed_non_negative"),
        CheckConstraint(
            "source IN ('purchase', 'usage', 'bonus', 'refund')", name="ck_ledger_source"
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_ledger_status"
        ),
        CheckConstraint(
            "source != 'usage' OR workflow_run_id IS NOT NULL", name="ck_ledger_usage_has_run"
        ),
        Index(
            "idx_ledger_pending",
            "status",
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_ledger_created_at", "created_at"),
    )


# ============================================================================
# Projects, Runs & Tasks
# ============================================================================


class Project(Base):
    """ORM model for projects table."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="active")
    template_id: Mapped[str | None] = mapped_column(
        String(100), ForeignKey("project_templates.id"), nullable=True
    )
    webhook_url: Mapped[str | None] = mapped_column(String(4096), nullable=True)
    ai_credit_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    workflow_count_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("status IN ('active', 'paused')", name="ck_project_status"),
        CheckConstraint("ai_credit_cost >= 0", name="ck_project_cost_non_negative"),
        CheckConstraint("run_count >= 0", name="ck_project_run_count_non_negative"),
        CheckConstraint("run_count <= workflow_count_limit", name="ck_project_run_limit"),
    )


class WorkflowRun(Base):
    """
    ORM model for workflow_runs table.

    Immutable record of one execution attempt.
    """

    __tablename__ = "workflow_runs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True
    )
    # Runs outlive their project; usage ledger entries point at them
    project_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    workflow: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    inputs: Mapped[str] = mapped_column(Text, nullable=False, default="")
    response_summary: Mapped[str] = mapped_column(Text, nullable=False)
    credits_deducted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    simulated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed')", name="ck_run_status"),
        CheckConstraint("credits_deducted >= 0", name="ck_run_credits_non_negative"),
        Index("idx_runs_project_created", "project_id", "created_at"),
    )


class Task(Base):
    """ORM model for tasks table."""

    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True
    )
    project_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="todo")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dependencies: Mapped[list[UUID]] = mapped_column(
        ARRAY(PG_UUID(as_uuid=True)), nullable=False, default=list
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("status IN ('todo', 'in-progress', 'done')", name="ck_task_status"),
        CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_task_priority"),
    )


class TaskHistoryItem(Base):
    """ORM model for task_history table (append-only)."""

    __tablename__ = "task_history"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    new_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_task_history_task", "task_id", "changed_at"),)


# ============================================================================
# Partners & Commissions
# ============================================================================


class Partner(Base):
    """
    ORM model for partners table.

    Money moves locked -> wallet on approval and wallet -> payout on request,
    so wallet + locked never exceeds total_earned.
    """

    __tablename__ = "partners"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="Referral")
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    clicks: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    signups: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    wallet_balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    locked_balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_earned_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("type IN ('Referral', 'Channel')", name="ck_partner_type"),
        CheckConstraint("wallet_balance_minor >= 0", name="ck_partner_wallet_non_negative"),
        CheckConstraint("locked_balance_minor >= 0", name="ck_partner_locked_non_negative"),
        CheckConstraint(
            "wallet_balance_minor + locked_balance_minor <= total_earned_minor",
            name="ck_partner_balances_reconcile",
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Partner(code={self.code}, wallet={self.wallet_balance_minor}, "
            f"locked={self.locked_balance_minor}, earned={self.total_earned_minor})>"
        )


class PartnerLead(Base):
    """ORM model for partner_leads table."""

    __tablename__ = "partner_leads"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    partner_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="New")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('New', 'Contacted', 'In-Discussion', 'Converted', 'Lost')",
            name="ck_lead_status",
        ),
    )


class CommissionLog(Base):
    """
    ORM model for commission_logs table.

    amount_minor is fixed at creation; only status, proof and feedback change.
    """

    __tablename__ = "commission_logs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    partner_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False, index=True
    )
    lead_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("partner_leads.id"), nullable=True, unique=True
    )
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sale_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rate_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="Locked")

    proof_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    proof_checklist: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )
    admin_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_commission_amount_non_negative"),
        CheckConstraint("type IN ('One-time', 'Recurring')", name="ck_commission_type"),
        CheckConstraint(
            "status IN ('Locked', 'Under Review', 'Changes Requested', 'Payable', 'Paid', 'Void')",
            name="ck_commission_status",
        ),
        Index("idx_commission_partner_status", "partner_id", "status"),
    )


class PayoutRequest(Base):
    """ORM model for payout_requests table."""

    __tablename__ = "payout_requests"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    partner_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False, index=True
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_payout_amount_positive"),
        CheckConstraint(
            "status IN ('Pending', 'Processed', 'Rejected')", name="ck_payout_status"
        ),
    )


# ============================================================================
# Checkout, Content & Outbox
# ============================================================================


class Cart(Base):
    """ORM model for carts table - one plan per anonymous browser session."""

    __tablename__ = "carts"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    plan_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("pricing_plans.id"), nullable=False
    )
    billing_cycle: Mapped[str] = mapped_column(String(10), nullable=False, default="monthly")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class SiteDocumentRow(Base):
    """
    ORM model for site_documents table.

    Marketing/CMS content, kept apart from transactional tables.
    revision is bumped on every write for optimistic concurrency.
    """

    __tablename__ = "site_documents"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    content: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class OutboxEvent(Base):
    """
    ORM model for outbox_events table.

    Written in the same transaction as the business change, delivered later.
    """

    __tablename__ = "outbox_events"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=utc_now
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'delivered', 'failed')", name="ck_outbox_status"
        ),
        Index(
            "idx_outbox_due",
            "next_attempt_at",
            postgresql_where=text("status = 'pending'"),
        ),
    )
