"""initial portal schema

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
        )
    return columns


def upgrade() -> None:
    """Create the portal schema."""

    # ========================================================================
    # Catalog
    # ========================================================================
    op.create_table(
        'pricing_plans',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('monthly_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('yearly_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('max_projects', sa.Integer(), nullable=False),
        sa.Column('ai_credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('additional_credit_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('features', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('visible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('recommended', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('monthly_price_minor >= 0', name='ck_plan_monthly_non_negative'),
        sa.CheckConstraint('yearly_price_minor >= 0', name='ck_plan_yearly_non_negative'),
        sa.CheckConstraint('max_projects >= 1', name='ck_plan_max_projects_positive'),
        sa.CheckConstraint('additional_credit_price_minor >= 0', name='ck_plan_credit_price'),
    )

    op.create_table(
        'project_templates',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('webhook_url_template', sa.String(2048), nullable=True),
        sa.Column('ai_credit_cost', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('default_workflow_count', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('allowed_plan_ids', ARRAY(sa.String()), nullable=False, server_default='{}'),
        *_timestamps(),
        sa.CheckConstraint('ai_credit_cost >= 0', name='ck_template_cost_non_negative'),
        sa.CheckConstraint('default_workflow_count >= 1', name='ck_template_count_positive'),
    )

    # ========================================================================
    # Customers & wallet
    # ========================================================================
    op.create_table(
        'customers',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('whatsapp', sa.String(32), nullable=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('pin', sa.String(10), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('business_name', sa.String(255), nullable=True),
        sa.Column('industry', sa.String(100), nullable=True),
        sa.Column('gst_no', sa.String(20), nullable=True),
        sa.Column('referral_code', sa.String(100), nullable=True),
        sa.Column('plan_id', sa.String(100), sa.ForeignKey('pricing_plans.id'), nullable=False),
        sa.Column('billing_cycle', sa.String(10), nullable=False, server_default='monthly'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('wallet_balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('ai_credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('onboarded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('wallet_balance_minor >= 0', name='ck_customer_wallet_non_negative'),
        sa.CheckConstraint('ai_credits >= 0', name='ck_customer_credits_non_negative'),
        sa.CheckConstraint("billing_cycle IN ('monthly', 'yearly')", name='ck_customer_cycle'),
        sa.CheckConstraint("subscription_status IN ('active', 'expired')", name='ck_customer_subscription'),
    )
    op.create_index('idx_customers_plan', 'customers', ['plan_id'])

    op.create_table(
        'wallet_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('balance_before_minor', sa.BigInteger(), nullable=False),
        sa.Column('balance_after_minor', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('reference_id', sa.String(255), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint('amount_minor > 0', name='ck_wallet_tx_amount_positive'),
        sa.CheckConstraint("type IN ('credit', 'debit')", name='ck_wallet_tx_type'),
        sa.UniqueConstraint('customer_id', 'reference_id', name='uq_wallet_tx_reference'),
    )
    op.create_index('ix_wallet_transactions_customer_id', 'wallet_transactions', ['customer_id'])
    op.create_index('idx_wallet_tx_created_at', 'wallet_transactions', ['created_at'])

    # ========================================================================
    # Projects & runs
    # ========================================================================
    op.create_table(
        'projects',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(10), nullable=False, server_default='active'),
        sa.Column('template_id', sa.String(100), sa.ForeignKey('project_templates.id'), nullable=True),
        sa.Column('webhook_url', sa.String(4096), nullable=True),
        sa.Column('ai_credit_cost', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('workflow_count_limit', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('run_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint("status IN ('active', 'paused')", name='ck_project_status'),
        sa.CheckConstraint('ai_credit_cost >= 0', name='ck_project_cost_non_negative'),
        sa.CheckConstraint('run_count >= 0', name='ck_project_run_count_non_negative'),
        sa.CheckConstraint('run_count <= workflow_count_limit', name='ck_project_run_limit'),
    )
    op.create_index('ix_projects_customer_id', 'projects', ['customer_id'])

    op.create_table(
        'workflow_runs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column(
            'project_id', UUID(as_uuid=True),
            sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('template_name', sa.String(255), nullable=False),
        sa.Column('workflow', sa.String(255), nullable=False),
        sa.Column('status', sa.String(10), nullable=False),
        sa.Column('inputs', sa.Text(), nullable=False, server_default=''),
        sa.Column('response_summary', sa.Text(), nullable=False),
        sa.Column('credits_deducted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('simulated', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
        sa.CheckConstraint("status IN ('success', 'failed')", name='ck_run_status'),
        sa.CheckConstraint('credits_deducted >= 0', name='ck_run_credits_non_negative'),
    )
    op.create_index('ix_workflow_runs_customer_id', 'workflow_runs', ['customer_id'])
    op.create_index('idx_runs_project_created', 'workflow_runs', ['project_id', 'created_at'])

    # ========================================================================
    # Credit ledger (references runs and wallet transactions)
    # ========================================================================
    op.create_table(
        'credit_ledger',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('credits_added', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('credits_consumed', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('cost_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('project_id', UUID(as_uuid=True), nullable=True),
        sa.Column(
            'workflow_run_id', UUID(as_uuid=True),
            sa.ForeignKey('workflow_runs.id'), nullable=True, unique=True,
        ),
        sa.Column(
            'wallet_transaction_id', UUID(as_uuid=True),
            sa.ForeignKey('wallet_transactions.id'), nullable=True,
        ),
        sa.Column('review_note', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint('credits_added >= 0', name='ck_ledger_added_non_negative'),
        sa.CheckConstraint('credits_consumed >= 0', name='ck_ledger_consumed_non_negative'),
        sa.CheckConstraint("source IN ('purchase', 'usage', 'bonus', 'refund')", name='ck_ledger_source'),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name='ck_ledger_status'),
        sa.CheckConstraint("source != 'usage' OR workflow_run_id IS NOT NULL", name='ck_ledger_usage_has_run'),
    )
    op.create_index('ix_credit_ledger_customer_id', 'credit_ledger', ['customer_id'])
    op.create_index('idx_ledger_pending', 'credit_ledger', ['status'], postgresql_where=sa.text("status = 'pending'"))
    op.create_index('idx_ledger_created_at', 'credit_ledger', ['created_at'])

    # ========================================================================
    # Tasks
    # ========================================================================
    op.create_table(
        'tasks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column(
            'project_id', UUID(as_uuid=True),
            sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='todo'),
        sa.Column('priority', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dependencies', ARRAY(UUID(as_uuid=True)), nullable=False, server_default='{}'),
        *_timestamps(),
        sa.CheckConstraint("status IN ('todo', 'in-progress', 'done')", name='ck_task_status'),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name='ck_task_priority'),
    )
    op.create_index('ix_tasks_customer_id', 'tasks', ['customer_id'])

    op.create_table(
        'task_history',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column(
            'task_id', UUID(as_uuid=True),
            sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('field', sa.String(50), nullable=False),
        sa.Column('old_value', sa.String(255), nullable=True),
        sa.Column('new_value', sa.String(255), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_task_history_task', 'task_history', ['task_id', 'changed_at'])

    # ========================================================================
    # Partners & commissions
    # ========================================================================
    op.create_table(
        'partners',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='Referral'),
        sa.Column('code', sa.String(100), nullable=False, unique=True),
        sa.Column('clicks', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('signups', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('wallet_balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('locked_balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_earned_minor', sa.BigInteger(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint("type IN ('Referral', 'Channel')", name='ck_partner_type'),
        sa.CheckConstraint('wallet_balance_minor >= 0', name='ck_partner_wallet_non_negative'),
        sa.CheckConstraint('locked_balance_minor >= 0', name='ck_partner_locked_non_negative'),
        sa.CheckConstraint(
            'wallet_balance_minor + locked_balance_minor <= total_earned_minor',
            name='ck_partner_balances_reconcile',
        ),
    )

    op.create_table(
        'partner_leads',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('partner_id', UUID(as_uuid=True), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('company', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='New'),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('New', 'Contacted', 'In-Discussion', 'Converted', 'Lost')",
            name='ck_lead_status',
        ),
    )
    op.create_index('ix_partner_leads_partner_id', 'partner_leads', ['partner_id'])

    op.create_table(
        'commission_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('partner_id', UUID(as_uuid=True), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column(
            'lead_id', UUID(as_uuid=True),
            sa.ForeignKey('partner_leads.id'), nullable=True, unique=True,
        ),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('plan_name', sa.String(100), nullable=True),
        sa.Column('sale_amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('rate_bps', sa.Integer(), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='Locked'),
        sa.Column('proof_description', sa.Text(), nullable=True),
        sa.Column('proof_checklist', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('admin_feedback', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint('amount_minor >= 0', name='ck_commission_amount_non_negative'),
        sa.CheckConstraint("type IN ('One-time', 'Recurring')", name='ck_commission_type'),
        sa.CheckConstraint(
            "status IN ('Locked', 'Under Review', 'Changes Requested', 'Payable', 'Paid', 'Void')",
            name='ck_commission_status',
        ),
    )
    op.create_index('ix_commission_logs_partner_id', 'commission_logs', ['partner_id'])
    op.create_index('idx_commission_partner_status', 'commission_logs', ['partner_id', 'status'])

    op.create_table(
        'payout_requests',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('partner_id', UUID(as_uuid=True), sa.ForeignKey('partners.id'), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='Pending'),
        sa.Column('admin_note', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint('amount_minor > 0', name='ck_payout_amount_positive'),
        sa.CheckConstraint("status IN ('Pending', 'Processed', 'Rejected')", name='ck_payout_status'),
    )
    op.create_index('ix_payout_requests_partner_id', 'payout_requests', ['partner_id'])

    # ========================================================================
    # Checkout, content & outbox
    # ========================================================================
    op.create_table(
        'carts',
        sa.Column('session_id', sa.String(255), primary_key=True),
        sa.Column('plan_id', sa.String(100), sa.ForeignKey('pricing_plans.id'), nullable=False),
        sa.Column('billing_cycle', sa.String(10), nullable=False, server_default='monthly'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'site_documents',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('content', JSONB(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'outbox_events',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('aggregate_id', sa.String(255), nullable=False),
        sa.Column('target_url', sa.String(2048), nullable=False),
        sa.Column('payload', JSONB(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('NOW()')),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint("status IN ('pending', 'delivered', 'failed')", name='ck_outbox_status'),
    )
    op.create_index(
        'idx_outbox_due', 'outbox_events', ['next_attempt_at'],
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    """Drop the portal schema."""
    for table in (
        'outbox_events',
        'site_documents',
        'carts',
        'payout_requests',
        'commission_logs',
        'partner_leads',
        'partners',
        'task_history',
        'tasks',
        'credit_ledger',
        'workflow_runs',
        'projects',
        'wallet_transactions',
        'customers',
        'project_templates',
        'pricing_plans',
    ):
        op.drop_table(table)
