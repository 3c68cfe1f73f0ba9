"""
Commission Service - Partner lead, commission and payout lifecycle.

NO DICTIONARIES - All operations use strongly typed domain models.

Commission state machine:

    Locked --submit--> Under Review --approve--> Payable --payout--> Paid
    Under Review --reject--> Changes Requested --submit--> Under Review
    Locked | Under Review | Changes Requested --void--> Void

Partner balances only move locked -> wallet (approval) and
wallet -> payout (request), so wallet + locked <= total_earned always holds.
"""

import csv
import io
import secrets
import string
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import CommissionLog, Partner, PartnerLead, PayoutRequest
from app.exceptions import (
    DataIntegrityError,
    InsufficientBalanceError,
    InvalidTransitionError,
    PayoutBelowMinimumError,
    ReferralCodeTakenError,
    ResourceNotFoundError,
    UnknownReferralCodeError,
)
from app.models.api import (
    CommissionStatus,
    CommissionType,
    LeadStatus,
    PartnerType,
    PayoutStatus,
)
from app.models.domain import (
    CommissionData,
    LeadData,
    LeadImportResult,
    LeadInput,
    PartnerData,
    PayoutData,
    ProofOfWork,
)
from app.observability.metrics import metrics
from app.services.outbox import OutboxService

logger = get_logger(__name__)

BPS_DENOMINATOR = 10_000
REFERRAL_CODE_PREFIX = "partner_"
REFERRAL_CODE_LENGTH = 6
REFERRAL_CODE_ATTEMPTS = 5
LEADS_IMPORTED_EVENT = "partner.leads_imported"

SUBMITTABLE_STATUSES = frozenset({CommissionStatus.LOCKED, CommissionStatus.CHANGES_REQUESTED})
VOIDABLE_STATUSES = frozenset(
    {CommissionStatus.LOCKED, CommissionStatus.UNDER_REVIEW, CommissionStatus.CHANGES_REQUESTED}
)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def commission_rate_bps(partner_type: PartnerType, settings: Settings) -> int:
    """Channel partners earn the channel rate, everyone else the referral rate."""
    if partner_type == PartnerType.CHANNEL:
        return settings.channel_rate_bps
    return settings.referral_rate_bps


def commission_amount(sale_amount_minor: int, rate_bps: int) -> int:
    """Commission on a sale, rounded half up to minor units."""
    if sale_amount_minor < 0:
        raise ValueError(f"Sale amount cannot be negative: {sale_amount_minor}")
    return (sale_amount_minor * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def generate_referral_code() -> str:
    """Random partner code: partner_ followed by six lowercase alphanumerics."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(REFERRAL_CODE_LENGTH))
    return f"{REFERRAL_CODE_PREFIX}{suffix}"


def parse_lead_csv(csv_text: str) -> tuple[list[LeadInput], int]:
    """
    Parse a lead CSV with a header row.

    Recognised columns: name, email, phone, company, notes (case-insensitive).
    Rows without a name are skipped and counted.
    """
    reader = csv.DictReader(io.StringIO(csv_text.strip()))
    if reader.fieldnames is None:
        return [], 0
    reader.fieldnames = [(f or "").strip().lower() for f in reader.fieldnames]
    if "name" not in reader.fieldnames:
        raise ValueError("Lead CSV must have a 'name' column")

    leads: list[LeadInput] = []
    skipped = 0
    for row in reader:
        name = (row.get("name") or "").strip()
        if not name:
            skipped += 1
            continue
        leads.append(
            LeadInput(
                name=name,
                email=(row.get("email") or "").strip() or None,
                phone=(row.get("phone") or "").strip() or None,
                company=(row.get("company") or "").strip() or None,
                notes=(row.get("notes") or "").strip() or None,
            )
        )
    return leads, skipped


def verify_partner_balances(partner: Partner) -> None:
    """Validate partner balance invariants."""
    if partner.wallet_balance_minor < 0 or partner.locked_balance_minor < 0:
        raise DataIntegrityError(
            f"Negative balance for partner {partner.id}: wallet={partner.wallet_balance_minor}, "
            f"locked={partner.locked_balance_minor}"
        )
    if partner.wallet_balance_minor + partner.locked_balance_minor > partner.total_earned_minor:
        raise DataIntegrityError(
            f"Partner {partner.id} balances exceed lifetime earnings: "
            f"wallet={partner.wallet_balance_minor}, locked={partner.locked_balance_minor}, "
            f"total_earned={partner.total_earned_minor}"
        )


# ============================================================================
# ORM -> Domain conversion
# ============================================================================


def partner_to_domain(partner: Partner) -> PartnerData:
    """Convert ORM partner to domain model."""
    return PartnerData(
        partner_id=partner.id,
        name=partner.name,
        email=partner.email,
        type=PartnerType(partner.type),
        code=partner.code,
        clicks=partner.clicks,
        signups=partner.signups,
        wallet_balance_minor=partner.wallet_balance_minor,
        locked_balance_minor=partner.locked_balance_minor,
        total_earned_minor=partner.total_earned_minor,
    )


def lead_to_domain(lead: PartnerLead) -> LeadData:
    """Convert ORM lead to domain model."""
    return LeadData(
        lead_id=lead.id,
        partner_id=lead.partner_id,
        name=lead.name,
        email=lead.email,
        phone=lead.phone,
        company=lead.company,
        status=LeadStatus(lead.status),
        created_at=lead.created_at,
    )


def commission_to_domain(log: CommissionLog) -> CommissionData:
    """Convert ORM commission log to domain model."""
    return CommissionData(
        commission_id=log.id,
        partner_id=log.partner_id,
        lead_id=log.lead_id,
        customer_name=log.customer_name,
        plan_name=log.plan_name,
        sale_amount_minor=log.sale_amount_minor,
        rate_bps=log.rate_bps,
        amount_minor=log.amount_minor,
        type=CommissionType(log.type),
        status=CommissionStatus(log.status),
        proof_description=log.proof_description,
        proof_checklist=list(log.proof_checklist or []),
        admin_feedback=log.admin_feedback,
        created_at=log.created_at,
    )


def payout_to_domain(payout: PayoutRequest) -> PayoutData:
    """Convert ORM payout request to domain model."""
    return PayoutData(
        payout_id=payout.id,
        partner_id=payout.partner_id,
        amount_minor=payout.amount_minor,
        status=PayoutStatus(payout.status),
        admin_note=payout.admin_note,
        created_at=payout.created_at,
        processed_at=payout.processed_at,
    )


class CommissionService:
    """Partner commission engine."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        """Initialize commission service with database session."""
        self.session = session
        self.settings = settings or get_settings()

    # ========================================================================
    # Partners & referral capture
    # ========================================================================

    async def create_partner(
        self,
        name: str,
        email: str,
        partner_type: PartnerType = PartnerType.REFERRAL,
        code: str | None = None,
    ) -> PartnerData:
        """
        Create a partner with an explicit or generated referral code.

        Raises:
            ReferralCodeTakenError: Explicit code already belongs to a partner
        """
        if code is not None:
            if await self._find_partner_by_code(code) is not None:
                raise ReferralCodeTakenError(code)
        else:
            for _ in range(REFERRAL_CODE_ATTEMPTS):
                candidate = generate_referral_code()
                if await self._find_partner_by_code(candidate) is None:
                    code = candidate
                    break
            if code is None:
                raise DataIntegrityError("Could not generate a unique referral code")

        partner = Partner(
            id=uuid4(),
            name=name,
            email=email,
            type=partner_type.value,
            code=code,
            clicks=0,
            signups=0,
            wallet_balance_minor=0,
            locked_balance_minor=0,
            total_earned_minor=0,
            created_at=_utc_now(),
        )
        self.session.add(partner)
        await self.session.flush()
        await self.session.commit()

        logger.info("partner_created", partner_id=str(partner.id), code=code, type=partner.type)
        return partner_to_domain(partner)

    async def record_referral_click(self, code: str) -> PartnerData | None:
        """Count a visit through a referral link. Unknown codes are ignored."""
        partner = await self._lock_partner_by_code(code)
        if partner is None:
            logger.info("referral_click_unknown_code", code=code)
            return None

        partner.clicks = partner.clicks + 1
        await self.session.commit()
        return partner_to_domain(partner)

    # ========================================================================
    # Commission creation
    # ========================================================================

    async def apply_commission(
        self,
        referral_code: str | None,
        sale_amount_minor: int,
        customer_name: str,
        plan_name: str | None = None,
        commit: bool = True,
    ) -> CommissionData | None:
        """
        Attribute a subscription sale to the partner behind a referral code.

        A missing or stale code is a no-op: checkout must never fail because
        of a referral code. With commit=False the caller owns the transaction.
        """
        if not referral_code:
            return None

        try:
            partner = await self._resolve_referral_code(referral_code)
        except UnknownReferralCodeError:
            logger.info("referral_code_ignored", code=referral_code, customer_name=customer_name)
            return None

        partner.signups = partner.signups + 1
        log = self._create_commission(
            partner,
            sale_amount_minor=sale_amount_minor,
            customer_name=customer_name,
            plan_name=plan_name,
            commission_type=CommissionType.RECURRING,
            lead_id=None,
        )
        await self.session.flush()
        verify_partner_balances(partner)
        if commit:
            await self.session.commit()

        logger.info(
            "commission_applied",
            partner_id=str(partner.id),
            commission_id=str(log.id),
            sale_amount_minor=sale_amount_minor,
            amount_minor=log.amount_minor,
        )
        return commission_to_domain(log)

    # ========================================================================
    # Leads
    # ========================================================================

    async def register_partner_lead(self, partner_id: UUID, lead: LeadInput) -> LeadData:
        """Register one lead for a partner."""
        await self._get_partner(partner_id)
        row = self._add_lead(partner_id, lead)
        await self.session.flush()
        await self.session.commit()
        logger.info("partner_lead_registered", partner_id=str(partner_id), lead_id=str(row.id))
        return lead_to_domain(row)

    async def import_partner_leads(self, partner_id: UUID, csv_text: str) -> LeadImportResult:
        """
        Bulk-register leads from CSV and queue the lead-processing notification.

        The notification is delivered through the outbox; its failure never
        fails the import.
        """
        await self._get_partner(partner_id)
        leads, skipped = parse_lead_csv(csv_text)

        rows = [self._add_lead(partner_id, lead) for lead in leads]

        event_id: UUID | None = None
        if rows and self.settings.lead_processing_webhook_url:
            event = OutboxService(self.session, self.settings).enqueue(
                event_type=LEADS_IMPORTED_EVENT,
                aggregate_id=str(partner_id),
                target_url=self.settings.lead_processing_webhook_url,
                payload={
                    "partner_id": str(partner_id),
                    "leads": [lead.to_json() for lead in leads],
                },
            )
            event_id = event.id

        await self.session.flush()
        await self.session.commit()

        logger.info(
            "partner_leads_imported",
            partner_id=str(partner_id),
            imported=len(rows),
            skipped=skipped,
            outbox_event_id=str(event_id) if event_id else None,
        )
        return LeadImportResult(
            imported=[lead_to_domain(r) for r in rows],
            skipped_rows=skipped,
            outbox_event_id=event_id,
        )

    async def update_lead_status(
        self, partner_id: UUID, lead_id: UUID, status: LeadStatus
    ) -> LeadData:
        """
        Move a lead through the pipeline.

        Converted is reached only through conversion and is final.
        """
        lead = await self._lock_lead(partner_id, lead_id)
        current = LeadStatus(lead.status)
        if status == LeadStatus.CONVERTED or current == LeadStatus.CONVERTED:
            raise InvalidTransitionError("lead", current.value, f"set {status.value} on")

        lead.status = status.value
        await self.session.commit()
        logger.info(
            "partner_lead_status_updated",
            lead_id=str(lead.id),
            old_status=current.value,
            new_status=status.value,
        )
        return lead_to_domain(lead)

    async def convert_partner_lead(
        self, partner_id: UUID, lead_id: UUID, plan_name: str, amount_minor: int
    ) -> CommissionData:
        """
        Mark a lead converted and lock a one-time commission for the sale.

        Raises:
            ResourceNotFoundError: Partner or lead doesn't exist
            InvalidTransitionError: Lead already converted
        """
        if amount_minor <= 0:
            raise ValueError(f"Sale amount must be positive: {amount_minor}")

        partner = await self._lock_partner(partner_id)
        lead = await self._lock_lead(partner_id, lead_id)
        if lead.status == LeadStatus.CONVERTED.value:
            raise InvalidTransitionError("lead", lead.status, "convert")

        lead.status = LeadStatus.CONVERTED.value
        log = self._create_commission(
            partner,
            sale_amount_minor=amount_minor,
            customer_name=lead.name,
            plan_name=plan_name,
            commission_type=CommissionType.ONE_TIME,
            lead_id=lead.id,
        )
        await self.session.flush()
        verify_partner_balances(partner)
        await self.session.commit()

        logger.info(
            "partner_lead_converted",
            partner_id=str(partner.id),
            lead_id=str(lead.id),
            commission_id=str(log.id),
            amount_minor=log.amount_minor,
        )
        return commission_to_domain(log)

    # ========================================================================
    # Proof of work & review
    # ========================================================================

    async def submit_partner_work(
        self, partner_id: UUID, commission_id: UUID, proof: ProofOfWork
    ) -> CommissionData:
        """Attach proof of work and send a commission for review."""
        log = await self._lock_commission(commission_id)
        if log.partner_id != partner_id:
            raise ResourceNotFoundError("CommissionLog", commission_id)

        current = CommissionStatus(log.status)
        if current not in SUBMITTABLE_STATUSES:
            raise InvalidTransitionError("commission", current.value, "submit proof for")

        log.status = CommissionStatus.UNDER_REVIEW.value
        log.proof_description = proof.description
        log.proof_checklist = list(proof.checklist)
        log.submitted_at = _utc_now()
        await self.session.commit()

        metrics.record_commission_transition(log.status)
        logger.info(
            "partner_work_submitted",
            commission_id=str(log.id),
            partner_id=str(partner_id),
            resubmission=current == CommissionStatus.CHANGES_REQUESTED,
        )
        return commission_to_domain(log)

    async def approve_partner_work(self, commission_id: UUID) -> CommissionData:
        """
        Approve reviewed work and release the commission to the partner wallet.

        Only valid from Under Review, so approving twice never pays twice.
        """
        log = await self._lock_commission(commission_id)
        if log.status != CommissionStatus.UNDER_REVIEW.value:
            raise InvalidTransitionError("commission", log.status, "approve")

        partner = await self._lock_partner(log.partner_id)
        partner.wallet_balance_minor = partner.wallet_balance_minor + log.amount_minor
        partner.locked_balance_minor = max(0, partner.locked_balance_minor - log.amount_minor)

        log.status = CommissionStatus.PAYABLE.value
        log.reviewed_at = _utc_now()

        await self.session.flush()
        verify_partner_balances(partner)
        await self.session.commit()

        metrics.record_commission_transition(log.status, log.amount_minor)
        logger.info(
            "partner_work_approved",
            commission_id=str(log.id),
            partner_id=str(partner.id),
            amount_minor=log.amount_minor,
            wallet_after=partner.wallet_balance_minor,
        )
        return commission_to_domain(log)

    async def reject_partner_work(self, commission_id: UUID, feedback: str) -> CommissionData:
        """Send reviewed work back to the partner with feedback."""
        if not feedback.strip():
            raise ValueError("Rejection feedback cannot be empty")

        log = await self._lock_commission(commission_id)
        if log.status != CommissionStatus.UNDER_REVIEW.value:
            raise InvalidTransitionError("commission", log.status, "reject")

        log.status = CommissionStatus.CHANGES_REQUESTED.value
        log.admin_feedback = feedback
        log.reviewed_at = _utc_now()
        await self.session.commit()

        metrics.record_commission_transition(log.status)
        logger.info("partner_work_rejected", commission_id=str(log.id))
        return commission_to_domain(log)

    async def void_commission(self, commission_id: UUID, reason: str) -> CommissionData:
        """Cancel a not-yet-payable commission and release it from the locked balance."""
        log = await self._lock_commission(commission_id)
        current = CommissionStatus(log.status)
        if current not in VOIDABLE_STATUSES:
            raise InvalidTransitionError("commission", current.value, "void")

        partner = await self._lock_partner(log.partner_id)
        partner.locked_balance_minor = max(0, partner.locked_balance_minor - log.amount_minor)
        log.status = CommissionStatus.VOID.value
        log.admin_feedback = reason
        log.reviewed_at = _utc_now()

        await self.session.flush()
        verify_partner_balances(partner)
        await self.session.commit()

        metrics.record_commission_transition(log.status)
        logger.info(
            "commission_voided",
            commission_id=str(log.id),
            partner_id=str(partner.id),
            amount_minor=log.amount_minor,
        )
        return commission_to_domain(log)

    # ========================================================================
    # Payouts
    # ========================================================================

    async def request_partner_payout(self, partner_id: UUID, amount_minor: int) -> PayoutData:
        """
        Withdraw from the partner wallet.

        The wallet is debited at request time; rejection refunds it.

        Raises:
            PayoutBelowMinimumError: Amount under the minimum payout
            InsufficientBalanceError: Amount above the wallet balance
        """
        if amount_minor < self.settings.min_payout_minor:
            raise PayoutBelowMinimumError(amount_minor, self.settings.min_payout_minor)

        partner = await self._lock_partner(partner_id)
        if amount_minor > partner.wallet_balance_minor:
            raise InsufficientBalanceError(partner.wallet_balance_minor, amount_minor)

        partner.wallet_balance_minor = partner.wallet_balance_minor - amount_minor
        payout = PayoutRequest(
            id=uuid4(),
            partner_id=partner.id,
            amount_minor=amount_minor,
            status=PayoutStatus.PENDING.value,
            created_at=_utc_now(),
        )
        self.session.add(payout)

        await self.session.flush()
        verify_partner_balances(partner)
        await self.session.commit()

        metrics.record_payout(payout.status)
        logger.info(
            "partner_payout_requested",
            partner_id=str(partner.id),
            payout_id=str(payout.id),
            amount_minor=amount_minor,
        )
        return payout_to_domain(payout)

    async def process_payout(self, payout_id: UUID, note: str | None = None) -> PayoutData:
        """
        Mark a payout as sent and settle the partner's oldest payable commissions.

        Commissions are marked Paid oldest first while their running total
        fits within the payout amount.
        """
        payout = await self._lock_pending_payout(payout_id, "process")
        payout.status = PayoutStatus.PROCESSED.value
        payout.admin_note = note
        payout.processed_at = _utc_now()

        remaining = payout.amount_minor
        settled = 0
        for log in await self._payable_commissions(payout.partner_id):
            if log.amount_minor > remaining:
                break
            remaining -= log.amount_minor
            log.status = CommissionStatus.PAID.value
            log.paid_at = payout.processed_at
            settled += 1
            metrics.record_commission_transition(log.status)

        await self.session.commit()

        metrics.record_payout(payout.status)
        logger.info(
            "partner_payout_processed",
            payout_id=str(payout.id),
            partner_id=str(payout.partner_id),
            commissions_settled=settled,
        )
        return payout_to_domain(payout)

    async def reject_payout(self, payout_id: UUID, note: str | None = None) -> PayoutData:
        """Reject a pending payout and refund the amount to the partner wallet."""
        payout = await self._lock_pending_payout(payout_id, "reject")
        partner = await self._lock_partner(payout.partner_id)

        partner.wallet_balance_minor = partner.wallet_balance_minor + payout.amount_minor
        payout.status = PayoutStatus.REJECTED.value
        payout.admin_note = note
        payout.processed_at = _utc_now()

        await self.session.flush()
        verify_partner_balances(partner)
        await self.session.commit()

        metrics.record_payout(payout.status)
        logger.info(
            "partner_payout_rejected",
            payout_id=str(payout.id),
            partner_id=str(partner.id),
            refunded_minor=payout.amount_minor,
        )
        return payout_to_domain(payout)

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_partner(self, partner_id: UUID) -> PartnerData:
        """Get partner details and balances."""
        return partner_to_domain(await self._get_partner(partner_id))

    async def list_partners(self) -> list[PartnerData]:
        """List all partners."""
        result = await self.session.execute(select(Partner).order_by(Partner.created_at.asc()))
        return [partner_to_domain(p) for p in result.scalars().all()]

    async def list_leads(self, partner_id: UUID) -> list[LeadData]:
        """List a partner's leads, newest first."""
        stmt = (
            select(PartnerLead)
            .where(PartnerLead.partner_id == partner_id)
            .order_by(PartnerLead.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [lead_to_domain(r) for r in result.scalars().all()]

    async def list_commissions(
        self, partner_id: UUID | None = None, status: CommissionStatus | None = None
    ) -> list[CommissionData]:
        """List commission logs, optionally filtered by partner and status."""
        stmt = select(CommissionLog).order_by(CommissionLog.created_at.desc())
        if partner_id is not None:
            stmt = stmt.where(CommissionLog.partner_id == partner_id)
        if status is not None:
            stmt = stmt.where(CommissionLog.status == status.value)
        result = await self.session.execute(stmt)
        return [commission_to_domain(r) for r in result.scalars().all()]

    async def list_payouts(
        self, partner_id: UUID | None = None, status: PayoutStatus | None = None
    ) -> list[PayoutData]:
        """List payout requests, optionally filtered by partner and status."""
        stmt = select(PayoutRequest).order_by(PayoutRequest.created_at.desc())
        if partner_id is not None:
            stmt = stmt.where(PayoutRequest.partner_id == partner_id)
        if status is not None:
            stmt = stmt.where(PayoutRequest.status == status.value)
        result = await self.session.execute(stmt)
        return [payout_to_domain(r) for r in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _create_commission(
        self,
        partner: Partner,
        sale_amount_minor: int,
        customer_name: str,
        plan_name: str | None,
        commission_type: CommissionType,
        lead_id: UUID | None,
    ) -> CommissionLog:
        """Lock a new commission and add it to the partner's earnings."""
        rate = commission_rate_bps(PartnerType(partner.type), self.settings)
        amount = commission_amount(sale_amount_minor, rate)

        partner.total_earned_minor = partner.total_earned_minor + amount
        partner.locked_balance_minor = partner.locked_balance_minor + amount

        log = CommissionLog(
            id=uuid4(),
            partner_id=partner.id,
            lead_id=lead_id,
            customer_name=customer_name,
            plan_name=plan_name,
            sale_amount_minor=sale_amount_minor,
            rate_bps=rate,
            amount_minor=amount,
            type=commission_type.value,
            status=CommissionStatus.LOCKED.value,
            proof_checklist=[],
            created_at=_utc_now(),
        )
        self.session.add(log)
        metrics.record_commission_transition(log.status, amount)
        return log

    def _add_lead(self, partner_id: UUID, lead: LeadInput) -> PartnerLead:
        """Append a New lead row."""
        now = _utc_now()
        row = PartnerLead(
            id=uuid4(),
            partner_id=partner_id,
            name=lead.name,
            email=lead.email,
            phone=lead.phone,
            company=lead.company,
            notes=lead.notes,
            status=LeadStatus.NEW.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        return row

    async def _resolve_referral_code(self, code: str) -> Partner:
        """Lock the partner behind a referral code."""
        partner = await self._lock_partner_by_code(code)
        if partner is None:
            raise UnknownReferralCodeError(code)
        return partner

    async def _get_partner(self, partner_id: UUID) -> Partner:
        """Get partner by id."""
        partner = await self.session.get(Partner, partner_id)
        if partner is None:
            raise ResourceNotFoundError("Partner", partner_id)
        return partner

    async def _lock_partner(self, partner_id: UUID) -> Partner:
        """Lock partner row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Partner)
            .where(Partner.id == partner_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        partner = result.scalar_one_or_none()
        if partner is None:
            raise ResourceNotFoundError("Partner", partner_id)
        return partner

    async def _lock_partner_by_code(self, code: str) -> Partner | None:
        """Lock partner row by referral code."""
        stmt = (
            select(Partner)
            .where(Partner.code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_partner_by_code(self, code: str) -> Partner | None:
        """Find partner by referral code without locking."""
        result = await self.session.execute(select(Partner).where(Partner.code == code))
        return result.scalar_one_or_none()

    async def _lock_lead(self, partner_id: UUID, lead_id: UUID) -> PartnerLead:
        """Lock a lead owned by the partner."""
        stmt = (
            select(PartnerLead)
            .where(PartnerLead.id == lead_id, PartnerLead.partner_id == partner_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        lead = result.scalar_one_or_none()
        if lead is None:
            raise ResourceNotFoundError("PartnerLead", lead_id)
        return lead

    async def _lock_commission(self, commission_id: UUID) -> CommissionLog:
        """Lock a commission log row."""
        stmt = (
            select(CommissionLog)
            .where(CommissionLog.id == commission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        log = result.scalar_one_or_none()
        if log is None:
            raise ResourceNotFoundError("CommissionLog", commission_id)
        return log

    async def _lock_pending_payout(self, payout_id: UUID, action: str) -> PayoutRequest:
        """Lock a payout request and require it to be pending."""
        stmt = (
            select(PayoutRequest)
            .where(PayoutRequest.id == payout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        payout = result.scalar_one_or_none()
        if payout is None:
            raise ResourceNotFoundError("PayoutRequest", payout_id)
        if payout.status != PayoutStatus.PENDING.value:
            raise InvalidTransitionError("payout", payout.status, action)
        return payout

    async def _payable_commissions(self, partner_id: UUID) -> list[CommissionLog]:
        """Lock a partner's payable commissions, oldest first."""
        stmt = (
            select(CommissionLog)
            .where(
                CommissionLog.partner_id == partner_id,
                CommissionLog.status == CommissionStatus.PAYABLE.value,
            )
            .order_by(CommissionLog.created_at.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
