"""
Partner Routes - Leads, commissions, proof of work and payouts.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.errors import to_http_exception
from app.db.session import get_read_db, get_write_db, get_write_session
from app.exceptions import PortalError
from app.models.api import (
    CommissionResponse,
    CommissionStatus,
    LeadConversionRequest,
    LeadImportRequest,
    LeadImportResponse,
    LeadRequest,
    LeadResponse,
    LeadStatusRequest,
    PartnerResponse,
    PayoutRequestBody,
    PayoutResponse,
    ProofOfWorkRequest,
)
from app.models.domain import LeadInput, ProofOfWork
from app.services.commission import CommissionService
from app.services.outbox import OutboxService

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/partners/{partner_id}")


async def deliver_outbox() -> None:
    """Deliver due outbox events in a fresh session after the response is sent."""
    async with get_write_session() as session:
        stats = await OutboxService(session).deliver_due()
    logger.info(
        "outbox_background_delivery",
        delivered=stats.delivered,
        retried=stats.retried,
        failed=stats.failed,
    )


@router.get("", response_model=PartnerResponse)
async def get_partner(
    partner_id: UUID, db: AsyncSession = Depends(get_read_db)
) -> PartnerResponse:
    """Partner profile, referral link and balances."""
    try:
        partner = await CommissionService(db).get_partner(partner_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return PartnerResponse.model_validate(partner)


# =============================================================================
# Leads
# =============================================================================


@router.get("/leads", response_model=list[LeadResponse])
async def list_leads(
    partner_id: UUID, db: AsyncSession = Depends(get_read_db)
) -> list[LeadResponse]:
    """Partner leads, newest first."""
    leads = await CommissionService(db).list_leads(partner_id)
    return [LeadResponse.model_validate(lead) for lead in leads]


@router.post("/leads", response_model=LeadResponse, status_code=status.HTTP_201_CREATED)
async def register_lead(
    partner_id: UUID,
    request: LeadRequest,
    db: AsyncSession = Depends(get_write_db),
) -> LeadResponse:
    """Register one lead."""
    try:
        lead = LeadInput(
            name=request.name,
            email=request.email,
            phone=request.phone,
            company=request.company,
            notes=request.notes,
        )
        created = await CommissionService(db).register_partner_lead(partner_id, lead)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return LeadResponse.model_validate(created)


@router.post(
    "/leads/import", response_model=LeadImportResponse, status_code=status.HTTP_201_CREATED
)
async def import_leads(
    partner_id: UUID,
    request: LeadImportRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_write_db),
) -> LeadImportResponse:
    """
    Bulk-import leads from CSV (header row with at least a name column).

    The lead-processing notification is delivered after the response.
    """
    try:
        result = await CommissionService(db).import_partner_leads(partner_id, request.csv_text)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc

    if result.outbox_event_id is not None:
        background_tasks.add_task(deliver_outbox)
    return LeadImportResponse.model_validate(result)


@router.patch("/leads/{lead_id}", response_model=LeadResponse)
async def update_lead_status(
    partner_id: UUID,
    lead_id: UUID,
    request: LeadStatusRequest,
    db: AsyncSession = Depends(get_write_db),
) -> LeadResponse:
    """Move a lead through the pipeline."""
    try:
        lead = await CommissionService(db).update_lead_status(partner_id, lead_id, request.status)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return LeadResponse.model_validate(lead)


@router.post(
    "/leads/{lead_id}/conversion",
    response_model=CommissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def convert_lead(
    partner_id: UUID,
    lead_id: UUID,
    request: LeadConversionRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CommissionResponse:
    """Record a closed sale for a lead and lock its one-time commission."""
    try:
        commission = await CommissionService(db).convert_partner_lead(
            partner_id, lead_id, request.plan_name, request.amount_minor
        )
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return CommissionResponse.model_validate(commission)


# =============================================================================
# Commissions
# =============================================================================


@router.get("/commissions", response_model=list[CommissionResponse])
async def list_commissions(
    partner_id: UUID,
    status_filter: CommissionStatus | None = None,
    db: AsyncSession = Depends(get_read_db),
) -> list[CommissionResponse]:
    """Partner commission logs, newest first."""
    commissions = await CommissionService(db).list_commissions(
        partner_id=partner_id, status=status_filter
    )
    return [CommissionResponse.model_validate(c) for c in commissions]


@router.post("/commissions/{commission_id}/proof", response_model=CommissionResponse)
async def submit_proof_of_work(
    partner_id: UUID,
    commission_id: UUID,
    request: ProofOfWorkRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CommissionResponse:
    """Submit proof of work; the commission goes under review."""
    try:
        proof = ProofOfWork(description=request.description, checklist=tuple(request.checklist))
        commission = await CommissionService(db).submit_partner_work(
            partner_id, commission_id, proof
        )
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return CommissionResponse.model_validate(commission)


# =============================================================================
# Payouts
# =============================================================================


@router.get("/payouts", response_model=list[PayoutResponse])
async def list_payouts(
    partner_id: UUID, db: AsyncSession = Depends(get_read_db)
) -> list[PayoutResponse]:
    """Partner payout requests, newest first."""
    payouts = await CommissionService(db).list_payouts(partner_id=partner_id)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.post("/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(
    partner_id: UUID,
    request: PayoutRequestBody,
    db: AsyncSession = Depends(get_write_db),
) -> PayoutResponse:
    """Withdraw from the partner wallet (minimum applies)."""
    try:
        payout = await CommissionService(db).request_partner_payout(
            partner_id, request.amount_minor
        )
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return PayoutResponse.model_validate(payout)
