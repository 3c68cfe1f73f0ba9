"""
Admin API routes for operating the portal.

Partners, commission review, credit purchase review, payouts, catalog,
site content and the webhook outbox.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.errors import to_http_exception
from app.config import settings
from app.db.session import get_read_db, get_write_db
from app.exceptions import PortalError
from app.models.api import (
    CommissionResponse,
    CommissionStatus,
    CreatePartnerRequest,
    CreditLedgerEntryResponse,
    OutboxDeliveryResponse,
    OutboxEventResponse,
    OutboxStatus,
    PartnerResponse,
    PayoutResponse,
    PayoutStatus,
    PlanRequest,
    PlanResponse,
    RejectWorkRequest,
    ReviewRequest,
    SiteConfigResponse,
    SiteConfigUpdateRequest,
    TemplateRequest,
    TemplateResponse,
)
from app.models.domain import PlanData, TemplateData
from app.services.catalog import CatalogService
from app.services.commission import CommissionService
from app.services.ledger import LedgerService
from app.services.outbox import OutboxService
from app.services.site_config import SiteConfigService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Request Models
# ============================================================================


class VoidCommissionRequest(BaseModel):
    """Reason for cancelling a commission."""

    reason: str = Field(..., min_length=1, max_length=2000)


class PlanUpsertRequest(PlanRequest):
    """Plan body with its display position."""

    sort_order: int | None = Field(None, ge=0)


# ============================================================================
# Partners
# ============================================================================


@router.post("/partners", response_model=PartnerResponse, status_code=status.HTTP_201_CREATED)
async def create_partner(
    request: CreatePartnerRequest,
    db: AsyncSession = Depends(get_write_db),
) -> PartnerResponse:
    """Create a partner with an explicit or generated referral code."""
    try:
        partner = await CommissionService(db).create_partner(
            request.name, request.email, partner_type=request.type, code=request.code
        )
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    logger.info("admin_partner_created", partner_id=str(partner.partner_id), code=partner.code)
    return PartnerResponse.model_validate(partner)


@router.get("/partners", response_model=list[PartnerResponse])
async def list_partners(db: AsyncSession = Depends(get_read_db)) -> list[PartnerResponse]:
    """All partners with balances."""
    partners = await CommissionService(db).list_partners()
    return [PartnerResponse.model_validate(p) for p in partners]


# ============================================================================
# Commissions
# ============================================================================


@router.get("/commissions", response_model=list[CommissionResponse])
async def list_commissions(
    partner_id: UUID | None = None,
    status_filter: CommissionStatus | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_read_db),
) -> list[CommissionResponse]:
    """Commission logs across partners, newest first."""
    commissions = await CommissionService(db).list_commissions(
        partner_id=partner_id, status=status_filter
    )
    return [CommissionResponse.model_validate(c) for c in commissions]


@router.post("/commissions/{commission_id}/approve", response_model=CommissionResponse)
async def approve_commission(
    commission_id: UUID, db: AsyncSession = Depends(get_write_db)
) -> CommissionResponse:
    """Approve reviewed work and release the commission to the partner wallet."""
    try:
        commission = await CommissionService(db).approve_partner_work(commission_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CommissionResponse.model_validate(commission)


@router.post("/commissions/{commission_id}/reject", response_model=CommissionResponse)
async def reject_commission(
    commission_id: UUID,
    request: RejectWorkRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CommissionResponse:
    """Send reviewed work back with feedback."""
    try:
        commission = await CommissionService(db).reject_partner_work(
            commission_id, request.feedback
        )
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return CommissionResponse.model_validate(commission)


@router.post("/commissions/{commission_id}/void", response_model=CommissionResponse)
async def void_commission(
    commission_id: UUID,
    request: VoidCommissionRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CommissionResponse:
    """Cancel a commission that has not been released yet."""
    try:
        commission = await CommissionService(db).void_commission(commission_id, request.reason)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return CommissionResponse.model_validate(commission)


# ============================================================================
# Credit purchase review
# ============================================================================


@router.get("/credit-purchases/pending", response_model=list[CreditLedgerEntryResponse])
async def list_pending_credit_purchases(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_read_db),
) -> list[CreditLedgerEntryResponse]:
    """Purchases above the auto-approve threshold, oldest first."""
    entries = await LedgerService(db).list_pending_credit_purchases(limit=limit)
    return [CreditLedgerEntryResponse.model_validate(e) for e in entries]


@router.post(
    "/credit-purchases/{entry_id}/approve", response_model=CreditLedgerEntryResponse
)
async def approve_credit_purchase(
    entry_id: UUID,
    request: ReviewRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CreditLedgerEntryResponse:
    """Approve a pending purchase; the credits become spendable."""
    try:
        entry = await LedgerService(db).approve_credit_purchase(entry_id, request.note)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CreditLedgerEntryResponse.model_validate(entry)


@router.post("/credit-purchases/{entry_id}/reject", response_model=CreditLedgerEntryResponse)
async def reject_credit_purchase(
    entry_id: UUID,
    request: ReviewRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CreditLedgerEntryResponse:
    """Reject a pending purchase and refund its cost to the wallet."""
    try:
        entry = await LedgerService(db).reject_credit_purchase(entry_id, request.note)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CreditLedgerEntryResponse.model_validate(entry)


# ============================================================================
# Payouts
# ============================================================================


@router.get("/payouts", response_model=list[PayoutResponse])
async def list_payouts(
    status_filter: PayoutStatus | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_read_db),
) -> list[PayoutResponse]:
    """Payout requests across partners."""
    payouts = await CommissionService(db).list_payouts(status=status_filter)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.post("/payouts/{payout_id}/process", response_model=PayoutResponse)
async def process_payout(
    payout_id: UUID,
    request: ReviewRequest,
    db: AsyncSession = Depends(get_write_db),
) -> PayoutResponse:
    """Mark a payout as sent."""
    try:
        payout = await CommissionService(db).process_payout(payout_id, request.note)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return PayoutResponse.model_validate(payout)


@router.post("/payouts/{payout_id}/reject", response_model=PayoutResponse)
async def reject_payout(
    payout_id: UUID,
    request: ReviewRequest,
    db: AsyncSession = Depends(get_write_db),
) -> PayoutResponse:
    """Reject a payout and refund the partner wallet."""
    try:
        payout = await CommissionService(db).reject_payout(payout_id, request.note)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return PayoutResponse.model_validate(payout)


# ============================================================================
# Catalog
# ============================================================================


@router.get("/plans", response_model=list[PlanResponse])
async def list_all_plans(db: AsyncSession = Depends(get_read_db)) -> list[PlanResponse]:
    """Every plan, hidden ones included."""
    plans = await CatalogService(db).list_plans(include_hidden=True)
    return [PlanResponse.model_validate(p) for p in plans]


@router.put("/plans/{plan_id}", response_model=PlanResponse)
async def upsert_plan(
    plan_id: str,
    request: PlanUpsertRequest,
    db: AsyncSession = Depends(get_write_db),
) -> PlanResponse:
    """Create or replace a pricing plan."""
    plan = PlanData(
        plan_id=plan_id,
        name=request.name,
        monthly_price_minor=request.monthly_price_minor,
        yearly_price_minor=request.yearly_price_minor,
        currency=settings.currency,
        max_projects=request.max_projects,
        ai_credits=request.ai_credits,
        additional_credit_price_minor=request.additional_credit_price_minor,
        features=list(request.features),
        visible=request.visible,
        recommended=request.recommended,
    )
    saved = await CatalogService(db).upsert_plan(plan, sort_order=request.sort_order)
    logger.info("admin_plan_saved", plan_id=plan_id)
    return PlanResponse.model_validate(saved)


@router.get("/templates", response_model=list[TemplateResponse])
async def list_all_templates(db: AsyncSession = Depends(get_read_db)) -> list[TemplateResponse]:
    """Every project template."""
    templates = await CatalogService(db).list_templates()
    return [TemplateResponse.model_validate(t) for t in templates]


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def upsert_template(
    template_id: str,
    request: TemplateRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TemplateResponse:
    """Create or replace a project template."""
    template = TemplateData(
        template_id=template_id,
        name=request.name,
        description=request.description,
        webhook_url_template=request.webhook_url_template,
        ai_credit_cost=request.ai_credit_cost,
        default_workflow_count=request.default_workflow_count,
        allowed_plan_ids=list(request.allowed_plan_ids),
    )
    saved = await CatalogService(db).upsert_template(template)
    logger.info("admin_template_saved", template_id=template_id)
    return TemplateResponse.model_validate(saved)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: str, db: AsyncSession = Depends(get_write_db)) -> Response:
    """Remove a template. Existing projects are unaffected."""
    try:
        await CatalogService(db).delete_template(template_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Site content
# ============================================================================


@router.get("/site-config", response_model=SiteConfigResponse)
async def get_site_config(db: AsyncSession = Depends(get_read_db)) -> SiteConfigResponse:
    """Current site content document with its revision."""
    document = await SiteConfigService(db).load_or_default()
    return SiteConfigResponse.model_validate(document)


@router.put("/site-config", response_model=SiteConfigResponse)
async def update_site_config(
    request: SiteConfigUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
) -> SiteConfigResponse:
    """Replace the document. Stale revisions are rejected with 409."""
    try:
        document = await SiteConfigService(db).update(request.content, request.expected_revision)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return SiteConfigResponse.model_validate(document)


@router.post("/site-config/reset", response_model=SiteConfigResponse)
async def reset_site_config(db: AsyncSession = Depends(get_write_db)) -> SiteConfigResponse:
    """Restore the packaged default content."""
    document = await SiteConfigService(db).reset()
    logger.info("admin_site_config_reset", revision=document.revision)
    return SiteConfigResponse.model_validate(document)


# ============================================================================
# Outbox
# ============================================================================


@router.get("/outbox", response_model=list[OutboxEventResponse])
async def list_outbox_events(
    status_filter: OutboxStatus | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_read_db),
) -> list[OutboxEventResponse]:
    """Outbound webhook events and their delivery state."""
    events = await OutboxService(db).list_events(status=status_filter, limit=limit)
    return [OutboxEventResponse.model_validate(e) for e in events]


@router.post("/outbox/deliver", response_model=OutboxDeliveryResponse)
async def deliver_outbox_events(
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_write_db),
) -> OutboxDeliveryResponse:
    """Run one delivery pass now."""
    stats = await OutboxService(db).deliver_due(limit=limit)
    return OutboxDeliveryResponse(
        delivered=stats.delivered, retried=stats.retried, failed=stats.failed
    )


@router.post("/outbox/{event_id}/retry", response_model=OutboxEventResponse)
async def retry_outbox_event(
    event_id: UUID, db: AsyncSession = Depends(get_write_db)
) -> OutboxEventResponse:
    """Re-queue a failed event."""
    try:
        event = await OutboxService(db).retry_event(event_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Outbox event not found: {event_id}"
        )
    return OutboxEventResponse.model_validate(event)
