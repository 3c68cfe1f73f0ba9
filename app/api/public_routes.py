"""
Public Routes - Catalog, referral capture, cart, checkout and gateway webhooks.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, Header, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import choose_referral_code, get_referral_context
from app.api.errors import to_http_exception
from app.config import settings
from app.db.session import get_read_db, get_write_db
from app.exceptions import PortalError
from app.models.api import (
    CartRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    PartnerResponse,
    PlanResponse,
    SiteConfigResponse,
    TemplateResponse,
)
from app.services.catalog import CatalogService
from app.services.checkout import CheckoutService
from app.services.commission import CommissionService
from app.services.site_config import SiteConfigService
from app.services.top_up import TopUpService

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


# =============================================================================
# Catalog & content
# =============================================================================


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(db: AsyncSession = Depends(get_read_db)) -> list[PlanResponse]:
    """Visible pricing plans in display order."""
    plans = await CatalogService(db).list_plans()
    return [PlanResponse.model_validate(p) for p in plans]


@router.get("/templates", response_model=list[TemplateResponse])
async def list_templates(
    plan_id: str | None = None, db: AsyncSession = Depends(get_read_db)
) -> list[TemplateResponse]:
    """Project templates, optionally only those a plan may use."""
    templates = await CatalogService(db).list_templates(plan_id=plan_id)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.get("/site-config", response_model=SiteConfigResponse)
async def get_site_config(db: AsyncSession = Depends(get_read_db)) -> SiteConfigResponse:
    """Marketing content document."""
    document = await SiteConfigService(db).load_or_default()
    return SiteConfigResponse.model_validate(document)


# =============================================================================
# Referrals
# =============================================================================


@router.get("/referrals/{code}", response_model=PartnerResponse | None)
async def capture_referral(
    code: str,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
) -> PartnerResponse | None:
    """
    Count a referral link visit and remember the code for checkout.

    Unknown codes are accepted silently and not stored.
    """
    partner = await CommissionService(db).record_referral_click(code)
    if partner is None:
        return None

    response.set_cookie(
        settings.referral_cookie_name,
        partner.code,
        max_age=settings.referral_cookie_max_age_seconds,
        httponly=True,
        samesite="lax",
    )
    return PartnerResponse.model_validate(partner)


# =============================================================================
# Cart & checkout
# =============================================================================


@router.get("/carts/{session_id}", response_model=CartResponse)
async def get_cart(session_id: str, db: AsyncSession = Depends(get_read_db)) -> CartResponse:
    """Priced cart contents."""
    try:
        cart = await CheckoutService(db).get_cart(session_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CartResponse.model_validate(cart)


@router.put("/carts/{session_id}", response_model=CartResponse)
async def put_cart(
    session_id: str,
    request: CartRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CartResponse:
    """Put a plan in the cart, replacing the current one."""
    try:
        cart = await CheckoutService(db).add_to_cart(
            session_id, request.plan_id, request.billing_cycle
        )
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CartResponse.model_validate(cart)


@router.delete("/carts/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cart(session_id: str, db: AsyncSession = Depends(get_write_db)) -> Response:
    """Empty the cart."""
    try:
        await CheckoutService(db).remove_from_cart(session_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    request: CheckoutRequest,
    response: Response,
    referral: tuple[str | None, str | None] = Depends(get_referral_context),
    db: AsyncSession = Depends(get_write_db),
) -> CheckoutResponse:
    """
    Create the customer from a paid cart.

    The referral code comes from the body, else ?ref=, else the cookie.
    """
    query_code, cookie_code = referral
    referral_code = choose_referral_code(request.referral_code, query_code, cookie_code)
    try:
        result = await CheckoutService(db).checkout(
            request.session_id,
            name=request.name,
            email=request.email,
            phone=request.phone,
            payment_reference=request.payment_reference,
            referral_code=referral_code,
        )
    except PortalError as exc:
        raise to_http_exception(exc) from exc

    response.delete_cookie(settings.referral_cookie_name)
    return CheckoutResponse.model_validate(result)


# =============================================================================
# Payment gateway webhooks
# =============================================================================


@router.post("/webhooks/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_write_db),
) -> Response:
    """
    Stripe payment notifications.

    payment_intent.succeeded credits the wallet once per payment.
    """
    payload = await request.body()
    try:
        applied = await TopUpService(db).handle_webhook(payload, stripe_signature)
    except PortalError as exc:
        raise to_http_exception(exc) from exc

    logger.info("stripe_webhook_handled", applied=applied)
    return Response(status_code=status.HTTP_200_OK)
