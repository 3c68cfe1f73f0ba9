"""
FastAPI Dependencies - Shared clients and request context.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Query, Request

from app.config import settings
from app.services.workflow_webhook import WorkflowWebhookClient

_webhook_client: WorkflowWebhookClient | None = None


def get_webhook_client() -> WorkflowWebhookClient:
    """
    Process-wide workflow webhook client.

    One httpx connection pool is shared by all requests and closed on shutdown.
    """
    global _webhook_client
    if _webhook_client is None:
        _webhook_client = WorkflowWebhookClient(settings)
    return _webhook_client


async def close_webhook_client() -> None:
    """Close the shared webhook client (for graceful shutdown)."""
    global _webhook_client
    if _webhook_client is not None:
        await _webhook_client.close()
        _webhook_client = None


def choose_referral_code(
    body_code: str | None, query_code: str | None, cookie_code: str | None
) -> str | None:
    """Explicit code in the body wins, then the ?ref= link, then the stored cookie."""
    for code in (body_code, query_code, cookie_code):
        if code and code.strip():
            return code.strip()
    return None


def get_referral_context(
    request: Request,
    ref: str | None = Query(None, max_length=100),
) -> tuple[str | None, str | None]:
    """Referral code from the ?ref= parameter and the referral cookie."""
    return ref, request.cookies.get(settings.referral_cookie_name)
