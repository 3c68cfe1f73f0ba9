"""
Workflow webhook client for the external automation host.

Posts run payloads to project webhooks with an explicit timeout and a
bounded number of attempts. Callers decide what an unreachable webhook
means for the run.
"""

import asyncio
import json
import time
from typing import Any
from urllib.parse import urlparse

import httpx
from structlog import get_logger

from app.config import Settings, get_settings
from app.exceptions import WebhookUnreachableError
from app.models.domain import WorkflowPayload
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation

logger = get_logger(__name__)

MAX_SUMMARY_LENGTH = 2000


def is_dispatchable_url(url: str | None) -> bool:
    """Only absolute http(s) URLs are dispatched; anything else runs simulated."""
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def summarize_response(body: Any) -> str:
    """Run summary for a successful webhook response."""
    summary = "Webhook Response: " + json.dumps(body, default=str)
    return summary[:MAX_SUMMARY_LENGTH]


class WorkflowWebhookClient:
    """HTTP client for project workflow webhooks."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.webhook_timeout_seconds)
        return self._http_client

    async def dispatch(self, url: str, payload: WorkflowPayload) -> Any:
        """
        Post a workflow payload and return the decoded JSON response.

        A 2xx answer without a JSON body yields {"status": "ok"}.

        Raises:
            WebhookUnreachableError: every attempt failed or answered non-2xx
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {payload.user_id}",
        }
        attempts = self.settings.webhook_max_attempts
        last_error = WebhookUnreachableError(url, "no attempts made")

        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            with trace_operation(
                "workflow_webhook_dispatch",
                project_id=payload.project_id,
                attempt=attempt,
            ) as span:
                try:
                    response = await self.http_client.post(
                        url,
                        json=payload.to_json(),
                        headers=headers,
                        timeout=self.settings.webhook_timeout_seconds,
                    )
                    span.set_attribute("http.status_code", response.status_code)
                    if not response.is_success:
                        raise WebhookUnreachableError(
                            url, f"HTTP {response.status_code}", response.status_code
                        )
                except httpx.HTTPError as e:
                    last_error = WebhookUnreachableError(url, type(e).__name__)
                except WebhookUnreachableError as e:
                    last_error = e
                else:
                    metrics.record_webhook_dispatch("success", time.monotonic() - started)
                    logger.info(
                        "workflow_webhook_delivered",
                        project_id=str(payload.project_id),
                        status_code=response.status_code,
                        attempt=attempt,
                    )
                    try:
                        return response.json()
                    except ValueError:
                        return {"status": "ok"}

            metrics.record_webhook_dispatch("error", time.monotonic() - started)
            logger.warning(
                "workflow_webhook_attempt_failed",
                project_id=str(payload.project_id),
                attempt=attempt,
                max_attempts=attempts,
                reason=last_error.reason,
            )
            if attempt < attempts:
                await asyncio.sleep(self.settings.webhook_retry_backoff_seconds * attempt)

        raise last_error

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
