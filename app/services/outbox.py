"""
Outbox Service - Durable delivery of outbound notifications.

Events are written in the same transaction as the business change that
produced them, then posted by a separate delivery pass with exponential
backoff. Delivery failures never affect the originating operation.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import OutboxEvent
from app.exceptions import InvalidTransitionError
from app.models.api import OutboxStatus
from app.models.domain import OutboxDeliveryStats, OutboxEventData
from app.observability.metrics import metrics

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1000


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def next_attempt_delay(attempts: int, base_seconds: int) -> timedelta:
    """Backoff after the n-th failed attempt: base * 2**(n-1)."""
    return timedelta(seconds=base_seconds * (2 ** max(0, attempts - 1)))


def outbox_to_domain(event: OutboxEvent) -> OutboxEventData:
    """Convert ORM outbox event to domain model."""
    return OutboxEventData(
        event_id=event.id,
        event_type=event.event_type,
        aggregate_id=event.aggregate_id,
        target_url=event.target_url,
        status=OutboxStatus(event.status),
        attempts=event.attempts,
        next_attempt_at=event.next_attempt_at,
        last_error=event.last_error,
        delivered_at=event.delivered_at,
        created_at=event.created_at,
    )


class OutboxService:
    """Record and deliver outbound webhook events."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize outbox with session and optional injected HTTP client."""
        self.session = session
        self.settings = settings or get_settings()
        self._http_client = http_client

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        target_url: str,
        payload: dict[str, Any],
    ) -> OutboxEvent:
        """
        Record intent to notify. Does not flush or commit.

        The caller commits the event together with its business change.
        """
        now = _utc_now()
        event = OutboxEvent(
            id=uuid4(),
            event_type=event_type,
            aggregate_id=aggregate_id,
            target_url=target_url,
            payload=payload,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            next_attempt_at=now,
            created_at=now,
        )
        self.session.add(event)
        logger.info(
            "outbox_event_enqueued",
            event_id=str(event.id),
            event_type=event_type,
            aggregate_id=aggregate_id,
        )
        return event

    async def deliver_due(self, limit: int | None = None) -> OutboxDeliveryStats:
        """
        Deliver pending events whose next attempt is due.

        Rows are locked with SKIP LOCKED so concurrent workers never post
        the same event twice.
        """
        batch = limit or self.settings.outbox_batch_size
        events = await self._lock_due_events(batch)
        delivered = retried = failed = 0

        if not events:
            return OutboxDeliveryStats(delivered=0, retried=0, failed=0)

        client = self._http_client or httpx.AsyncClient(
            timeout=self.settings.webhook_timeout_seconds
        )
        try:
            for event in events:
                outcome = await self._attempt(client, event)
                if outcome == OutboxStatus.DELIVERED:
                    delivered += 1
                elif outcome == OutboxStatus.FAILED:
                    failed += 1
                else:
                    retried += 1
        finally:
            if self._http_client is None:
                await client.aclose()

        await self.session.commit()
        logger.info(
            "outbox_delivery_pass_complete",
            delivered=delivered,
            retried=retried,
            failed=failed,
        )
        return OutboxDeliveryStats(delivered=delivered, retried=retried, failed=failed)

    async def list_events(
        self, status: OutboxStatus | None = None, limit: int = 100
    ) -> list[OutboxEventData]:
        """List outbox events, newest first."""
        stmt = select(OutboxEvent).order_by(OutboxEvent.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(OutboxEvent.status == status.value)
        result = await self.session.execute(stmt)
        return [outbox_to_domain(e) for e in result.scalars().all()]

    async def retry_event(self, event_id: UUID) -> OutboxEventData | None:
        """
        Re-queue a failed event with a fresh attempt budget.

        Raises:
            InvalidTransitionError: Event is not failed
        """
        event = await self.session.get(
            OutboxEvent, event_id, with_for_update=True, populate_existing=True
        )
        if event is None:
            return None
        if event.status != OutboxStatus.FAILED.value:
            raise InvalidTransitionError("outbox event", event.status, "retry")
        event.status = OutboxStatus.PENDING.value
        event.attempts = 0
        event.last_error = None
        event.next_attempt_at = _utc_now()
        await self.session.commit()
        logger.info("outbox_event_requeued", event_id=str(event.id), event_type=event.event_type)
        return outbox_to_domain(event)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _attempt(self, client: httpx.AsyncClient, event: OutboxEvent) -> OutboxStatus:
        """Post one event and update its delivery state."""
        event.attempts = event.attempts + 1
        try:
            response = await client.post(event.target_url, json=event.payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            event.last_error = str(e)[:MAX_ERROR_LENGTH] or type(e).__name__
            if event.attempts >= self.settings.outbox_max_attempts:
                event.status = OutboxStatus.FAILED.value
                event.next_attempt_at = None
                metrics.record_outbox_delivery("failed")
                logger.error(
                    "outbox_event_failed",
                    event_id=str(event.id),
                    event_type=event.event_type,
                    attempts=event.attempts,
                    error=event.last_error,
                )
                return OutboxStatus.FAILED

            event.next_attempt_at = _utc_now() + next_attempt_delay(
                event.attempts, self.settings.outbox_backoff_seconds
            )
            metrics.record_outbox_delivery("retry")
            logger.warning(
                "outbox_event_retry_scheduled",
                event_id=str(event.id),
                attempts=event.attempts,
                next_attempt_at=event.next_attempt_at.isoformat(),
                error=event.last_error,
            )
            return OutboxStatus.PENDING

        event.status = OutboxStatus.DELIVERED.value
        event.delivered_at = _utc_now()
        event.next_attempt_at = None
        event.last_error = None
        metrics.record_outbox_delivery("delivered")
        logger.info(
            "outbox_event_delivered",
            event_id=str(event.id),
            event_type=event.event_type,
            attempts=event.attempts,
        )
        return OutboxStatus.DELIVERED

    async def _lock_due_events(self, limit: int) -> list[OutboxEvent]:
        """Lock pending events that are due, oldest first."""
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.status == OutboxStatus.PENDING.value,
                OutboxEvent.next_attempt_at <= _utc_now(),
            )
            .order_by(OutboxEvent.next_attempt_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
