"""
Webhook Lock

Deduplicates Stripe webhook deliveries through the webhook_event table so
at-least-once delivery never applies an event twice.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_admin import webhook_event_dao
from linguamarket.app.marketplace.model import WebhookEvent
from linguamarket.utils.timezone import timezone

logger = logging.getLogger(__name__)

# Events stuck in processing longer than this are retried
STUCK_PROCESSING_WINDOW = timedelta(minutes=5)


class WebhookStatus:
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class WebhookLock:
    """
    Database-backed webhook lock.

    Completed events are skipped, events still processing inside the
    5 minute window are skipped, stuck and failed events are retried.
    """

    @classmethod
    async def check_and_mark_webhook_processing(
        cls,
        db: AsyncSession,
        event_id: str,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[bool, str]:
        """
        Check if a webhook can be processed and mark it as in-progress.

        Args:
            db: Database session
            event_id: Stripe event ID
            event_type: Type of webhook event
            payload: Optional event payload to store

        Returns:
            Tuple of (can_process: bool, reason: str)
        """
        now = timezone.now()
        existing = await webhook_event_dao.get(db, event_id)

        if existing:
            if existing.status == WebhookStatus.COMPLETED:
                return False, "Event already processed"
            if existing.status == WebhookStatus.PROCESSING:
                started = existing.processing_started_at or existing.created_time
                if now - started < STUCK_PROCESSING_WINDOW:
                    return False, "Event currently being processed"
                logger.warning(f"[WEBHOOK LOCK] Event {event_id} stuck in processing, allowing retry")
            elif existing.status == WebhookStatus.FAILED:
                logger.info(f"[WEBHOOK LOCK] Retrying failed event {event_id}")

            existing.status = WebhookStatus.PROCESSING
            existing.processing_started_at = now
            existing.error_message = None
        else:
            db.add(WebhookEvent(
                id=event_id,
                event_type=event_type,
                status=WebhookStatus.PROCESSING,
                payload=payload,
                processing_started_at=now,
            ))
        await db.commit()
        return True, "Processing"

    @classmethod
    async def mark_webhook_completed(cls, db: AsyncSession, event_id: str) -> bool:
        """
        Mark a webhook event as successfully processed.

        Returns:
            True if the event row exists
        """
        event = await webhook_event_dao.get(db, event_id)
        if event is None:
            return False
        event.status = WebhookStatus.COMPLETED
        event.completed_at = timezone.now()
        await db.commit()
        logger.debug(f"[WEBHOOK LOCK] Marked event {event_id} as completed")
        return True

    @classmethod
    async def mark_webhook_failed(cls, db: AsyncSession, event_id: str, error_message: str) -> bool:
        """
        Mark a webhook event as failed.

        Args:
            db: Database session
            event_id: Stripe event ID
            error_message: Error description

        Returns:
            True if the event row exists
        """
        event = await webhook_event_dao.get(db, event_id)
        if event is None:
            return False
        event.status = WebhookStatus.FAILED
        event.error_message = error_message[:1000]
        event.completed_at = timezone.now()
        await db.commit()
        logger.warning(f"[WEBHOOK LOCK] Marked event {event_id} as failed: {error_message[:100]}")
        return True
