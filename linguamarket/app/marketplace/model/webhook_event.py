"""Processed Stripe webhook events."""

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, JSONDocument, TimeZone


class WebhookEvent(Base):
    """Provider webhook delivery and its processing state"""

    __tablename__ = 'webhook_event'

    # Provider event id (evt_...)
    id: Mapped[str] = mapped_column(sa.String(128), primary_key=True)
    event_type: Mapped[str] = mapped_column(sa.String(128), index=True)
    status: Mapped[str] = mapped_column(sa.String(16), default='processing', comment='processing / completed / failed')
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, default=None)
    error_message: Mapped[str | None] = mapped_column(sa.Text, default=None)
    processing_started_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
