"""Student subscription and subscription billing models."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, TimeZone, id_key


class StudentSubscription(Base):
    """Student subscription, one row per student; re-subscribing updates it in place"""

    __tablename__ = 'student_subscription'

    id: Mapped[id_key] = mapped_column(init=False)
    student_id: Mapped[int] = mapped_column(sa.Integer, unique=True, index=True)
    tier: Mapped[str] = mapped_column(sa.String(32), comment='FREE / BASIC / PREMIUM / PRO')
    status: Mapped[str] = mapped_column(sa.String(32), index=True)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0.00'))
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    trial_start: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    trial_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    current_period_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    next_payment_attempt_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    is_fallback: Mapped[bool] = mapped_column(default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)


class SubscriptionBillingRecord(Base):
    """One row per subscription charge attempt"""

    __tablename__ = 'subscription_billing_record'

    id: Mapped[id_key] = mapped_column(init=False)
    subscription_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    subscriber_type: Mapped[str] = mapped_column(sa.String(16), comment='STUDENT / INSTITUTION')
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    status: Mapped[str] = mapped_column(sa.String(16), comment='PENDING / PAID / FAILED')
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    attempt_number: Mapped[int] = mapped_column(sa.Integer, default=1)
    payment_intent_id: Mapped[str | None] = mapped_column(sa.String(128), default=None, index=True)
    failure_reason: Mapped[str | None] = mapped_column(sa.String(512), default=None)
    next_attempt_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    description: Mapped[str | None] = mapped_column(sa.String(256), default=None)
