"""Institution and institution subscription models."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, TimeZone, id_key


class Institution(Base):
    """Language school publishing courses on the marketplace"""

    __tablename__ = 'institution'

    id: Mapped[id_key] = mapped_column(init=False)
    name: Mapped[str] = mapped_column(sa.String(256), comment='Display name')

    # Platform cut in percent; admin-mutable, applies to future payments only
    commission_rate: Mapped[Decimal | None] = mapped_column(
        sa.Numeric(5, 2), default=None, comment='Platform commission rate (percent)'
    )
    subscription_plan: Mapped[str | None] = mapped_column(
        sa.String(32), default=None, comment='STARTER / PROFESSIONAL / ENTERPRISE'
    )
    is_featured: Mapped[bool] = mapped_column(default=False)
    is_approved: Mapped[bool] = mapped_column(default=False)
    status: Mapped[str] = mapped_column(sa.String(32), default='ACTIVE')
    owner_user_id: Mapped[int | None] = mapped_column(
        sa.Integer, default=None, index=True, comment='User account managing the institution'
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(sa.String(64), default=None)


class InstitutionSubscription(Base):
    """Institution plan subscription, one row per institution"""

    __tablename__ = 'institution_subscription'

    id: Mapped[id_key] = mapped_column(init=False)
    institution_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey('institution.id', ondelete='CASCADE'), unique=True, index=True
    )
    plan_type: Mapped[str] = mapped_column(sa.String(32))
    status: Mapped[str] = mapped_column(sa.String(32), index=True)
    billing_cycle: Mapped[str] = mapped_column(sa.String(16), default='MONTHLY')
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0.00'))
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    commission_rate: Mapped[Decimal | None] = mapped_column(sa.Numeric(5, 2), default=None)
    trial_start: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    trial_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    current_period_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    is_fallback: Mapped[bool] = mapped_column(default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    cancellation_reason: Mapped[str | None] = mapped_column(sa.String(512), default=None)
