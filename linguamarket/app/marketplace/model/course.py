"""Course and checkout booking models."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, TimeZone, id_key


class Course(Base):
    """Course offered by an institution, or by the platform when institution_id is null"""

    __tablename__ = 'course'

    id: Mapped[id_key] = mapped_column(init=False)
    title: Mapped[str] = mapped_column(sa.String(256))
    institution_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey('institution.id', ondelete='SET NULL'), default=None, index=True
    )
    base_price: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0.00'))
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    pricing_period: Mapped[str] = mapped_column(sa.String(16), default='FULL_COURSE')
    max_students: Mapped[int] = mapped_column(sa.Integer, default=30)
    requires_subscription: Mapped[bool] = mapped_column(default=False)
    subscription_tier: Mapped[str | None] = mapped_column(
        sa.String(32), default=None, comment='Minimum student tier (BASIC / PREMIUM / PRO)'
    )
    marketing_type: Mapped[str] = mapped_column(sa.String(32), default='SELF_PACED')
    status: Mapped[str] = mapped_column(sa.String(32), default='DRAFT', index=True)
    start_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    end_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)


class CourseBooking(Base):
    """Checkout booking; the amount is the price locked when the student started checkout"""

    __tablename__ = 'course_booking'

    id: Mapped[id_key] = mapped_column(init=False)
    student_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    course_id: Mapped[int] = mapped_column(sa.Integer, sa.ForeignKey('course.id', ondelete='CASCADE'), index=True)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    status: Mapped[str] = mapped_column(sa.String(32), default='PENDING')
