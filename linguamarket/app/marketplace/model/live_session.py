"""Live session models: video sessions, conversations, bookings and attendance."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, TimeZone, id_key
from linguamarket.utils.timezone import timezone


class VideoSession(Base):
    """Instructor-led video session"""

    __tablename__ = 'video_session'

    id: Mapped[id_key] = mapped_column(init=False)
    instructor_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    title: Mapped[str] = mapped_column(sa.String(256))
    start_time: Mapped[datetime] = mapped_column(TimeZone)
    end_time: Mapped[datetime] = mapped_column(TimeZone)
    institution_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey('institution.id', ondelete='SET NULL'), default=None, index=True
    )
    max_participants: Mapped[int] = mapped_column(sa.Integer, default=10)
    price: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0.00'))
    is_credit_based: Mapped[bool] = mapped_column(default=False)
    credit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(10, 2), default=None)
    # Instructor's share (percent); null falls back to the tier table
    instructor_commission_rate: Mapped[Decimal | None] = mapped_column(sa.Numeric(5, 2), default=None)
    status: Mapped[str] = mapped_column(sa.String(32), default='SCHEDULED')


class LiveConversation(Base):
    """Host-led live conversation"""

    __tablename__ = 'live_conversation'

    id: Mapped[id_key] = mapped_column(init=False)
    host_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    title: Mapped[str] = mapped_column(sa.String(256))
    start_time: Mapped[datetime] = mapped_column(TimeZone)
    end_time: Mapped[datetime] = mapped_column(TimeZone)
    max_participants: Mapped[int] = mapped_column(sa.Integer, default=8)
    price: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0.00'))
    is_credit_based: Mapped[bool] = mapped_column(default=False)
    credit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(10, 2), default=None)
    host_commission_rate: Mapped[Decimal | None] = mapped_column(sa.Numeric(5, 2), default=None)
    status: Mapped[str] = mapped_column(sa.String(32), default='SCHEDULED')


class LiveConversationBooking(Base):
    """Participant booking for a live conversation"""

    __tablename__ = 'live_conversation_booking'

    id: Mapped[id_key] = mapped_column(init=False)
    conversation_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey('live_conversation.id', ondelete='CASCADE'), index=True
    )
    user_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    status: Mapped[str] = mapped_column(sa.String(32), default='CONFIRMED')

    __table_args__ = (
        sa.UniqueConstraint('conversation_id', 'user_id', name='uq_conversation_booking_user'),
        {'comment': 'Live conversation bookings'},
    )


class SessionAttendance(Base):
    """Attendance event; the unit of monthly usage accounting"""

    __tablename__ = 'session_attendance'

    id: Mapped[id_key] = mapped_column(init=False)
    user_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    session_type: Mapped[str] = mapped_column(sa.String(32))
    session_id: Mapped[int] = mapped_column(sa.Integer)
    session_format: Mapped[str] = mapped_column(sa.String(16), comment='GROUP / ONE_TO_ONE')
    minutes: Mapped[int] = mapped_column(sa.Integer)
    month_key: Mapped[str] = mapped_column(sa.String(7), index=True, comment='YYYY-MM (UTC)')
    attended_at: Mapped[datetime] = mapped_column(TimeZone, default_factory=timezone.now)

    __table_args__ = (
        sa.UniqueConstraint('session_type', 'session_id', 'user_id', name='uq_session_attendance_user'),
        sa.Index('ix_session_attendance_user_month', 'user_id', 'month_key'),
        {'comment': 'Session attendance events'},
    )
