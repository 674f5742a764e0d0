"""
Live Session Service

Scheduling and booking of instructor video sessions and host-led live
conversations. Joining or booking is gated by the session's capacity and
by the participant's monthly quota, and records one attendance event.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_session import (
    conversation_booking_dao,
    live_conversation_dao,
    session_attendance_dao,
    video_session_dao,
)
from linguamarket.app.marketplace.model import (
    LiveConversation,
    LiveConversationBooking,
    SessionAttendance,
    VideoSession,
)
from linguamarket.database.db import atomic
from linguamarket.src.billing.shared.config import (
    DEFAULT_SESSION_MINUTES,
    SUBSCRIPTION_UPGRADE_URL,
    BookingStatus,
    SessionFormat,
    SessionType,
)
from linguamarket.src.billing.shared.exceptions import (
    ConflictError,
    NotFoundError,
    PolicyBlockedError,
    ValidationError,
)
from linguamarket.src.billing.usage.tracker import QUOTA_MESSAGES, usage_quota_tracker
from linguamarket.utils.timezone import timezone

logger = logging.getLogger(__name__)

CANCELLED_SESSION_STATUS = 'CANCELLED'


def _decimal(value, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}", code="INVALID_AMOUNT", field=field)


def validate_session_schedule(
    start_time: datetime,
    end_time: datetime,
    now: datetime,
    price=None,
    is_credit_based: bool = False,
    credit_price=None,
    max_participants: int = 1,
    commission_rate=None,
) -> None:
    """
    Validate a new session before it is written.

    Raises:
        ValidationError: Bad window, pricing, capacity or commission rate
    """
    if start_time >= end_time:
        raise ValidationError("Start time must be before end time", code="INVALID_TIME_RANGE", field='start_time')
    if start_time <= now:
        raise ValidationError("Start time must be in the future", code="START_IN_PAST", field='start_time')
    if max_participants < 1:
        raise ValidationError(
            "A session needs room for at least one participant",
            code="INVALID_CAPACITY",
            field='max_participants'
        )

    price = _decimal(price, 'price')
    credit_price = _decimal(credit_price, 'credit_price')
    if price is not None and price < 0:
        raise ValidationError("Price must not be negative", code="NEGATIVE_PRICE", field='price')
    if is_credit_based:
        if credit_price is not None and credit_price <= 0:
            raise ValidationError("Credit price must be positive", code="INVALID_CREDIT_PRICE", field='credit_price')
    elif price is None:
        raise ValidationError(
            "A session must have a price or be credit based",
            code="PRICING_REQUIRED",
            field='price'
        )

    rate = _decimal(commission_rate, 'commission_rate')
    if rate is not None and (rate < 0 or rate > 100):
        raise ValidationError(
            "Commission rate must be between 0 and 100",
            code="INVALID_COMMISSION_RATE",
            field='commission_rate'
        )


def session_minutes(session: Union[VideoSession, LiveConversation]) -> int:
    minutes = int((session.end_time - session.start_time).total_seconds() // 60)
    return minutes if minutes > 0 else DEFAULT_SESSION_MINUTES


def session_format_of(session: Union[VideoSession, LiveConversation]) -> str:
    """A session with a single seat is one-to-one, anything larger is a group session."""
    return SessionFormat.ONE_TO_ONE if session.max_participants == 1 else SessionFormat.GROUP


class LiveSessionService:
    """
    Video session and live conversation management.

    Usage:
        from linguamarket.src.billing.sessions import live_session_service

        attendance = await live_session_service.join_video_session(db, session_id, user_id)
    """

    # =========================================================================
    # Scheduling
    # =========================================================================

    async def create_video_session(
        self,
        db: AsyncSession,
        instructor_id: int,
        title: str,
        start_time: datetime,
        end_time: datetime,
        price=Decimal('0.00'),
        is_credit_based: bool = False,
        credit_price=None,
        max_participants: int = 10,
        institution_id: Optional[int] = None,
        instructor_commission_rate=None,
        now: Optional[datetime] = None,
    ) -> VideoSession:
        """Schedule an instructor video session."""
        validate_session_schedule(
            start_time, end_time, now or timezone.now(),
            price=price,
            is_credit_based=is_credit_based,
            credit_price=credit_price,
            max_participants=max_participants,
            commission_rate=instructor_commission_rate,
        )
        session = VideoSession(
            instructor_id=instructor_id,
            title=title,
            start_time=start_time,
            end_time=end_time,
            institution_id=institution_id,
            max_participants=max_participants,
            price=_decimal(price, 'price') or Decimal('0.00'),
            is_credit_based=is_credit_based,
            credit_price=_decimal(credit_price, 'credit_price'),
            instructor_commission_rate=_decimal(instructor_commission_rate, 'commission_rate'),
        )
        async with atomic(db):
            db.add(session)
            await db.flush()
        logger.info(f"[SESSION] Instructor {instructor_id} scheduled video session {session.id}")
        return session

    async def create_conversation(
        self,
        db: AsyncSession,
        host_id: int,
        title: str,
        start_time: datetime,
        end_time: datetime,
        price=Decimal('0.00'),
        is_credit_based: bool = False,
        credit_price=None,
        max_participants: int = 8,
        host_commission_rate=None,
        now: Optional[datetime] = None,
    ) -> LiveConversation:
        """Schedule a host-led live conversation."""
        validate_session_schedule(
            start_time, end_time, now or timezone.now(),
            price=price,
            is_credit_based=is_credit_based,
            credit_price=credit_price,
            max_participants=max_participants,
            commission_rate=host_commission_rate,
        )
        conversation = LiveConversation(
            host_id=host_id,
            title=title,
            start_time=start_time,
            end_time=end_time,
            max_participants=max_participants,
            price=_decimal(price, 'price') or Decimal('0.00'),
            is_credit_based=is_credit_based,
            credit_price=_decimal(credit_price, 'credit_price'),
            host_commission_rate=_decimal(host_commission_rate, 'commission_rate'),
        )
        async with atomic(db):
            db.add(conversation)
            await db.flush()
        logger.info(f"[SESSION] Host {host_id} scheduled live conversation {conversation.id}")
        return conversation

    # =========================================================================
    # Joining and booking
    # =========================================================================

    async def join_video_session(
        self,
        db: AsyncSession,
        session_id: int,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> SessionAttendance:
        """
        Join a video session.

        Joining twice returns the first attendance.

        Raises:
            NotFoundError: Session missing
            ConflictError: Session cancelled or full
            PolicyBlockedError: Monthly quota exhausted
        """
        now = now or timezone.now()
        session_type = SessionType.VIDEO_SESSION
        try:
            async with atomic(db):
                session = await video_session_dao.get_for_update(db, session_id)
                if session is None:
                    raise NotFoundError('Video session', session_id, code='SESSION_NOT_FOUND')
                self._ensure_open(session)

                existing = await session_attendance_dao.get_by_user(db, session_type, session_id, user_id)
                if existing is not None:
                    return existing

                taken = await session_attendance_dao.count_by_session(db, session_type, session_id)
                self._ensure_capacity(session, taken)
                session_format = session_format_of(session)
                await self._ensure_quota(db, user_id, session_format, now)

                attendance = await usage_quota_tracker.record_attendance(
                    db, user_id, session_type, session_id, session_format, session_minutes(session), now=now
                )
        except IntegrityError:
            raise ConflictError("You have already joined this session.", code="ALREADY_JOINED")

        logger.info(f"[SESSION] User {user_id} joined video session {session_id}")
        return attendance

    async def book_conversation(
        self,
        db: AsyncSession,
        conversation_id: int,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> LiveConversationBooking:
        """
        Book a seat in a live conversation.

        Booking twice returns the first booking.

        Raises:
            NotFoundError: Conversation missing
            ConflictError: Conversation cancelled or full
            PolicyBlockedError: Monthly quota exhausted
        """
        now = now or timezone.now()
        session_type = SessionType.LIVE_CONVERSATION
        try:
            async with atomic(db):
                conversation = await live_conversation_dao.get_for_update(db, conversation_id)
                if conversation is None:
                    raise NotFoundError('Live conversation', conversation_id, code='SESSION_NOT_FOUND')
                self._ensure_open(conversation)

                existing = await conversation_booking_dao.get_by_user(db, conversation_id, user_id)
                if existing is not None:
                    return existing

                taken = await conversation_booking_dao.count_confirmed(db, conversation_id)
                self._ensure_capacity(conversation, taken)
                session_format = session_format_of(conversation)
                await self._ensure_quota(db, user_id, session_format, now)

                booking = LiveConversationBooking(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    status=BookingStatus.CONFIRMED,
                )
                db.add(booking)
                await usage_quota_tracker.record_attendance(
                    db, user_id, session_type, conversation_id, session_format,
                    session_minutes(conversation), now=now
                )
        except IntegrityError:
            raise ConflictError("You have already booked this conversation.", code="ALREADY_BOOKED")

        logger.info(f"[SESSION] User {user_id} booked live conversation {conversation_id}")
        return booking

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_open(self, session: Union[VideoSession, LiveConversation]) -> None:
        if session.status == CANCELLED_SESSION_STATUS:
            raise ConflictError("This session has been cancelled", code="SESSION_CANCELLED")

    def _ensure_capacity(self, session: Union[VideoSession, LiveConversation], taken: int) -> None:
        if taken >= session.max_participants:
            raise ConflictError(
                "This session is full",
                code="SESSION_FULL",
                details={'maxParticipants': session.max_participants}
            )

    async def _ensure_quota(self, db: AsyncSession, user_id: int, session_format: str, now: datetime) -> None:
        check = await usage_quota_tracker.check_quota(db, user_id, session_format, now=now)
        if not check.allowed:
            raise PolicyBlockedError(
                message=QUOTA_MESSAGES[check.reason],
                code=check.reason,
                redirect_url=SUBSCRIPTION_UPGRADE_URL,
                details={'reasons': check.reasons},
            )


live_session_service = LiveSessionService()
