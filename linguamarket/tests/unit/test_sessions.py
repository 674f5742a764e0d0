"""Tests for live session scheduling, joining and booking."""

from datetime import timedelta
from decimal import Decimal

import pytest

from linguamarket.app.marketplace.crud.crud_session import conversation_booking_dao, session_attendance_dao
from linguamarket.src.billing.sessions import live_session_service, validate_session_schedule
from linguamarket.src.billing.shared.config import SessionFormat, SessionType
from linguamarket.src.billing.shared.exceptions import (
    ConflictError,
    NotFoundError,
    PolicyBlockedError,
    ValidationError,
)
from linguamarket.src.billing.usage import usage_quota_tracker


class TestValidateSessionSchedule:
    """Tests for session validation."""

    @pytest.mark.parametrize('start_offset, end_offset, kwargs, code', [
        (timedelta(hours=2), timedelta(hours=1), {'price': 10}, 'INVALID_TIME_RANGE'),
        (timedelta(hours=-1), timedelta(hours=1), {'price': 10}, 'START_IN_PAST'),
        (timedelta(hours=1), timedelta(hours=2), {'price': 10, 'max_participants': 0}, 'INVALID_CAPACITY'),
        (timedelta(hours=1), timedelta(hours=2), {'price': -5}, 'NEGATIVE_PRICE'),
        (timedelta(hours=1), timedelta(hours=2), {'is_credit_based': True, 'credit_price': 0}, 'INVALID_CREDIT_PRICE'),
        (timedelta(hours=1), timedelta(hours=2), {'price': None}, 'PRICING_REQUIRED'),
        (timedelta(hours=1), timedelta(hours=2), {'price': 10, 'commission_rate': 120}, 'INVALID_COMMISSION_RATE'),
    ])
    def test_rejections(self, now, start_offset, end_offset, kwargs, code):
        with pytest.raises(ValidationError) as exc_info:
            validate_session_schedule(now + start_offset, now + end_offset, now, **kwargs)

        assert exc_info.value.code == code

    def test_credit_session_needs_no_price(self, now):
        validate_session_schedule(now + timedelta(hours=1), now + timedelta(hours=2), now, is_credit_based=True)


class TestScheduling:
    """Tests for creating sessions."""

    @pytest.mark.asyncio
    async def test_create_video_session(self, db, now):
        session = await live_session_service.create_video_session(
            db,
            instructor_id=900,
            title='Business English',
            start_time=now + timedelta(days=2),
            end_time=now + timedelta(days=2, minutes=90),
            price='25.00',
            max_participants=6,
            instructor_commission_rate='65',
            now=now,
        )

        assert session.id is not None
        assert session.price == Decimal('25.00')
        assert session.instructor_commission_rate == Decimal('65')
        assert session.status == 'SCHEDULED'

    @pytest.mark.asyncio
    async def test_create_conversation_in_the_past(self, db, now):
        with pytest.raises(ValidationError) as exc_info:
            await live_session_service.create_conversation(
                db,
                host_id=901,
                title='Too late',
                start_time=now - timedelta(hours=1),
                end_time=now + timedelta(hours=1),
                price=Decimal('5.00'),
                now=now,
            )

        assert exc_info.value.code == 'START_IN_PAST'


class TestJoinVideoSession:
    """Tests for joining video sessions."""

    @pytest.mark.asyncio
    async def test_join_records_attendance(self, db, make_video_session, make_student_subscription, now):
        await make_student_subscription(20, tier='BASIC')
        session = await make_video_session()

        attendance = await live_session_service.join_video_session(db, session.id, 20, now=now)

        assert attendance.session_format == SessionFormat.GROUP
        assert attendance.minutes == 60
        assert attendance.month_key == '2026-03'

    @pytest.mark.asyncio
    async def test_joining_twice_returns_first_attendance(
        self, db, make_video_session, make_student_subscription, now
    ):
        await make_student_subscription(20, tier='BASIC')
        session = await make_video_session()

        first = await live_session_service.join_video_session(db, session.id, 20, now=now)
        second = await live_session_service.join_video_session(db, session.id, 20, now=now)

        assert second.id == first.id
        assert await session_attendance_dao.count_by_session(db, SessionType.VIDEO_SESSION, session.id) == 1

    @pytest.mark.asyncio
    async def test_single_seat_session_is_one_to_one_and_fills_up(
        self, db, make_video_session, make_student_subscription, now
    ):
        await make_student_subscription(20, tier='PREMIUM')
        await make_student_subscription(21, tier='PREMIUM')
        session = await make_video_session(max_participants=1)
        session_id = session.id

        attendance = await live_session_service.join_video_session(db, session_id, 20, now=now)
        assert attendance.session_format == SessionFormat.ONE_TO_ONE

        with pytest.raises(ConflictError) as exc_info:
            await live_session_service.join_video_session(db, session_id, 21, now=now)

        assert exc_info.value.code == 'SESSION_FULL'
        assert exc_info.value.details['maxParticipants'] == 1

    @pytest.mark.asyncio
    async def test_exhausted_quota_blocks_join(self, db, make_video_session, make_student_subscription, now):
        """Test that a BASIC student with 4 group sessions this month cannot join a fifth."""
        await make_student_subscription(20, tier='BASIC')
        for past_session_id in range(100, 104):
            await usage_quota_tracker.record_attendance(
                db, 20, SessionType.VIDEO_SESSION, past_session_id, SessionFormat.GROUP, 30, now=now
            )
        await db.commit()
        session = await make_video_session()
        session_id = session.id

        with pytest.raises(PolicyBlockedError) as exc_info:
            await live_session_service.join_video_session(db, session_id, 20, now=now)

        assert exc_info.value.code == 'GROUP_SESSIONS_EXHAUSTED'
        assert exc_info.value.redirect_url == '/subscription-upgrade'
        assert await session_attendance_dao.count_by_session(db, SessionType.VIDEO_SESSION, session_id) == 0

    @pytest.mark.asyncio
    async def test_student_without_subscription_is_blocked(self, db, make_video_session, now):
        session = await make_video_session()
        session_id = session.id

        with pytest.raises(PolicyBlockedError):
            await live_session_service.join_video_session(db, session_id, 20, now=now)

    @pytest.mark.asyncio
    async def test_cancelled_session(self, db, make_video_session, make_student_subscription, now):
        await make_student_subscription(20, tier='BASIC')
        session = await make_video_session(status='CANCELLED')
        session_id = session.id

        with pytest.raises(ConflictError) as exc_info:
            await live_session_service.join_video_session(db, session_id, 20, now=now)

        assert exc_info.value.code == 'SESSION_CANCELLED'

    @pytest.mark.asyncio
    async def test_missing_session(self, db, now):
        with pytest.raises(NotFoundError) as exc_info:
            await live_session_service.join_video_session(db, 404, 20, now=now)

        assert exc_info.value.code == 'SESSION_NOT_FOUND'


class TestBookConversation:
    """Tests for booking live conversations."""

    @pytest.mark.asyncio
    async def test_booking_confirms_and_counts_usage(self, db, make_conversation, make_student_subscription, now):
        await make_student_subscription(30, tier='BASIC')
        conversation = await make_conversation()

        booking = await live_session_service.book_conversation(db, conversation.id, 30, now=now)
        totals = await usage_quota_tracker.get_totals(db, 30, now)

        assert booking.status == 'CONFIRMED'
        assert totals.group == 1
        assert totals.minutes == 45

    @pytest.mark.asyncio
    async def test_booking_twice_returns_first_booking(self, db, make_conversation, make_student_subscription, now):
        await make_student_subscription(30, tier='BASIC')
        conversation = await make_conversation()

        first = await live_session_service.book_conversation(db, conversation.id, 30, now=now)
        second = await live_session_service.book_conversation(db, conversation.id, 30, now=now)

        assert second.id == first.id
        assert await conversation_booking_dao.count_confirmed(db, conversation.id) == 1

    @pytest.mark.asyncio
    async def test_full_conversation(self, db, make_conversation, make_student_subscription, now):
        for user_id in (30, 31, 32):
            await make_student_subscription(user_id, tier='PREMIUM')
        conversation = await make_conversation(max_participants=2)
        conversation_id = conversation.id
        await live_session_service.book_conversation(db, conversation_id, 30, now=now)
        await live_session_service.book_conversation(db, conversation_id, 31, now=now)

        with pytest.raises(ConflictError) as exc_info:
            await live_session_service.book_conversation(db, conversation_id, 32, now=now)

        assert exc_info.value.code == 'SESSION_FULL'
