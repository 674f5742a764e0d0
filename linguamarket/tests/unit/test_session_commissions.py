"""Tests for instructor and host session commissions."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from linguamarket.app.marketplace.model import LeaderCommissionTier, LiveConversationBooking
from linguamarket.src.billing.commissions import session_commission_service
from linguamarket.src.billing.shared.config import SessionFormat, SessionType
from linguamarket.src.billing.shared.exceptions import NotFoundError, ValidationError
from linguamarket.src.billing.usage import usage_quota_tracker


async def _attendees(db, session_id, count, now):
    for user_id in range(1, count + 1):
        await usage_quota_tracker.record_attendance(
            db, user_id, SessionType.VIDEO_SESSION, session_id, SessionFormat.GROUP, 60, now=now
        )
    await db.commit()


async def _bookings(db, conversation_id, count):
    for user_id in range(1, count + 1):
        db.add(LiveConversationBooking(conversation_id=conversation_id, user_id=user_id, status='CONFIRMED'))
    await db.commit()


class TestCreateSessionCommission:
    """Tests for commission creation."""

    @pytest.mark.asyncio
    async def test_default_rate_for_priced_video_session(self, db, make_video_session, now):
        """Test 5 attendees at $20 with no rate configured anywhere."""
        session = await make_video_session(price=Decimal('20.00'))
        await _attendees(db, session.id, 5, now)

        commission = await session_commission_service.create_session_commission(
            db, SessionType.VIDEO_SESSION, session.id, now=now
        )

        assert commission.leader_id == 900
        assert commission.leader_role == 'INSTRUCTOR'
        assert commission.total_revenue == Decimal('100.00')
        assert commission.commission_rate == Decimal('70')
        assert commission.commission_amount == Decimal('70.00')
        assert commission.platform_amount == Decimal('30.00')
        assert commission.tier_name == 'DEFAULT'
        assert commission.status == 'PENDING'
        assert commission.metadata_json['participant_count'] == 5

    @pytest.mark.asyncio
    async def test_second_call_returns_existing_commission(self, db, make_video_session, now):
        session = await make_video_session(price=Decimal('20.00'))
        await _attendees(db, session.id, 2, now)

        first = await session_commission_service.create_session_commission(
            db, SessionType.VIDEO_SESSION, session.id, now=now
        )
        await _attendees(db, session.id, 4, now)
        second = await session_commission_service.create_session_commission(
            db, SessionType.VIDEO_SESSION, session.id, now=now
        )

        assert second.id == first.id
        assert second.total_revenue == Decimal('40.00')

    @pytest.mark.asyncio
    async def test_session_rate_wins(self, db, make_video_session, now):
        session = await make_video_session(price=Decimal('10.00'), instructor_commission_rate=Decimal('80'))
        await _attendees(db, session.id, 1, now)

        commission = await session_commission_service.create_session_commission(
            db, SessionType.VIDEO_SESSION, session.id, now=now
        )

        assert commission.commission_amount == Decimal('8.00')
        assert commission.tier_name == 'SESSION'

    @pytest.mark.asyncio
    async def test_tier_rate_for_credit_conversation(self, db, make_conversation, now):
        """Test a credit-based conversation with two bookings under a 75% host tier."""
        db.add(LeaderCommissionTier(
            leader_role='HOST',
            tier_name='GOLD',
            commission_rate=Decimal('75'),
            effective_date=now - timedelta(days=30),
        ))
        await db.commit()
        conversation = await make_conversation(is_credit_based=True)
        await _bookings(db, conversation.id, 2)

        commission = await session_commission_service.create_session_commission(
            db, SessionType.LIVE_CONVERSATION, conversation.id, now=now
        )

        assert commission.leader_id == 901
        assert commission.leader_role == 'HOST'
        assert commission.total_revenue == Decimal('50.00')
        assert commission.commission_amount == Decimal('37.50')
        assert commission.tier_name == 'GOLD'
        assert commission.session_price is None

    @pytest.mark.asyncio
    async def test_expired_tier_is_ignored(self, db, make_conversation, now):
        db.add(LeaderCommissionTier(
            leader_role='HOST',
            tier_name='LAUNCH',
            commission_rate=Decimal('90'),
            effective_date=now - timedelta(days=60),
            end_date=now - timedelta(days=1),
        ))
        await db.commit()
        conversation = await make_conversation(price=Decimal('10.00'))
        await _bookings(db, conversation.id, 1)

        commission = await session_commission_service.create_session_commission(
            db, SessionType.LIVE_CONVERSATION, conversation.id, now=now
        )

        assert commission.commission_rate == Decimal('70')

    @pytest.mark.asyncio
    async def test_unknown_session_type(self, db):
        with pytest.raises(ValidationError) as exc_info:
            await session_commission_service.create_session_commission(db, 'WORKSHOP', 1)

        assert exc_info.value.code == 'INVALID_SESSION_TYPE'

    @pytest.mark.asyncio
    async def test_missing_session(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            await session_commission_service.create_session_commission(db, SessionType.VIDEO_SESSION, 404)

        assert exc_info.value.code == 'SESSION_NOT_FOUND'


class TestStatsAndPayout:
    """Tests for commission stats and payouts."""

    @pytest.mark.asyncio
    async def test_stats_for_one_leader(self, db, make_video_session, now):
        first = await make_video_session(price=Decimal('20.00'))
        second = await make_video_session(price=Decimal('30.00'))
        other = await make_video_session(instructor_id=999, price=Decimal('50.00'))
        for session in (first, second, other):
            await _attendees(db, session.id, 1, now)
            await session_commission_service.create_session_commission(
                db, SessionType.VIDEO_SESSION, session.id, now=now
            )

        stats = await session_commission_service.get_commission_stats(db, leader_id=900, leader_role='INSTRUCTOR')
        platform = await session_commission_service.get_commission_stats(db)

        assert stats['totalCommissions'] == 2
        assert stats['pendingCommissions'] == 2
        assert stats['totalRevenue'] == '50.00'
        assert stats['totalCommissionAmount'] == '35.00'
        assert stats['totalPlatformAmount'] == '15.00'
        assert platform['totalCommissions'] == 3

    @pytest.mark.asyncio
    async def test_payout_sums_pending_commissions(self, db, make_video_session, now):
        session = await make_video_session(price=Decimal('20.00'))
        await _attendees(db, session.id, 3, now)
        commission = await session_commission_service.create_session_commission(
            db, SessionType.VIDEO_SESSION, session.id, now=now
        )

        payout = await session_commission_service.calculate_payout(db, 900, 'INSTRUCTOR')

        assert payout['totalAmount'] == '42.00'
        assert payout['commissionIds'] == [commission.id]
        assert payout['period'] == {'start': None, 'end': None}

    @pytest.mark.asyncio
    async def test_payout_without_pending_commissions(self, db):
        with pytest.raises(ValidationError) as exc_info:
            await session_commission_service.calculate_payout(
                db, 900, 'INSTRUCTOR', end=datetime(2000, 1, 1, tzinfo=timezone.utc)
            )

        assert exc_info.value.code == 'NO_PENDING_COMMISSIONS'
