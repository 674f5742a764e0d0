"""
Session Commission Service

Commissions owed to instructors (video sessions) and hosts (live
conversations). The rate here is the LEADER's share of session revenue;
the platform keeps the remainder.

Rate resolution order:
1. Rate stored on the session
2. LeaderCommissionTier in force for the role
3. DEFAULT_LEADER_COMMISSION_RATE (70)
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_commission import leader_commission_tier_dao, session_commission_dao
from linguamarket.app.marketplace.crud.crud_session import (
    conversation_booking_dao,
    live_conversation_dao,
    session_attendance_dao,
    video_session_dao,
)
from linguamarket.app.marketplace.model import SessionCommission
from linguamarket.database.db import atomic
from linguamarket.src.billing.domain.metadata import SessionCommissionMetadata
from linguamarket.src.billing.shared.config import (
    DEFAULT_LEADER_COMMISSION_RATE,
    DEFAULT_LEADER_TIER_NAME,
    CommissionStatus,
    LeaderRole,
    SessionType,
)
from linguamarket.src.billing.shared.exceptions import NotFoundError, ValidationError
from linguamarket.utils.timezone import timezone

from .calculator import commission_calculator

logger = logging.getLogger(__name__)


async def resolve_leader_rate(
    db: AsyncSession,
    session_rate: Optional[Decimal],
    leader_role: str,
    now: datetime,
) -> Tuple[Decimal, str]:
    """
    Leader share for a session.

    Returns:
        (rate in percent, tier name)
    """
    if session_rate is not None:
        return Decimal(str(session_rate)), 'SESSION'
    tier = await leader_commission_tier_dao.get_current(db, leader_role, now)
    if tier is not None:
        return Decimal(str(tier.commission_rate)), tier.tier_name
    return DEFAULT_LEADER_COMMISSION_RATE, DEFAULT_LEADER_TIER_NAME


def _summarize(commissions: Iterable[SessionCommission]) -> Dict:
    commissions = list(commissions)
    pending = [c for c in commissions if c.status == CommissionStatus.PENDING]
    paid = [c for c in commissions if c.status == CommissionStatus.PAID]
    return {
        'totalCommissions': len(commissions),
        'pendingCommissions': len(pending),
        'paidCommissions': len(paid),
        'totalRevenue': str(sum((c.total_revenue for c in commissions), Decimal('0.00'))),
        'totalCommissionAmount': str(sum((c.commission_amount for c in commissions), Decimal('0.00'))),
        'totalPlatformAmount': str(sum((c.platform_amount for c in commissions), Decimal('0.00'))),
        'pendingCommissionAmount': str(sum((c.commission_amount for c in pending), Decimal('0.00'))),
    }


class SessionCommissionService:
    """
    Instructor and host commission bookkeeping.

    Usage:
        from linguamarket.src.billing.commissions import session_commission_service

        commission = await session_commission_service.create_session_commission(
            db, SessionType.VIDEO_SESSION, session_id
        )
    """

    async def create_session_commission(
        self,
        db: AsyncSession,
        session_type: str,
        session_id: int,
        now: Optional[datetime] = None,
    ) -> SessionCommission:
        """
        Record the leader's commission for a finished session.

        Calling it again for the same session returns the existing row.

        Raises:
            ValidationError: Unknown session type
            NotFoundError: Session missing
        """
        now = now or timezone.now()
        if session_type == SessionType.VIDEO_SESSION:
            session = await video_session_dao.get(db, session_id)
            if session is None:
                raise NotFoundError('Video session', session_id, code='SESSION_NOT_FOUND')
            leader_id, leader_role = session.instructor_id, LeaderRole.INSTRUCTOR
            session_rate = session.instructor_commission_rate
            count = await session_attendance_dao.count_by_session(db, session_type, session_id)
        elif session_type == SessionType.LIVE_CONVERSATION:
            session = await live_conversation_dao.get(db, session_id)
            if session is None:
                raise NotFoundError('Live conversation', session_id, code='SESSION_NOT_FOUND')
            leader_id, leader_role = session.host_id, LeaderRole.HOST
            session_rate = session.host_commission_rate
            count = await conversation_booking_dao.count_confirmed(db, session_id)
        else:
            raise ValidationError(
                f"Unknown session type: {session_type}",
                code="INVALID_SESSION_TYPE",
                field='session_type'
            )

        existing = await session_commission_dao.get_for_session(db, session_type, session_id, leader_id)
        if existing is not None:
            logger.info(f"[COMMISSION] {session_type} {session_id} already has commission {existing.id}")
            return existing

        rate, tier_name = await resolve_leader_rate(db, session_rate, leader_role, now)
        split = commission_calculator.calculate_session_commission(
            session_type=session_type,
            is_credit_based=session.is_credit_based,
            count=count,
            leader_rate=rate,
            price=session.price,
            credit_price=session.credit_price,
        )
        commission = SessionCommission(
            leader_id=leader_id,
            leader_role=leader_role,
            session_type=session_type,
            session_id=session_id,
            total_revenue=split.total_revenue,
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            platform_amount=split.remainder_amount,
            session_price=None if session.is_credit_based else session.price,
            credit_price=session.credit_price if session.is_credit_based else None,
            tier_name=tier_name,
            status=CommissionStatus.PENDING,
            metadata_json=SessionCommissionMetadata(
                participant_count=count,
                is_credit_based=session.is_credit_based,
                calculated_at=now,
            ).to_dict(),
        )

        try:
            async with atomic(db):
                db.add(commission)
                await db.flush()
        except IntegrityError:
            existing = await session_commission_dao.get_for_session(db, session_type, session_id, leader_id)
            logger.info(f"[COMMISSION] Concurrent commission for {session_type} {session_id}, returning existing")
            return existing

        logger.info(
            f"[COMMISSION] {leader_role} {leader_id} earns {split.commission_amount} "
            f"({split.commission_rate}%, tier={tier_name}) on {session_type} {session_id}"
        )
        return commission

    async def get_commission_stats(
        self,
        db: AsyncSession,
        leader_id: Optional[int] = None,
        leader_role: Optional[str] = None,
    ) -> Dict:
        """Commission counts and totals, for one leader or the whole platform."""
        if leader_id is not None and leader_role:
            commissions = await session_commission_dao.get_by_leader(db, leader_id, leader_role)
        else:
            commissions = await session_commission_dao.get_all(db)
        return _summarize(commissions)

    async def calculate_payout(
        self,
        db: AsyncSession,
        leader_id: int,
        leader_role: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict:
        """
        Payout owed to a leader for pending commissions in a period.

        Raises:
            ValidationError: No pending commissions
        """
        pending = await session_commission_dao.get_by_leader(
            db, leader_id, leader_role, start=start, end=end, status=CommissionStatus.PENDING
        )
        if not pending:
            raise ValidationError("No pending commissions found", code="NO_PENDING_COMMISSIONS")
        return {
            'leaderId': leader_id,
            'leaderRole': leader_role,
            'totalAmount': str(sum((c.commission_amount for c in pending), Decimal('0.00'))),
            'commissionCount': len(pending),
            'commissionIds': [c.id for c in pending],
            'period': {
                'start': start.isoformat() if start else None,
                'end': end.isoformat() if end else None,
            },
        }


session_commission_service = SessionCommissionService()
