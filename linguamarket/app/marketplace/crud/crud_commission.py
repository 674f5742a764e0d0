"""CRUD operations for session commissions and leader commission tiers."""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import LeaderCommissionTier, SessionCommission


class CRUDSessionCommission(CRUDPlus[SessionCommission]):
    """CRUD operations for SessionCommission model."""

    async def get_for_session(
        self, db: AsyncSession, session_type: str, session_id: int, leader_id: int
    ) -> Optional[SessionCommission]:
        return await self.select_model_by_column(
            db, session_type=session_type, session_id=session_id, leader_id=leader_id
        )

    async def get_by_leader(
        self,
        db: AsyncSession,
        leader_id: int,
        leader_role: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[str] = None,
    ) -> Sequence[SessionCommission]:
        """
        Get commissions of a leader, optionally bounded by creation time.

        :param db: Database session
        :param leader_id: Instructor or host user ID
        :param leader_role: INSTRUCTOR or HOST
        :param start: Inclusive lower bound
        :param end: Inclusive upper bound
        :param status: Optional status filter
        :return: Commissions
        """
        query = select(SessionCommission).where(
            SessionCommission.leader_id == leader_id,
            SessionCommission.leader_role == leader_role,
        )
        if start:
            query = query.where(SessionCommission.created_time >= start)
        if end:
            query = query.where(SessionCommission.created_time <= end)
        if status:
            query = query.where(SessionCommission.status == status)
        result = await db.execute(query.order_by(SessionCommission.id))
        return result.scalars().all()

    async def get_all(self, db: AsyncSession) -> Sequence[SessionCommission]:
        result = await db.execute(select(SessionCommission).order_by(SessionCommission.id))
        return result.scalars().all()


class CRUDLeaderCommissionTier(CRUDPlus[LeaderCommissionTier]):
    """CRUD operations for LeaderCommissionTier model."""

    async def get_current(self, db: AsyncSession, leader_role: str, now: datetime) -> Optional[LeaderCommissionTier]:
        """
        Get the tier in force for a role at a point in time.

        :param db: Database session
        :param leader_role: INSTRUCTOR or HOST
        :param now: Reference time
        :return: Most recently effective tier or None
        """
        result = await db.execute(
            select(LeaderCommissionTier)
            .where(
                LeaderCommissionTier.leader_role == leader_role,
                LeaderCommissionTier.effective_date <= now,
                or_(LeaderCommissionTier.end_date.is_(None), LeaderCommissionTier.end_date >= now),
            )
            .order_by(LeaderCommissionTier.effective_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


# Singleton instances
session_commission_dao: CRUDSessionCommission = CRUDSessionCommission(SessionCommission)
leader_commission_tier_dao: CRUDLeaderCommissionTier = CRUDLeaderCommissionTier(LeaderCommissionTier)
