"""CRUD operations for live sessions, bookings and attendance."""

from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import (
    LiveConversation,
    LiveConversationBooking,
    SessionAttendance,
    VideoSession,
)


class CRUDVideoSession(CRUDPlus[VideoSession]):
    """CRUD operations for VideoSession model."""

    async def get(self, db: AsyncSession, session_id: int) -> Optional[VideoSession]:
        return await self.select_model(db, session_id)

    async def get_for_update(self, db: AsyncSession, session_id: int) -> Optional[VideoSession]:
        result = await db.execute(select(VideoSession).where(VideoSession.id == session_id).with_for_update())
        return result.scalar_one_or_none()


class CRUDLiveConversation(CRUDPlus[LiveConversation]):
    """CRUD operations for LiveConversation model."""

    async def get(self, db: AsyncSession, conversation_id: int) -> Optional[LiveConversation]:
        return await self.select_model(db, conversation_id)

    async def get_for_update(self, db: AsyncSession, conversation_id: int) -> Optional[LiveConversation]:
        """
        Get a conversation and lock its row until the transaction ends.

        :param db: Database session
        :param conversation_id: Conversation ID
        :return: Conversation or None
        """
        result = await db.execute(
            select(LiveConversation).where(LiveConversation.id == conversation_id).with_for_update()
        )
        return result.scalar_one_or_none()


class CRUDConversationBooking(CRUDPlus[LiveConversationBooking]):
    """CRUD operations for LiveConversationBooking model."""

    async def get_by_user(
        self, db: AsyncSession, conversation_id: int, user_id: int
    ) -> Optional[LiveConversationBooking]:
        return await self.select_model_by_column(db, conversation_id=conversation_id, user_id=user_id)

    async def count_confirmed(self, db: AsyncSession, conversation_id: int) -> int:
        """
        Count confirmed bookings of a conversation.

        :param db: Database session
        :param conversation_id: Conversation ID
        :return: Number of confirmed bookings
        """
        result = await db.execute(
            select(func.count(LiveConversationBooking.id)).where(
                LiveConversationBooking.conversation_id == conversation_id,
                LiveConversationBooking.status == 'CONFIRMED',
            )
        )
        return result.scalar_one()


class CRUDSessionAttendance(CRUDPlus[SessionAttendance]):
    """CRUD operations for SessionAttendance model."""

    async def get_by_user(
        self, db: AsyncSession, session_type: str, session_id: int, user_id: int
    ) -> Optional[SessionAttendance]:
        """
        Get the attendance event of a user for a session.

        :param db: Database session
        :param session_type: VIDEO_SESSION or LIVE_CONVERSATION
        :param session_id: Session ID
        :param user_id: User ID
        :return: Attendance or None
        """
        return await self.select_model_by_column(
            db, session_type=session_type, session_id=session_id, user_id=user_id
        )

    async def count_by_session(self, db: AsyncSession, session_type: str, session_id: int) -> int:
        result = await db.execute(
            select(func.count(SessionAttendance.id)).where(
                SessionAttendance.session_type == session_type,
                SessionAttendance.session_id == session_id,
            )
        )
        return result.scalar_one()

    async def get_month_totals(self, db: AsyncSession, user_id: int, month_key: str) -> dict[str, int]:
        """
        Aggregate a user's usage for one calendar month.

        :param db: Database session
        :param user_id: User ID
        :param month_key: YYYY-MM
        :return: {'GROUP': n, 'ONE_TO_ONE': n, 'minutes': n}
        """
        result = await db.execute(
            select(
                SessionAttendance.session_format,
                func.count(SessionAttendance.id),
                func.coalesce(func.sum(SessionAttendance.minutes), 0),
            )
            .where(SessionAttendance.user_id == user_id, SessionAttendance.month_key == month_key)
            .group_by(SessionAttendance.session_format)
        )
        totals = {'GROUP': 0, 'ONE_TO_ONE': 0, 'minutes': 0}
        for session_format, count, minutes in result.all():
            totals[session_format] = count
            totals['minutes'] += int(minutes)
        return totals

    async def get_by_month_keys(
        self, db: AsyncSession, user_id: int, month_keys: Sequence[str]
    ) -> Sequence[SessionAttendance]:
        result = await db.execute(
            select(SessionAttendance).where(
                SessionAttendance.user_id == user_id,
                SessionAttendance.month_key.in_(list(month_keys)),
            )
        )
        return result.scalars().all()


# Singleton instances
video_session_dao: CRUDVideoSession = CRUDVideoSession(VideoSession)
live_conversation_dao: CRUDLiveConversation = CRUDLiveConversation(LiveConversation)
conversation_booking_dao: CRUDConversationBooking = CRUDConversationBooking(LiveConversationBooking)
session_attendance_dao: CRUDSessionAttendance = CRUDSessionAttendance(SessionAttendance)
