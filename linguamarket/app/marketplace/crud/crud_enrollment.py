"""CRUD operations for student course enrollments."""

from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import StudentCourseEnrollment


class CRUDEnrollment(CRUDPlus[StudentCourseEnrollment]):
    """CRUD operations for StudentCourseEnrollment model."""

    async def get(self, db: AsyncSession, enrollment_id: int) -> Optional[StudentCourseEnrollment]:
        return await self.select_model(db, enrollment_id)

    async def get_open(
        self, db: AsyncSession, student_id: int, course_id: int, statuses: Iterable[str]
    ) -> Optional[StudentCourseEnrollment]:
        """
        Get the student's enrollment for a course in one of the given statuses.

        :param db: Database session
        :param student_id: Student ID
        :param course_id: Course ID
        :param statuses: Statuses to match
        :return: Enrollment or None
        """
        result = await db.execute(
            select(StudentCourseEnrollment)
            .where(
                StudentCourseEnrollment.student_id == student_id,
                StudentCourseEnrollment.course_id == course_id,
                StudentCourseEnrollment.status.in_(list(statuses)),
            )
            .order_by(StudentCourseEnrollment.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_by_course(self, db: AsyncSession, course_id: int, statuses: Iterable[str]) -> int:
        """
        Count enrollments of a course in the given statuses.

        :param db: Database session
        :param course_id: Course ID
        :param statuses: Statuses to count
        :return: Number of enrollments
        """
        result = await db.execute(
            select(func.count(StudentCourseEnrollment.id)).where(
                StudentCourseEnrollment.course_id == course_id,
                StudentCourseEnrollment.status.in_(list(statuses)),
            )
        )
        return result.scalar_one()

    async def count_subscription_covered(self, db: AsyncSession, student_id: int, statuses: Iterable[str]) -> int:
        """
        Count a student's enrollments covered by a subscription.

        :param db: Database session
        :param student_id: Student ID
        :param statuses: Statuses to count
        :return: Number of enrollments
        """
        result = await db.execute(
            select(func.count(StudentCourseEnrollment.id)).where(
                StudentCourseEnrollment.student_id == student_id,
                StudentCourseEnrollment.subscription_id.is_not(None),
                StudentCourseEnrollment.status.in_(list(statuses)),
            )
        )
        return result.scalar_one()

    async def get_for_update(self, db: AsyncSession, enrollment_id: int) -> Optional[StudentCourseEnrollment]:
        """
        Get an enrollment, reloading it from the database and locking its row.

        :param db: Database session
        :param enrollment_id: Enrollment ID
        :return: Enrollment or None
        """
        result = await db.execute(
            select(StudentCourseEnrollment)
            .where(StudentCourseEnrollment.id == enrollment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_payment_intent(self, db: AsyncSession, payment_intent_id: str) -> Optional[StudentCourseEnrollment]:
        return await self.select_model_by_column(db, payment_intent_id=payment_intent_id)

    async def get_pending_before(self, db: AsyncSession, cutoff: datetime) -> Sequence[StudentCourseEnrollment]:
        """
        Get PENDING_PAYMENT enrollments created before a cutoff.

        :param db: Database session
        :param cutoff: Creation time upper bound
        :return: Enrollments
        """
        result = await db.execute(
            select(StudentCourseEnrollment).where(
                StudentCourseEnrollment.status == 'PENDING_PAYMENT',
                StudentCourseEnrollment.created_time < cutoff,
            )
        )
        return result.scalars().all()


# Singleton instance
enrollment_dao: CRUDEnrollment = CRUDEnrollment(StudentCourseEnrollment)
