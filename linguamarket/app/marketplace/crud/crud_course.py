"""CRUD operations for courses, bookings and institutions."""

from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import Course, CourseBooking, Institution, InstitutionSubscription


class CRUDCourse(CRUDPlus[Course]):
    """CRUD operations for Course model."""

    async def get(self, db: AsyncSession, course_id: int) -> Optional[Course]:
        """
        Get a course by id.

        :param db: Database session
        :param course_id: Course ID
        :return: Course or None
        """
        return await self.select_model(db, course_id)

    async def get_for_update(self, db: AsyncSession, course_id: int) -> Optional[Course]:
        """
        Get a course and lock its row until the transaction ends.

        Enrollment serializes on this lock so capacity checks see committed seats.

        :param db: Database session
        :param course_id: Course ID
        :return: Course or None
        """
        result = await db.execute(
            select(Course)
            .where(Course.id == course_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class CRUDCourseBooking(CRUDPlus[CourseBooking]):
    """CRUD operations for CourseBooking model."""

    async def get_latest(
        self, db: AsyncSession, student_id: int, course_id: int, status: Optional[str] = None
    ) -> Optional[CourseBooking]:
        """
        Get the most recent booking of a student for a course.

        :param db: Database session
        :param student_id: Student ID
        :param course_id: Course ID
        :param status: Optional status filter
        :return: Latest booking or None
        """
        query = select(CourseBooking).where(
            CourseBooking.student_id == student_id,
            CourseBooking.course_id == course_id,
        )
        if status:
            query = query.where(CourseBooking.status == status)
        query = query.order_by(CourseBooking.created_time.desc(), CourseBooking.id.desc()).limit(1)
        result = await db.execute(query)
        return result.scalar_one_or_none()


class CRUDInstitution(CRUDPlus[Institution]):
    """CRUD operations for Institution model."""

    async def get(self, db: AsyncSession, institution_id: int) -> Optional[Institution]:
        return await self.select_model(db, institution_id)

    async def get_by_owner(self, db: AsyncSession, owner_user_id: int) -> Sequence[Institution]:
        """
        Get institutions managed by a user account.

        :param db: Database session
        :param owner_user_id: User ID
        :return: Institutions
        """
        result = await db.execute(select(Institution).where(Institution.owner_user_id == owner_user_id))
        return result.scalars().all()


class CRUDInstitutionSubscription(CRUDPlus[InstitutionSubscription]):
    """CRUD operations for InstitutionSubscription model."""

    async def get_by_institution(self, db: AsyncSession, institution_id: int) -> Optional[InstitutionSubscription]:
        return await self.select_model_by_column(db, institution_id=institution_id)

    async def get_by_statuses(self, db: AsyncSession, statuses: Iterable[str]) -> Sequence[InstitutionSubscription]:
        """
        Get institution subscriptions in any of the given stored statuses.

        :param db: Database session
        :param statuses: Stored statuses to match
        :return: Subscriptions
        """
        result = await db.execute(
            select(InstitutionSubscription).where(InstitutionSubscription.status.in_(list(statuses)))
        )
        return result.scalars().all()


# Singleton instances
course_dao: CRUDCourse = CRUDCourse(Course)
course_booking_dao: CRUDCourseBooking = CRUDCourseBooking(CourseBooking)
institution_dao: CRUDInstitution = CRUDInstitution(Institution)
institution_subscription_dao: CRUDInstitutionSubscription = CRUDInstitutionSubscription(InstitutionSubscription)
