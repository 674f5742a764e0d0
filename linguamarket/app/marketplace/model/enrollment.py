"""Student course enrollment model."""

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, TimeZone, id_key

# Statuses in which a (student, course) pair may only have one row
_OPEN_STATUS_CLAUSE = "status IN ('PENDING_PAYMENT', 'ENROLLED', 'ACTIVE', 'IN_PROGRESS', 'COMPLETED')"


class StudentCourseEnrollment(Base):
    """Enrollment of a student in a course"""

    __tablename__ = 'student_course_enrollment'

    id: Mapped[id_key] = mapped_column(init=False)
    student_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    course_id: Mapped[int] = mapped_column(sa.Integer, sa.ForeignKey('course.id', ondelete='CASCADE'), index=True)
    status: Mapped[str] = mapped_column(sa.String(32), index=True)
    payment_status: Mapped[str] = mapped_column(sa.String(32))
    payment_method: Mapped[str | None] = mapped_column(sa.String(32), default=None)
    payment_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    # Provider reference of the settling payment, or MANUAL_<ts>
    payment_id: Mapped[str | None] = mapped_column(sa.String(128), default=None)
    payment_intent_id: Mapped[str | None] = mapped_column(sa.String(128), default=None, index=True)
    payment_error: Mapped[str | None] = mapped_column(sa.String(512), default=None)
    progress: Mapped[int] = mapped_column(sa.Integer, default=0)
    # Subscription that covered this enrollment, if any
    subscription_id: Mapped[int | None] = mapped_column(sa.Integer, default=None)

    __table_args__ = (
        sa.Index(
            'uq_enrollment_open_per_student_course',
            'student_id',
            'course_id',
            unique=True,
            postgresql_where=sa.text(_OPEN_STATUS_CLAUSE),
            sqlite_where=sa.text(_OPEN_STATUS_CLAUSE),
        ),
        {'comment': 'Student course enrollments'},
    )
