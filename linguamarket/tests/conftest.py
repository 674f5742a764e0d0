from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from linguamarket.app.marketplace.model import (
    Course,
    Institution,
    InstitutionSubscription,
    LiveConversation,
    StudentCourseEnrollment,
    StudentSubscription,
    VideoSession,
)
from linguamarket.common.model import MappedBase
from linguamarket.src.billing.shared.settings_cache import AdminSettingsCache, PaymentApprovalSettings


@pytest.fixture
def now() -> datetime:
    """Fixed reference time used by every time-dependent call."""
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def engine():
    """In-memory SQLite shared by every connection of one test."""
    engine = create_async_engine(
        'sqlite+aiosqlite://',
        poolclass=StaticPool,
        connect_args={'check_same_thread': False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(MappedBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def approval_cache():
    """Settings cache without Redis; tests swap the policy through ``policy``."""

    class _Loader:
        policy = PaymentApprovalSettings()

        async def __call__(self, db):
            return self.policy

    loader = _Loader()
    cache = AdminSettingsCache(loader=loader, ttl_seconds=0, redis=None)
    cache.loader = loader
    return cache


async def _persist(db: AsyncSession, obj):
    db.add(obj)
    await db.commit()
    return obj


@pytest.fixture
def make_institution(db):
    async def factory(**kwargs) -> Institution:
        kwargs.setdefault('name', 'Polyglot Academy')
        kwargs.setdefault('owner_user_id', 500)
        return await _persist(db, Institution(**kwargs))

    return factory


@pytest.fixture
def make_course(db):
    async def factory(**kwargs) -> Course:
        kwargs.setdefault('title', 'Spanish A1')
        kwargs.setdefault('status', 'PUBLISHED')
        kwargs.setdefault('base_price', Decimal('100.00'))
        return await _persist(db, Course(**kwargs))

    return factory


@pytest.fixture
def make_enrollment(db):
    async def factory(student_id: int, course_id: int, **kwargs) -> StudentCourseEnrollment:
        kwargs.setdefault('status', 'PENDING_PAYMENT')
        kwargs.setdefault('payment_status', 'PENDING')
        return await _persist(db, StudentCourseEnrollment(student_id=student_id, course_id=course_id, **kwargs))

    return factory


@pytest.fixture
def make_student_subscription(db):
    async def factory(student_id: int, tier: str = 'BASIC', status: str = 'ACTIVE', **kwargs) -> StudentSubscription:
        return await _persist(db, StudentSubscription(student_id=student_id, tier=tier, status=status, **kwargs))

    return factory


@pytest.fixture
def make_institution_subscription(db):
    async def factory(institution_id: int, plan_type: str = 'PROFESSIONAL', status: str = 'ACTIVE', **kwargs):
        return await _persist(
            db, InstitutionSubscription(institution_id=institution_id, plan_type=plan_type, status=status, **kwargs)
        )

    return factory


@pytest.fixture
def make_video_session(db, now):
    async def factory(**kwargs) -> VideoSession:
        kwargs.setdefault('instructor_id', 900)
        kwargs.setdefault('title', 'Conversational French')
        kwargs.setdefault('start_time', now + timedelta(days=1))
        kwargs.setdefault('end_time', now + timedelta(days=1, minutes=60))
        return await _persist(db, VideoSession(**kwargs))

    return factory


@pytest.fixture
def make_conversation(db, now):
    async def factory(**kwargs) -> LiveConversation:
        kwargs.setdefault('host_id', 901)
        kwargs.setdefault('title', 'Italian coffee chat')
        kwargs.setdefault('start_time', now + timedelta(days=1))
        kwargs.setdefault('end_time', now + timedelta(days=1, minutes=45))
        return await _persist(db, LiveConversation(**kwargs))

    return factory
