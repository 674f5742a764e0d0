from contextlib import asynccontextmanager
from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from linguamarket.common.log import log
from linguamarket.common.model import MappedBase
from linguamarket.core.conf import settings


def create_database_url() -> URL:
    """Build the async database URL from settings"""
    return make_url(settings.database_url)


def create_async_engine_and_session(url: str | URL) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create the async engine and session factory

    :param url: Database connection URL
    :return:
    """
    url = make_url(url)
    engine_kwargs = {
        'echo': settings.DATABASE_ECHO,
        'echo_pool': settings.DATABASE_POOL_ECHO,
        'future': True,
    }
    if url.get_backend_name() != 'sqlite':
        engine_kwargs.update(
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )
    try:
        engine = create_async_engine(url, **engine_kwargs)
    except Exception as e:
        log.error('❌ Database connection failed {}', e)
        raise
    db_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    return engine, db_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session dependency"""
    async with async_db_session() as session:
        yield session


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Unit of work over an existing session

    Commits when the block exits cleanly, otherwise rolls back every write
    made in the block and re-raises.

    :param db: Database session
    :return:
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def create_tables() -> None:
    """Create all tables"""
    async with async_engine.begin() as coon:
        await coon.run_sync(MappedBase.metadata.create_all)


async def drop_tables() -> None:
    """Drop all tables"""
    async with async_engine.begin() as conn:
        await conn.run_sync(MappedBase.metadata.drop_all)


SQLALCHEMY_DATABASE_URL = create_database_url()

async_engine, async_db_session = create_async_engine_and_session(SQLALCHEMY_DATABASE_URL)

# Session annotated dependency
CurrentSession = Annotated[AsyncSession, Depends(get_db)]
