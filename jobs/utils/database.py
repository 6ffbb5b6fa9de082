"""Database access for worker tasks."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from settlement.config.settings import settings


def create_task_engine():
    """
    Create an engine for task code.

    NullPool: every actor run owns its own event loop, so pooled
    connections cannot be shared between runs.
    """
    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        poolclass=NullPool,
    )


def create_task_session_maker(engine=None):
    """Create a session maker for task code."""
    if engine is None:
        engine = create_task_engine()
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


task_engine = create_task_engine()
task_session_maker = create_task_session_maker(task_engine)
