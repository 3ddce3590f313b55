"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
used by the SQL repositories. It provides utilities for dependency injection
of the session factory.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mars_next.agent_core.repos.sql import create_all, create_engine, create_sessionmaker
from mars_next.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance, configured with the connection URL from settings.
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    A global factory for creating new AsyncSession instances.
    Bound to the `engine` and configured to NOT expire on commit (typical for async).
"""
async_session_maker = create_sessionmaker(engine)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the process-wide session factory."""
    return async_session_maker


async def init_db() -> None:
    """
    Initialize the database.

    Creates all tables defined in the agent_core ORM metadata when they do not exist yet.
    """
    await create_all(engine)
