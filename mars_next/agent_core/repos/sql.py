from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a SQL-backed implementation for the repository
interfaces defined in ``mars_next.agent_core.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits when it writes. Nothing is shared between calls, so repositories are
safe to use from concurrently running agent turns.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..schemas.domain import AgentConfig, ContextDocument, UsageRecord, UsageStatus
from .interfaces import AgentRepository, ContextRepository, ProjectRepository, UsageRepository
from .models import AgentRow, Base, ContextRow, ProjectMemberRow, ProjectRow, UsageRow


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``. Other URLs (such as ``sqlite+aiosqlite``) are
    passed through.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _agent_from_row(row: AgentRow) -> AgentConfig:
    return AgentConfig(
        id=row.id,
        name=row.name,
        provider=row.provider,
        model=row.model,
        system_prompt=row.system_prompt,
        temperature=row.temperature,
        max_tokens=row.max_tokens,
        memory_enabled=bool(row.memory_enabled),
        project_id=row.project_id,
        user_id=row.user_id,
    )


@dataclass(frozen=True)
class SqlProjectRepository(ProjectRepository):
    """SQL implementation of ``ProjectRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def user_has_access(self, user_id: str, project_id: str) -> bool:
        async with self.session_factory() as s:
            project = await s.get(ProjectRow, project_id)
            if project is None:
                return False
            if project.user_id == user_id:
                return True
            membership = await s.get(ProjectMemberRow, (project_id, user_id))
            return membership is not None


@dataclass(frozen=True)
class SqlAgentRepository(AgentRepository):
    """SQL implementation of ``AgentRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, agent_id: str) -> Optional[AgentConfig]:
        async with self.session_factory() as s:
            row = await s.get(AgentRow, agent_id)
            if row is None:
                return None
            return _agent_from_row(row)

    async def list_for_project(self, project_id: str, user_id: str) -> List[AgentConfig]:
        async with self.session_factory() as s:
            stmt = (
                select(AgentRow)
                .where(AgentRow.project_id == project_id, AgentRow.user_id == user_id)
                .order_by(AgentRow.created_at.asc())
            )
            result = await s.execute(stmt)
            return [_agent_from_row(r) for r in result.scalars().all()]


@dataclass(frozen=True)
class SqlContextRepository(ContextRepository):
    """SQL implementation of ``ContextRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get_by_ids(self, ids: Sequence[str], owner_id: str) -> List[ContextDocument]:
        """
        Fetch the contexts owned by ``owner_id`` among ``ids``.

        Args:
            ids: Requested context ids; duplicates are collapsed.
            owner_id: The user who must own every returned context.

        Returns:
            Contexts in the order their ids were requested.
        """
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []
        async with self.session_factory() as s:
            stmt = select(ContextRow).where(ContextRow.id.in_(wanted), ContextRow.user_id == owner_id)
            result = await s.execute(stmt)
            rows = {r.id: r for r in result.scalars().all()}

        return [
            ContextDocument(id=row.id, name=row.name, content=row.content, metadata=row.metadata_)
            for row in (rows[i] for i in wanted if i in rows)
        ]


@dataclass(frozen=True)
class SqlUsageRepository(UsageRepository):
    """SQL implementation of ``UsageRepository`` (append-only ledger)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, record: UsageRecord) -> None:
        """
        Append a usage record.

        Args:
            record: The usage domain object.
        """
        async with self.session_factory() as s:
            s.add(
                UsageRow(
                    id=record.id,
                    user_id=record.user_id,
                    project_id=record.project_id,
                    agent_id=record.agent_id,
                    provider=record.provider,
                    model=record.model,
                    tokens_prompt=record.tokens_prompt,
                    tokens_completion=record.tokens_completion,
                    tokens_total=record.tokens_total,
                    status=record.status.value,
                    duration_ms=record.duration_ms,
                    metadata_=record.metadata,
                    created_at=record.created_at,
                )
            )
            await s.commit()

    async def list(
        self, user_id: str, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> List[UsageRecord]:
        """
        List usage records for a user within a date range.

        Args:
            user_id: The user identifier.
            from_date: Optional start datetime.
            to_date: Optional end datetime.

        Returns:
            A list of UsageRecord objects, newest first.
        """
        async with self.session_factory() as s:
            stmt = select(UsageRow).where(UsageRow.user_id == user_id)
            if from_date:
                stmt = stmt.where(UsageRow.created_at >= from_date)
            if to_date:
                stmt = stmt.where(UsageRow.created_at <= to_date)
            stmt = stmt.order_by(UsageRow.created_at.desc())

            result = await s.execute(stmt)
            rows = result.scalars().all()

        return [
            UsageRecord(
                id=r.id,
                user_id=r.user_id,
                project_id=r.project_id,
                agent_id=r.agent_id,
                provider=r.provider,
                model=r.model,
                tokens_prompt=r.tokens_prompt,
                tokens_completion=r.tokens_completion,
                tokens_total=r.tokens_total,
                status=UsageStatus(r.status),
                duration_ms=r.duration_ms,
                metadata=r.metadata_,
                created_at=r.created_at,
            )
            for r in rows
        ]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience container bundling all SQL repositories."""

    projects: SqlProjectRepository
    agents: SqlAgentRepository
    contexts: SqlContextRepository
    usage: SqlUsageRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` sharing one session factory."""
    return SqlRepoBundle(
        projects=SqlProjectRepository(session_factory),
        agents=SqlAgentRepository(session_factory),
        contexts=SqlContextRepository(session_factory),
        usage=SqlUsageRepository(session_factory),
    )
