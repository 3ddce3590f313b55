from __future__ import annotations

"""SQLAlchemy ORM models for the chat pipeline's persistence collaborators.

These ORM models define the SQL schema used by the SQL repository
implementation in ``mars_next.agent_core.repos.sql``.

Design
------

The agent core only reads projects, agents and contexts (they are owned by
the CRUD layer) and appends usage rows:

- Projects carry the owning user; membership grants access to other users.
- Agents belong to one project and one user.
- Contexts are owned by a user and scoped to a project.
- Usage rows are an append-only ledger, one per provider attempt.

Table names are prefixed with ``mars_`` to avoid collisions in shared databases.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ProjectRow(Base):
    """Row model for ``mars_projects``."""

    __tablename__ = "mars_projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class ProjectMemberRow(Base):
    """Row model for ``mars_project_members``: users granted access to a project they do not own."""

    __tablename__ = "mars_project_members"

    project_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)


class AgentRow(Base):
    """Row model for ``mars_agents``.

    Key fields:

    - ``provider``/``model``: which vendor and model answer for this agent.
    - ``memory_enabled``: whether conversation history is replayed to the model.
    """

    __tablename__ = "mars_agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)

    name: Mapped[str] = mapped_column(String(255))
    provider: Mapped[str] = mapped_column(String(32))
    model: Mapped[str] = mapped_column(String(128))

    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    memory_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class ContextRow(Base):
    """Row model for ``mars_contexts``.

    ``metadata_`` holds the category and tags as JSON; the attribute is
    suffixed because ``metadata`` is reserved on declarative classes.
    """

    __tablename__ = "mars_contexts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class UsageRow(Base):
    """Row model for ``mars_api_usage``.

    Append-only token accounting, one row per provider attempt (success or error).
    """

    __tablename__ = "mars_api_usage"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    agent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    provider: Mapped[str] = mapped_column(String(32))
    model: Mapped[str] = mapped_column(String(128))

    tokens_prompt: Mapped[int] = mapped_column(Integer)
    tokens_completion: Mapped[int] = mapped_column(Integer)
    tokens_total: Mapped[int] = mapped_column(Integer)

    status: Mapped[str] = mapped_column(String(16))
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    metadata_: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, default=_utc_now)
