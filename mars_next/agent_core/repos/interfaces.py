from __future__ import annotations

"""Repository interface contracts.

The chat pipeline depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Ownership scoping happens inside the repository: callers pass the user id
  and never see rows that user may not read.
- Lookups for unknown ids return ``None`` or drop the id; they do not raise.
- The usage repository is append-only.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from ..schemas.domain import AgentConfig, ContextDocument, UsageRecord


class ProjectRepository(Protocol):
    """Answer project access questions."""

    async def user_has_access(self, user_id: str, project_id: str) -> bool:
        """
        Check whether a user owns or is a member of a project.

        Args:
            user_id: The authenticated user.
            project_id: The project being accessed.
        """
        ...


class AgentRepository(Protocol):
    """Read agent configurations."""

    async def get(self, agent_id: str) -> Optional[AgentConfig]:
        """
        Fetch an agent by id regardless of owner.

        Ownership and project matching are the caller's responsibility.
        """
        ...

    async def list_for_project(self, project_id: str, user_id: str) -> List[AgentConfig]:
        """List the agents of a project that belong to ``user_id``."""
        ...


class ContextRepository(Protocol):
    """Read context documents."""

    async def get_by_ids(self, ids: Sequence[str], owner_id: str) -> List[ContextDocument]:
        """
        Fetch contexts by id, scoped to an owner.

        Ids that do not exist or belong to another user are silently dropped;
        the result follows the order of ``ids``.
        """
        ...


class UsageRepository(Protocol):
    """Append and query usage records."""

    async def append(self, record: UsageRecord) -> None:
        """
        Append one usage record.

        Args:
            record: The usage record to persist.
        """
        ...

    async def list(
        self, user_id: str, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> List[UsageRecord]:
        """
        List usage records for a user, newest first.

        Args:
            user_id: The user whose usage is listed.
            from_date: Optional inclusive lower bound.
            to_date: Optional inclusive upper bound.
        """
        ...
