"""Repository interfaces and SQL implementations for the chat pipeline.

The repository layer is the persistence boundary of the agent core.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  executor and the HTTP layer depend on.
- Read, with ownership scoping, what the CRUD layer owns:

  - project access,
  - agent configurations,
  - context documents.

- Append usage records (tokens, status, duration) for every provider attempt.

Design notes
------------

The core is written against interfaces so it can be used with a SQL database
(async SQLAlchemy implementation provided in ``repos.sql``) or with in-memory
fakes in unit tests.
"""

from .interfaces import (
    AgentRepository,
    ContextRepository,
    ProjectRepository,
    UsageRepository,
)

__all__ = [
    "AgentRepository",
    "ContextRepository",
    "ProjectRepository",
    "UsageRepository",
]
