"""Agent-turn execution, multi-agent synthesis and persistence abstractions.

This package contains the "engine room" of the chat service.

Design overview
---------------

Everything an agent turn needs is passed in explicitly; nothing here reads
the environment or the request:

- ``prompt_assembler`` turns an agent, its contexts, history and the query
  into provider-neutral ``PromptMessage`` lists, truncating contexts to a
  character budget.
- ``providers`` adapts pydantic-ai models to one ``ProviderAdapter`` interface
  (``complete`` and ``stream``), registered per provider name.
- ``errors`` classifies provider failures into ``ApiErrorInfo`` and owns the
  rate-limit cooldowns and the fallback chain.
- ``executor.AgentTurnExecutor`` runs one turn, streaming or batch.
- ``batch_runner`` and ``synthesizer`` answer one message with several agents.
- ``usage.UsageRecorder`` accounts every provider attempt.

Typical usage
-------------

1. Load the ``AgentConfig`` and ``ContextDocument`` objects via the repositories.
2. Build an ``AgentTurnExecutor`` from a registry, key provider, error handler
   and usage recorder.
3. Iterate ``stream_turn`` for chunks, or call ``execute_with_retry``.
"""

from .batch_runner import MultiAgentBatchRunner
from .errors import ApiErrorHandler, ApiErrorInfo, ApiErrorKind
from .executor import AgentTurnExecutor
from .schemas.domain import (
    AgentConfig,
    AgentResponse,
    AgentResponseChunk,
    AIProvider,
    ChatMessage,
    ContextDocument,
)
from .synthesizer import Synthesizer

__all__ = [
    "AIProvider",
    "AgentConfig",
    "AgentResponse",
    "AgentResponseChunk",
    "ChatMessage",
    "ContextDocument",
    "ApiErrorHandler",
    "ApiErrorInfo",
    "ApiErrorKind",
    "AgentTurnExecutor",
    "MultiAgentBatchRunner",
    "Synthesizer",
]
