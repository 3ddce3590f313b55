"""Schemas and DTOs for the agent core."""

from .domain import (
    AgentConfig,
    AgentResponse,
    AgentResponseChunk,
    AgentStep,
    AIProvider,
    ChatMessage,
    ContentChunk,
    ContextDocument,
    ContextMetadata,
    ErrorChunk,
    FallbackInfo,
    MessageRole,
    MetadataChunk,
    PromptMessage,
    RateLimitEntry,
    TokenUsage,
    TurnOptions,
    UsageRecord,
    UsageStatus,
)

__all__ = [
    "AgentConfig",
    "AgentResponse",
    "AgentResponseChunk",
    "AgentStep",
    "AIProvider",
    "ChatMessage",
    "ContentChunk",
    "ContextDocument",
    "ContextMetadata",
    "ErrorChunk",
    "FallbackInfo",
    "MessageRole",
    "MetadataChunk",
    "PromptMessage",
    "RateLimitEntry",
    "TokenUsage",
    "TurnOptions",
    "UsageRecord",
    "UsageStatus",
]
