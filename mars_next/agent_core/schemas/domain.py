from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import ConfigDict, Field, field_validator

from .base import BaseSchema, WireSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AIProvider(str, Enum):
    openai = "openai"
    anthropic = "anthropic"
    google = "google"
    xai = "xai"
    deepseek = "deepseek"

    def __str__(self) -> str:
        return self.value


class MessageRole(str, Enum):
    user = "user"
    assistant = "assistant"
    system = "system"


class UsageStatus(str, Enum):
    success = "success"
    error = "error"


class AgentConfig(BaseSchema):
    """Agent definition as stored by the project CRUD layer; read-only during a turn."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    provider: AIProvider
    model: str

    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    memory_enabled: bool = True

    project_id: Optional[str] = None
    user_id: Optional[str] = None


class ContextMetadata(BaseSchema):
    model_config = ConfigDict(extra="ignore")

    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class ContextDocument(BaseSchema):
    id: str
    name: Optional[str] = None
    content: str = ""
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)

    @field_validator("content", mode="before")
    @classmethod
    def _content_defaults_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_defaults_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def label(self) -> str:
        return self.name or self.id


class AgentStep(BaseSchema):
    model_config = ConfigDict(extra="ignore")

    step_id: str
    agent_id: str
    agent_name: Optional[str] = None
    content: str
    metadata: Optional[Dict[str, Any]] = None


class ChatMessage(WireSchema):
    """One turn of conversation history as sent by the client."""

    model_config = ConfigDict(extra="ignore")

    role: MessageRole
    content: str
    message_id: Optional[str] = Field(default=None, alias="message_id")
    agent_steps: Optional[List[AgentStep]] = None


class PromptMessage(BaseSchema):
    """A fully assembled message handed to a provider adapter."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class TokenUsage(BaseSchema):
    prompt: int = 0
    completion: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, prompt: int, completion: int) -> "TokenUsage":
        return cls(prompt=prompt, completion=completion, total=prompt + completion)


class ContentChunk(WireSchema):
    type: Literal["content"] = "content"
    agent_id: str
    delta: str


class MetadataChunk(WireSchema):
    type: Literal["metadata"] = "metadata"
    agent_id: str
    tokens: Optional[TokenUsage] = None
    model_name: str
    finish_reason: str = "unknown"
    error: Optional[str] = None


class ErrorChunk(WireSchema):
    type: Literal["error"] = "error"
    agent_id: str
    error: str


AgentResponseChunk = Annotated[Union[ContentChunk, MetadataChunk, ErrorChunk], Field(discriminator="type")]


class TurnOptions(BaseSchema):
    """Per-turn overrides of the agent's stored generation settings."""

    model_config = ConfigDict(protected_namespaces=())

    model_override: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class FallbackInfo(WireSchema):
    original_provider: AIProvider
    original_model: str
    reason: str


class AgentResponse(WireSchema):
    """Structured outcome of one agent on the batch path; never raised, always returned."""

    agent_id: str
    agent_name: str
    response: str
    error: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    fallback_used: Optional[FallbackInfo] = None

    @property
    def succeeded(self) -> bool:
        return not self.error


class RateLimitEntry(BaseSchema):
    provider: str
    model: Optional[str] = None
    recorded_at: float
    cooldown_ms: int

    @property
    def expires_at(self) -> float:
        return self.recorded_at + self.cooldown_ms / 1000.0


class UsageRecord(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    project_id: Optional[str] = None
    agent_id: Optional[str] = None

    provider: str
    model: str

    tokens_prompt: int = 0
    tokens_completion: int = 0
    tokens_total: int = 0

    status: UsageStatus = UsageStatus.success
    duration_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    created_at: datetime = Field(default_factory=_utc_now)
