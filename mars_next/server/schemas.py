"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the browser client and the server.
Bodies use camelCase keys on the wire.
"""
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from mars_next.agent_core.schemas.base import BaseSchema
from mars_next.agent_core.schemas.domain import AgentResponse, ChatMessage, TurnOptions


class ChatRequestBase(BaseSchema):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    query: str = Field(
        ...,
        min_length=1,
        description="The user's message for this turn.",
        examples=["Summarize the attached design notes."],
    )
    context_ids: List[Any] = Field(
        ...,
        description="Ids of the context documents to attach. Empty and non-string ids are ignored.",
        examples=[["ctx-1", "ctx-2"]],
    )
    history: List[ChatMessage] = Field(
        ...,
        description="Prior conversation, oldest first.",
    )


class ChatTurnRequest(ChatRequestBase):
    """
    Schema for a streaming single-agent chat turn.

    The response is a ``text/event-stream`` of agent response chunks.
    """

    agent_id: str = Field(
        ...,
        min_length=1,
        description="The agent answering this turn. Must belong to the project and the caller.",
        examples=["agent-123"],
    )
    model_override: Optional[str] = Field(
        default=None,
        min_length=1,
        description="Run this turn on another model of the agent's provider.",
        examples=["gpt-4o-mini"],
    )
    temperature: Optional[float] = Field(default=None, ge=0, le=2, description="Overrides the agent's temperature.")
    max_tokens: Optional[int] = Field(default=None, gt=0, description="Overrides the agent's completion limit.")

    def turn_options(self) -> TurnOptions:
        return TurnOptions(model_override=self.model_override, temperature=self.temperature, max_tokens=self.max_tokens)

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        alias_generator=to_camel,
        protected_namespaces=(),
        json_schema_extra={
            "example": {
                "query": "What are the open risks in this plan?",
                "agentId": "agent-123",
                "contextIds": ["ctx-1"],
                "history": [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}],
            }
        },
    )


class MultiAgentChatRequest(ChatRequestBase):
    """
    Schema for a multi-agent turn answered by several agents and synthesized.

    When ``agentIds`` is omitted every agent of the project owned by the caller answers.
    """

    agent_ids: Optional[List[str]] = Field(
        default=None,
        description="Agents to run, in order. Defaults to all of the project's agents.",
    )
    context_ids: List[Any] = Field(default_factory=list, description="Ids of the context documents to attach.")
    history: List[ChatMessage] = Field(default_factory=list, description="Prior conversation, oldest first.")


class MultiAgentChatResponse(BaseSchema):
    """Responses of every agent keyed by agent id, plus the synthesized answer."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    responses: Dict[str, AgentResponse]
    synthesis: str
