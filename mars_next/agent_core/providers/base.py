"""Base abstractions for LLM provider adapters.

An adapter is the only code that talks to a vendor SDK. It receives a fully
assembled message list and an API key, and returns either a final completion
or an async stream of content deltas terminated by one ``StreamFinished``
event carrying token usage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence, Union

from ..schemas.domain import PromptMessage, TokenUsage


@dataclass(frozen=True)
class CompletionResult:
    """Final answer of a non-streaming call.

    Attributes:
        text: The generated text
        usage: Token usage (provider-reported, else approximated)
        model: The model that actually answered
        finish_reason: Why generation stopped, when the provider says so
    """

    text: str
    usage: TokenUsage
    model: str
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class StreamFinished:
    usage: TokenUsage
    finish_reason: Optional[str] = None


StreamEvent = Union[ContentDelta, StreamFinished]


class ProviderAdapter(ABC):
    """Interface every provider integration implements."""

    provider: str

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """Run one non-streaming completion."""

    @abstractmethod
    def stream(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a completion.

        Yields ``ContentDelta`` events as text arrives and ends with exactly
        one ``StreamFinished``. Closing the iterator aborts the provider call.
        """
