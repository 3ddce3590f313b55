"""Pydantic AI implementation of the provider adapter.

A single adapter class covers every vendor: what differs per provider is how
the pydantic-ai ``Model`` is built (SDK client, base URL, API key), which is
captured by a ``ModelFactory``. xAI and DeepSeek expose OpenAI-compatible
endpoints and reuse the OpenAI chat model with their own base URLs.
"""

from __future__ import annotations

from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from mars_next.core.logging_config import get_logger

from ..prompt_assembler import estimate_prompt_tokens, estimate_tokens
from ..schemas.domain import MessageRole, PromptMessage, TokenUsage
from .base import CompletionResult, ContentDelta, ProviderAdapter, StreamEvent, StreamFinished

logger = get_logger(__name__)

# (model name, api key) -> pydantic-ai model
ModelFactory = Callable[[str, str], Model]


def openai_model_factory(base_url: Optional[str] = None) -> ModelFactory:
    """Factory for OpenAI and OpenAI-compatible chat completion endpoints."""

    def build(model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        return OpenAIChatModel(model_name, provider=OpenAIProvider(base_url=base_url, api_key=api_key))

    return build


def anthropic_model_factory() -> ModelFactory:
    def build(model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=api_key))

    return build


def google_model_factory() -> ModelFactory:
    def build(model_name: str, api_key: str) -> Model:
        from pydantic_ai.models.google import GoogleModel
        from pydantic_ai.providers.google import GoogleProvider

        return GoogleModel(model_name, provider=GoogleProvider(api_key=api_key))

    return build


def to_model_messages(messages: Sequence[PromptMessage]) -> Tuple[str, List[ModelMessage]]:
    """
    Split assembled messages into pydantic-ai's ``(user_prompt, message_history)``.

    The last message must be the user query. Consecutive system/user messages
    are grouped into one ``ModelRequest``; assistant messages become
    ``ModelResponse`` entries.
    """
    if not messages or messages[-1].role is not MessageRole.user:
        raise ValueError("The last assembled message must be the user query")

    history: List[ModelMessage] = []
    pending: List[ModelRequestPart] = []
    for message in messages[:-1]:
        if message.role is MessageRole.assistant:
            if pending:
                history.append(ModelRequest(parts=pending))
                pending = []
            history.append(ModelResponse(parts=[TextPart(content=message.content)]))
        elif message.role is MessageRole.system:
            pending.append(SystemPromptPart(content=message.content))
        else:
            pending.append(UserPromptPart(content=message.content))
    if pending:
        history.append(ModelRequest(parts=pending))

    return messages[-1].content, history


def _model_settings(temperature: Optional[float], max_tokens: Optional[int]) -> ModelSettings:
    settings = ModelSettings()
    if temperature is not None:
        settings["temperature"] = temperature
    if max_tokens is not None:
        settings["max_tokens"] = max_tokens
    return settings


def _token_usage(run_usage, messages: Sequence[PromptMessage], text: str) -> TokenUsage:
    prompt = getattr(run_usage, "input_tokens", None) or getattr(run_usage, "request_tokens", None) or 0
    completion = getattr(run_usage, "output_tokens", None) or getattr(run_usage, "response_tokens", None) or 0
    if not prompt:
        prompt = estimate_prompt_tokens(messages)
    if not completion:
        completion = estimate_tokens(text)
    return TokenUsage.from_counts(prompt, completion)


def _finish_reason(all_messages: Sequence[ModelMessage]) -> Optional[str]:
    for message in reversed(all_messages):
        if isinstance(message, ModelResponse):
            return getattr(message, "finish_reason", None)
    return None


class PydanticAIAdapter(ProviderAdapter):
    """
    Provider adapter running completions through a pydantic-ai ``Agent``.

    Args:
        provider: Provider name this adapter is registered under
        model_factory: Builds the pydantic-ai model for a model name and key
    """

    def __init__(self, provider: str, model_factory: ModelFactory) -> None:
        self.provider = str(provider)
        self._model_factory = model_factory

    def _agent(self, model: str, api_key: str) -> Agent:
        return Agent(self._model_factory(model, api_key), output_type=str)

    async def complete(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        prompt, history = to_model_messages(messages)
        logger.debug(f"Calling {self.provider}/{model} (history={len(history)} messages)")

        result = await self._agent(model, api_key).run(
            prompt,
            message_history=history or None,
            model_settings=_model_settings(temperature, max_tokens),
        )
        text = result.output
        return CompletionResult(
            text=text,
            usage=_token_usage(result.usage(), messages, text),
            model=model,
            finish_reason=_finish_reason(result.all_messages()),
        )

    async def stream(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        prompt, history = to_model_messages(messages)
        logger.debug(f"Streaming {self.provider}/{model} (history={len(history)} messages)")

        received: List[str] = []
        async with self._agent(model, api_key).run_stream(
            prompt,
            message_history=history or None,
            model_settings=_model_settings(temperature, max_tokens),
        ) as result:
            async for delta in result.stream_text(delta=True, debounce_by=None):
                if delta:
                    received.append(delta)
                    yield ContentDelta(delta)
            usage = _token_usage(result.usage(), messages, "".join(received))
            finish_reason = _finish_reason(result.all_messages())

        yield StreamFinished(usage=usage, finish_reason=finish_reason)
