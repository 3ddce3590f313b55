"""Synthesis of several agent responses into one answer."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from mars_next.core.logging_config import get_logger

from .api_keys import ApiKeyProvider
from .errors import DEFAULT_RATE_LIMIT_RETRY_MS, ApiErrorHandler, ApiErrorKind, MissingApiKeyError
from .prompt_assembler import estimate_tokens
from .providers.registry import ProviderRegistry
from .schemas.domain import AgentResponse, AIProvider, MessageRole, PromptMessage, TokenUsage, UsageStatus
from .usage import UsageRecorder

logger = get_logger(__name__)

# Designated synthesis model per provider, in order of preference
SYNTHESIS_MODELS: Tuple[Tuple[AIProvider, str], ...] = (
    (AIProvider.openai, "gpt-4o"),
    (AIProvider.anthropic, "claude-3-5-sonnet-latest"),
    (AIProvider.google, "gemini-1.5-pro"),
)

PREVIEW_CHARS = 200
FALLBACK_PREVIEW_CHARS = 300
QUERY_PREVIEW_CHARS = 30

ALL_AGENTS_FAILED_MESSAGE = "All agents encountered errors. Please try again later or with different parameters."
MANUAL_PROVIDER = "manual"
MANUAL_MODEL = "basic-synthesis"

SYNTHESIS_INSTRUCTIONS = (
    "You are a synthesis agent. Your task is to combine the following specialist agent responses into a "
    "single coherent response. Utilize the strengths of each response while compensating for any weaknesses "
    "or omissions. The original user message was: \"{message}\"\n\nAGENT RESPONSES:\n{responses}"
)

Responses = Union[Mapping[str, AgentResponse], Sequence[AgentResponse]]


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def format_response_for_synthesis(response: AgentResponse) -> str:
    text = f"{response.agent_name}: {_preview(response.response, PREVIEW_CHARS)}"
    if response.fallback_used:
        fallback = response.fallback_used
        text += (
            f"\n(Fallback from {fallback.original_provider.value}/{fallback.original_model} "
            f"due to: {fallback.reason})"
        )
    if response.error:
        text += f"\n(Error: {response.error})"
    return text


def build_synthesis_prompt(responses: Sequence[AgentResponse], user_message: str) -> str:
    formatted = "\n\n".join(format_response_for_synthesis(r) for r in responses)
    return SYNTHESIS_INSTRUCTIONS.format(message=user_message, responses=formatted)


def concatenate_responses(responses: Sequence[AgentResponse], user_message: str) -> str:
    """
    Deterministic, model-free synthesis.

    Lists up to the first 300 characters of every successful response under
    its agent's name. When nothing succeeded, returns ``ALL_AGENTS_FAILED_MESSAGE``.
    """
    successful = [r for r in responses if r.succeeded]
    if not successful:
        return ALL_AGENTS_FAILED_MESSAGE

    text = f'Response to: "{user_message[:QUERY_PREVIEW_CHARS]}..."\n\n'
    text += f"Combined input from {len(successful)} agents:\n\n"
    for index, response in enumerate(successful, start=1):
        text += f"Agent {index} ({response.agent_name}): {_preview(response.response, FALLBACK_PREVIEW_CHARS)}\n\n"
    return text


class Synthesizer:
    """
    Combines the answers of several agents into one.

    A single designated model (the first configured provider of
    ``SYNTHESIS_MODELS``) writes the combined answer. If that call fails, or no
    provider is configured, the answers are concatenated instead. Every
    synthesis, degraded or not, leaves a usage record.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        api_keys: ApiKeyProvider,
        error_handler: ApiErrorHandler,
        usage_recorder: UsageRecorder,
        synthesis_models: Sequence[Tuple[AIProvider, str]] = SYNTHESIS_MODELS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.api_keys = api_keys
        self.error_handler = error_handler
        self.usage_recorder = usage_recorder
        self.synthesis_models = tuple(synthesis_models)
        self._sleep = sleep
        self._clock = clock

    def select_model(self) -> Optional[Tuple[AIProvider, str, str]]:
        """First ``(provider, model, api_key)`` with a configured key, or None."""
        for provider, model in self.synthesis_models:
            api_key = self.api_keys.get_api_key_for_provider(provider.value)
            if api_key:
                return provider, model, api_key
        return None

    async def synthesize(
        self,
        responses: Responses,
        user_message: str,
        *,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> str:
        """
        Produce one answer from several agent responses.

        Args:
            responses: Agent responses, as the batch runner's map or a sequence
            user_message: The message the agents answered
            user_id: Owner of the usage records
            project_id: Project the synthesis belongs to

        Returns:
            The synthesized text. A single response is returned unchanged.
        """
        items: List[AgentResponse] = list(responses.values()) if isinstance(responses, Mapping) else list(responses)
        if len(items) == 1:
            return items[0].response
        if not items:
            return ALL_AGENTS_FAILED_MESSAGE

        started = self._clock()
        prompt = build_synthesis_prompt(items, user_message)
        selected = self.select_model()

        if selected is None:
            logger.warning("No provider configured for synthesis; concatenating agent responses")
        else:
            provider, model, api_key = selected
            try:
                text = await self._call_model(provider, model, api_key, prompt, started, user_id, project_id)
            except Exception as e:
                info = self.error_handler.classify(e, provider, model)
                logger.error(f"Synthesis with {provider.value}/{model} failed: {info.message}")
                await self.usage_recorder.track_error(
                    info,
                    user_id=user_id,
                    prompt_tokens=estimate_tokens(prompt),
                    project_id=project_id,
                    duration_ms=int((self._clock() - started) * 1000),
                    metadata={"type": "synthesis"},
                )
                if info.kind is ApiErrorKind.RATE_LIMIT and info.retryable:
                    self.error_handler.record_rate_limit(
                        provider.value, info.retry_after_ms or DEFAULT_RATE_LIMIT_RETRY_MS, model
                    )
            else:
                return text

        return await self._concatenate(items, user_message, started, user_id, project_id)

    async def _call_model(
        self,
        provider: AIProvider,
        model: str,
        api_key: str,
        prompt: str,
        started: float,
        user_id: Optional[str],
        project_id: Optional[str],
    ) -> str:
        if self.error_handler.is_rate_limited(provider.value, model):
            wait_ms = self.error_handler.get_retry_after_time(provider.value, model)
            logger.info(f"Synthesis provider {provider.value} is rate limited. Waiting {wait_ms}ms before attempting.")
            await self._sleep(wait_ms / 1000)

        if not api_key:
            raise MissingApiKeyError(provider.value)
        adapter = self.registry.get(provider.value)
        result = await adapter.complete(model, [PromptMessage(role=MessageRole.user, content=prompt)], api_key)
        await self.usage_recorder.record_attempt(
            user_id=user_id,
            provider=provider.value,
            model=result.model,
            usage=result.usage,
            status=UsageStatus.success,
            duration_ms=int((self._clock() - started) * 1000),
            project_id=project_id,
            metadata={"type": "synthesis"},
        )
        return result.text

    async def _concatenate(
        self,
        items: Sequence[AgentResponse],
        user_message: str,
        started: float,
        user_id: Optional[str],
        project_id: Optional[str],
    ) -> str:
        text = concatenate_responses(items, user_message)
        await self.usage_recorder.record_attempt(
            user_id=user_id,
            provider=MANUAL_PROVIDER,
            model=MANUAL_MODEL,
            usage=TokenUsage.from_counts(0, estimate_tokens(text)),
            status=UsageStatus.success,
            duration_ms=int((self._clock() - started) * 1000),
            project_id=project_id,
            metadata={"type": "fallback_synthesis"},
        )
        return text
