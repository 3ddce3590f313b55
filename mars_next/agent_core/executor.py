"""Agent-turn execution.

``AgentTurnExecutor`` runs one agent against one user query. It has two entry
points sharing the same building blocks (API key lookup, prompt assembly,
provider registry, error classification, usage accounting):

``stream_turn``
    The interactive path. An async generator of ``AgentResponseChunk``:
    every content delta is forwarded as soon as the provider produces it and
    the sequence always ends with exactly one ``metadata`` chunk, preceded by
    an ``error`` chunk when the turn failed. Provider exceptions never escape.

``execute_with_retry``
    The batch path used by the multi-agent runner. Applies the retry and
    fallback policy and always returns an ``AgentResponse``.

Time is injected (``sleep`` and ``clock``) so retry back-off can be tested
without waiting.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence

from mars_next.core.logging_config import get_logger
from mars_next.core.monitoring import log_agent_turn, log_agent_turn_completion, log_error

from .api_keys import ApiKeyProvider
from .errors import (
    DEFAULT_RATE_LIMIT_RETRY_MS,
    DEFAULT_RETRY_DELAY_MS,
    ApiErrorHandler,
    ApiErrorInfo,
    ApiErrorKind,
    ConfigurationError,
    MissingApiKeyError,
    RateLimitExhaustedError,
)
from .prompt_assembler import MAX_CONTEXT_CHARS, assemble_messages, estimate_prompt_tokens
from .providers.base import ContentDelta, StreamFinished
from .providers.registry import ProviderRegistry
from .schemas.domain import (
    AgentConfig,
    AgentResponse,
    AgentResponseChunk,
    AIProvider,
    ChatMessage,
    ContentChunk,
    ContextDocument,
    ErrorChunk,
    FallbackInfo,
    MetadataChunk,
    PromptMessage,
    TokenUsage,
    TurnOptions,
    UsageStatus,
)
from .usage import UsageRecorder

logger = get_logger(__name__)

MAX_RETRIES = 2
RATE_LIMIT_FALLBACK_REASON = "Rate limit exceeded"

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class AgentTurnExecutor:
    """
    Runs single agent turns, streaming or batch.

    Args:
        registry: Provider adapters by provider name
        api_keys: Source of provider API keys
        error_handler: Shared classifier and rate-limit cache
        usage_recorder: Where usage of every attempt is written
        max_retries: Retries per turn on the batch path
        max_context_chars: Character budget for attached contexts
        sleep: Awaitable delay used for back-off
        clock: Monotonic clock used to measure durations
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        api_keys: ApiKeyProvider,
        error_handler: ApiErrorHandler,
        usage_recorder: UsageRecorder,
        max_retries: int = MAX_RETRIES,
        max_context_chars: int = MAX_CONTEXT_CHARS,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.registry = registry
        self.api_keys = api_keys
        self.error_handler = error_handler
        self.usage_recorder = usage_recorder
        self.max_retries = max_retries
        self.max_context_chars = max_context_chars
        self._sleep = sleep
        self._clock = clock

    # -----------------------------------------------------------------
    # Shared helpers
    # -----------------------------------------------------------------

    def _require_api_key(self, provider: str) -> str:
        api_key = self.api_keys.get_api_key_for_provider(str(provider))
        if not api_key:
            raise MissingApiKeyError(str(provider))
        return api_key

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def _assemble(
        self, agent: AgentConfig, query: str, contexts: Sequence[ContextDocument], history: Sequence[ChatMessage]
    ) -> list[PromptMessage]:
        return assemble_messages(agent, query, contexts, history, self.max_context_chars)

    def _with_model(self, agent: AgentConfig, provider: str, model: str) -> AgentConfig:
        return agent.model_copy(update={"provider": AIProvider(str(provider)), "model": model})

    def _usable_fallback(self, agent: AgentConfig) -> Optional[AgentConfig]:
        """The agent on its fallback model; None when there is none, it has no key or it is cooling down too."""
        fallback = self.error_handler.get_fallback_model(agent.provider, agent.model)
        if fallback is None:
            return None
        provider, model = fallback
        if not self.api_keys.get_api_key_for_provider(provider) or self.error_handler.is_rate_limited(provider, model):
            logger.debug(f"Fallback {provider}/{model} for {agent.provider}/{agent.model} is not usable right now")
            return None
        return self._with_model(agent, provider, model)

    def _streaming_target(self, agent: AgentConfig) -> AgentConfig:
        """Swap to the fallback model when the agent's model is cooling down and the fallback is usable."""
        if not self.error_handler.is_rate_limited(agent.provider, agent.model):
            return agent
        fallback = self._usable_fallback(agent)
        if fallback is None:
            return agent
        logger.info(
            f"{agent.provider}/{agent.model} is rate limited; streaming from fallback {fallback.provider}/{fallback.model}"
        )
        return fallback

    def _note_rate_limit(self, info: ApiErrorInfo) -> None:
        if info.kind is ApiErrorKind.RATE_LIMIT and info.retryable:
            self.error_handler.record_rate_limit(
                info.provider, info.retry_after_ms or DEFAULT_RATE_LIMIT_RETRY_MS, info.model
            )

    # -----------------------------------------------------------------
    # Streaming path
    # -----------------------------------------------------------------

    async def stream_turn(
        self,
        agent: AgentConfig,
        query: str,
        contexts: Sequence[ContextDocument] = (),
        history: Sequence[ChatMessage] = (),
        *,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        options: Optional[TurnOptions] = None,
    ) -> AsyncIterator[AgentResponseChunk]:
        """
        Stream one agent turn as response chunks.

        Yields ``content`` chunks as deltas arrive, then one ``metadata``
        chunk. On failure yields an ``error`` chunk with a user-facing
        sentence followed by a ``metadata`` chunk with ``finishReason='error'``.
        Cancellation is not converted into chunks; it propagates into the
        provider call and aborts it.
        """
        options = options or TurnOptions()
        if options.model_override:
            agent = self._with_model(agent, agent.provider, options.model_override)
        temperature = options.temperature if options.temperature is not None else agent.temperature
        max_tokens = options.max_tokens if options.max_tokens is not None else agent.max_tokens

        target = agent
        messages: list[PromptMessage] = []
        started = self._clock()
        log_agent_turn(agent.id, str(agent.provider), agent.model, user_id)

        try:
            api_key = self._require_api_key(agent.provider)
            messages = self._assemble(agent, query, contexts, history)
            target = self._streaming_target(agent)
            if target is not agent:
                api_key = self._require_api_key(target.provider)
            adapter = self.registry.get(target.provider)

            usage: Optional[TokenUsage] = None
            finish_reason: Optional[str] = None
            events = adapter.stream(target.model, messages, api_key, temperature, max_tokens)
            async with aclosing(events):
                async for event in events:
                    if isinstance(event, ContentDelta):
                        yield ContentChunk(agent_id=agent.id, delta=event.text)
                    elif isinstance(event, StreamFinished):
                        usage = event.usage
                        finish_reason = event.finish_reason
        except Exception as e:
            info = self.error_handler.classify(e, target.provider, target.model)
            self._note_rate_limit(info)
            logger.error(f"Agent turn failed for {agent.id} ({target.provider}/{target.model}): {info.message}")
            log_error(info.kind.value, info.message, {"agent_id": agent.id, "provider": str(target.provider)})

            yield ErrorChunk(agent_id=agent.id, error=self.error_handler.get_user_friendly_message(info))
            yield MetadataChunk(
                agent_id=agent.id,
                tokens=None,
                model_name=target.model,
                finish_reason="error",
                error=info.message,
            )
            duration_ms = self._elapsed_ms(started)
            log_agent_turn_completion(agent.id, UsageStatus.error.value, duration_ms)
            await self.usage_recorder.track_error(
                info,
                user_id=user_id,
                prompt_tokens=estimate_prompt_tokens(messages),
                project_id=project_id,
                agent_id=agent.id,
                duration_ms=duration_ms,
            )
            return

        yield MetadataChunk(
            agent_id=agent.id,
            tokens=usage,
            model_name=target.model,
            finish_reason=finish_reason or "unknown",
            error=None,
        )
        duration_ms = self._elapsed_ms(started)
        log_agent_turn_completion(agent.id, UsageStatus.success.value, duration_ms)
        await self.usage_recorder.record_attempt(
            user_id=user_id,
            provider=str(target.provider),
            model=target.model,
            usage=usage,
            status=UsageStatus.success,
            duration_ms=duration_ms,
            project_id=project_id,
            agent_id=agent.id,
            metadata={"type": "stream"},
        )

    # -----------------------------------------------------------------
    # Batch path
    # -----------------------------------------------------------------

    async def execute_once(
        self,
        agent: AgentConfig,
        query: str,
        contexts: Sequence[ContextDocument] = (),
        history: Sequence[ChatMessage] = (),
        *,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> AgentResponse:
        """
        Run a single non-streaming attempt, recording its usage.

        Raises:
            Whatever the provider raised; usage is recorded before re-raising.
        """
        api_key = self._require_api_key(agent.provider)
        messages = self._assemble(agent, query, contexts, history)
        adapter = self.registry.get(agent.provider)
        started = self._clock()
        try:
            result = await adapter.complete(agent.model, messages, api_key, agent.temperature, agent.max_tokens)
        except Exception as e:
            await self.usage_recorder.record_attempt(
                user_id=user_id,
                provider=str(agent.provider),
                model=agent.model,
                usage=TokenUsage.from_counts(estimate_prompt_tokens(messages), 0),
                status=UsageStatus.error,
                duration_ms=self._elapsed_ms(started),
                project_id=project_id,
                agent_id=agent.id,
                metadata={"error": str(e)},
            )
            raise

        await self.usage_recorder.record_attempt(
            user_id=user_id,
            provider=str(agent.provider),
            model=result.model,
            usage=result.usage,
            status=UsageStatus.success,
            duration_ms=self._elapsed_ms(started),
            project_id=project_id,
            agent_id=agent.id,
        )
        return AgentResponse(
            agent_id=agent.id,
            agent_name=agent.name,
            response=result.text,
            model=result.model,
            usage=result.usage,
        )

    async def _execute_fallback(
        self,
        agent: AgentConfig,
        reason: str,
        query: str,
        contexts: Sequence[ContextDocument],
        history: Sequence[ChatMessage],
        user_id: Optional[str],
        project_id: Optional[str],
    ) -> Optional[AgentResponse]:
        """
        Run the fallback model once.

        Returns None when no usable fallback exists or the fallback failed. A
        fallback failure is classified against the fallback's own provider and
        model, so a rate limit it hits cools down the fallback, not ``agent``.
        """
        fallback = self._usable_fallback(agent)
        if fallback is None:
            return None
        logger.info(f"Falling back from {agent.provider}/{agent.model} to {fallback.provider}/{fallback.model}: {reason}")
        try:
            response = await self.execute_once(
                fallback, query, contexts, history, user_id=user_id, project_id=project_id
            )
        except Exception as e:
            info = self.error_handler.classify(e, fallback.provider, fallback.model)
            self._note_rate_limit(info)
            logger.warning(f"Fallback {fallback.provider}/{fallback.model} for agent {agent.id} failed: {info.message}")
            return None
        return response.model_copy(
            update={
                "fallback_used": FallbackInfo(
                    original_provider=agent.provider, original_model=agent.model, reason=reason
                )
            }
        )

    def _failed_response(self, agent: AgentConfig, info: ApiErrorInfo) -> AgentResponse:
        return AgentResponse(
            agent_id=agent.id,
            agent_name=agent.name,
            response=self.error_handler.get_user_friendly_message(info),
            error=info.message,
            model=agent.model,
        )

    async def execute_with_retry(
        self,
        agent: AgentConfig,
        query: str,
        contexts: Sequence[ContextDocument] = (),
        history: Sequence[ChatMessage] = (),
        *,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> AgentResponse:
        """
        Run a turn with the rate-limit, retry and fallback policy.

        - Rate limited on the first attempt: run the fallback model instead.
        - Rate limited without a usable fallback: wait out the cooldown, at
          most ``max_retries`` times.
        - Retryable failure: record the cooldown, wait, retry the same model.
        - Anything else, or retries exhausted: try the fallback once; if it
          also fails the original error is reported.

        The fallback model is tried at most once per turn. Never raises;
        failures come back as an ``AgentResponse`` whose ``response`` is a
        user-facing sentence and ``error`` the classified message.
        """
        retry_count = 0
        fallback_tried = False
        while True:
            try:
                if self.error_handler.is_rate_limited(agent.provider, agent.model):
                    if retry_count == 0 and not fallback_tried:
                        fallback_tried = True
                        response = await self._execute_fallback(
                            agent, RATE_LIMIT_FALLBACK_REASON, query, contexts, history, user_id, project_id
                        )
                        if response is not None:
                            return response
                    if retry_count < self.max_retries:
                        wait_ms = self.error_handler.get_retry_after_time(agent.provider, agent.model)
                        logger.info(f"{agent.provider}/{agent.model} rate limited; waiting {wait_ms}ms")
                        await self._sleep(wait_ms / 1000)
                        retry_count += 1
                        continue
                    raise RateLimitExhaustedError(str(agent.provider), agent.model)

                return await self.execute_once(
                    agent, query, contexts, history, user_id=user_id, project_id=project_id
                )
            except ConfigurationError as e:
                info = self.error_handler.classify(e, agent.provider, agent.model)
                logger.error(f"Agent {agent.id} cannot run: {info.message}")
                return self._failed_response(agent, info)
            except Exception as e:
                info = self.error_handler.classify(e, agent.provider, agent.model)
                logger.error(
                    f"Agent {agent.id} attempt {retry_count + 1} failed ({info.kind.value}): {info.message}"
                )

                if info.retryable and retry_count < self.max_retries:
                    self._note_rate_limit(info)
                    delay_ms = info.retry_after_ms or DEFAULT_RETRY_DELAY_MS
                    logger.info(f"Retrying agent {agent.id} in {delay_ms}ms")
                    await self._sleep(delay_ms / 1000)
                    retry_count += 1
                    continue

                if not fallback_tried:
                    fallback_tried = True
                    response = await self._execute_fallback(
                        agent, info.message, query, contexts, history, user_id, project_id
                    )
                    if response is not None:
                        return response
                return self._failed_response(agent, info)
