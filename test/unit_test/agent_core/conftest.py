from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Sequence, Union

import pytest

from mars_next.agent_core.api_keys import StaticApiKeyProvider
from mars_next.agent_core.errors import ApiErrorHandler
from mars_next.agent_core.providers.base import (
    CompletionResult,
    ContentDelta,
    ProviderAdapter,
    StreamEvent,
    StreamFinished,
)
from mars_next.agent_core.providers.registry import ProviderRegistry
from mars_next.agent_core.rate_limit import RateLimitCache
from mars_next.agent_core.schemas.domain import AgentConfig, AIProvider, PromptMessage, TokenUsage, UsageRecord
from mars_next.agent_core.usage import UsageRecorder


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


Outcome = Union[str, BaseException]


class ScriptedAdapter(ProviderAdapter):
    """
    Provider adapter replaying scripted outcomes.

    ``outcomes`` are consumed one per ``complete`` call (the last one repeats);
    a string is returned as the completion text, an exception is raised.
    ``stream`` yields ``deltas`` and then raises ``stream_error`` or finishes.
    """

    def __init__(
        self,
        provider: str = "openai",
        outcomes: Sequence[Outcome] = ("ok",),
        deltas: Sequence[str] = ("Hel", "lo"),
        stream_error: Optional[BaseException] = None,
        usage: TokenUsage = TokenUsage.from_counts(12, 3),
        finish_reason: Optional[str] = "stop",
    ) -> None:
        self.provider = provider
        self.outcomes = list(outcomes)
        self.deltas = list(deltas)
        self.stream_error = stream_error
        self.usage = usage
        self.finish_reason = finish_reason
        self.calls: List[dict] = []
        self.stream_closed = False

    def _record(self, kind: str, model: str, messages: Sequence[PromptMessage], api_key: str) -> None:
        self.calls.append({"kind": kind, "model": model, "messages": list(messages), "api_key": api_key})

    async def complete(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        self._record("complete", model, messages, api_key)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return CompletionResult(text=outcome, usage=self.usage, model=model, finish_reason=self.finish_reason)

    async def stream(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        self._record("stream", model, messages, api_key)
        try:
            for delta in self.deltas:
                yield ContentDelta(delta)
            if self.stream_error is not None:
                raise self.stream_error
            yield StreamFinished(usage=self.usage, finish_reason=self.finish_reason)
        finally:
            self.stream_closed = True


class InMemoryUsageRepository:
    """``UsageRepository`` keeping records in a list; ``fail`` makes ``append`` raise."""

    def __init__(self, fail: bool = False) -> None:
        self.records: List[UsageRecord] = []
        self.fail = fail

    async def append(self, record: UsageRecord) -> None:
        if self.fail:
            raise OSError("usage store unavailable")
        self.records.append(record)

    async def list(
        self, user_id: str, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> List[UsageRecord]:
        return [r for r in self.records if r.user_id == user_id]


class SDKError(Exception):
    """Stand-in for a vendor SDK error carrying an HTTP status, headers and an error body."""

    def __init__(
        self,
        message: str = "Rate limit reached",
        status_code: int = 429,
        headers: Optional[dict] = None,
        error_type: str = "rate_limit_exceeded",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = type("Response", (), {"status_code": status_code, "headers": headers or {}})()
        self.body: Any = {"error": {"type": error_type, "message": message}}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def error_handler(clock: FakeClock) -> ApiErrorHandler:
    return ApiErrorHandler(rate_limits=RateLimitCache(clock=clock))


@pytest.fixture
def usage_repo() -> InMemoryUsageRepository:
    return InMemoryUsageRepository()


@pytest.fixture
def usage_recorder(usage_repo: InMemoryUsageRepository) -> UsageRecorder:
    return UsageRecorder(usage_repo)


@pytest.fixture
def api_keys() -> StaticApiKeyProvider:
    return StaticApiKeyProvider({"openai": "sk-openai", "anthropic": "sk-anthropic", "google": "g-key"})


@pytest.fixture
def openai_adapter() -> ScriptedAdapter:
    return ScriptedAdapter(provider="openai")


@pytest.fixture
def anthropic_adapter() -> ScriptedAdapter:
    return ScriptedAdapter(provider="anthropic")


@pytest.fixture
def registry(openai_adapter: ScriptedAdapter, anthropic_adapter: ScriptedAdapter) -> ProviderRegistry:
    return ProviderRegistry({"openai": openai_adapter, "anthropic": anthropic_adapter})


@pytest.fixture
def agent() -> AgentConfig:
    return AgentConfig(
        id="agent-1",
        name="Analyst",
        provider=AIProvider.openai,
        model="gpt-4o",
        system_prompt="You are an analyst.",
        temperature=0.2,
        max_tokens=512,
        project_id="project-1",
        user_id="user-1",
    )


@pytest.fixture
def sdk_error() -> type:
    return SDKError


@pytest.fixture
def scripted_adapter() -> type:
    return ScriptedAdapter


@pytest.fixture
def executor(registry, api_keys, error_handler, usage_recorder, clock):
    from mars_next.agent_core.executor import AgentTurnExecutor

    return AgentTurnExecutor(
        registry=registry,
        api_keys=api_keys,
        error_handler=error_handler,
        usage_recorder=usage_recorder,
        sleep=clock.sleep,
        clock=clock,
    )
