from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, AsyncIterator, List, Optional, Sequence
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sse_starlette.sse import AppStatus

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
from mars_next.agent_core.repos.models import AgentRow, ContextRow, ProjectMemberRow, ProjectRow
from mars_next.agent_core.repos.sql import build_sql_repos, create_all, create_sessionmaker
from mars_next.agent_core.schemas.domain import PromptMessage, TokenUsage

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER = "user-1"
MEMBER = "user-2"
STRANGER = "user-3"


class RecordingAdapter(ProviderAdapter):
    """Provider adapter answering with a fixed text and remembering every prompt."""

    def __init__(self, provider: str, text: str = "Hello there", fail: Optional[BaseException] = None) -> None:
        self.provider = provider
        self.text = text
        self.fail = fail
        self.prompts: List[List[PromptMessage]] = []

    async def complete(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        self.prompts.append(list(messages))
        if self.fail is not None:
            raise self.fail
        return CompletionResult(text=f"{self.text} ({model})", usage=TokenUsage.from_counts(20, 5), model=model)

    async def stream(
        self,
        model: str,
        messages: Sequence[PromptMessage],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        self.prompts.append(list(messages))
        for word in self.text.split(" "):
            yield ContentDelta(word + " ")
        if self.fail is not None:
            raise self.fail
        yield StreamFinished(usage=TokenUsage.from_counts(20, 5), finish_reason="stop")


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    # sse-starlette keeps a process-wide exit event bound to the loop that created it
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine: AsyncEngine):
    """Session factory over a seeded database.

    - ``project-1`` is owned by ``user-1``; ``user-2`` is a member.
    - ``project-2`` is owned by ``user-3``.
    - ``user-1`` owns two agents in ``project-1`` and the ``ctx-1`` context;
      ``user-3`` owns ``agent-3`` and ``ctx-2``.
    """
    factory = create_sessionmaker(test_engine)
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    async with factory() as s:
        s.add_all(
            [
                ProjectRow(id="project-1", user_id=OWNER, name="Launch plan"),
                ProjectRow(id="project-2", user_id=STRANGER, name="Elsewhere"),
                ProjectMemberRow(project_id="project-1", user_id=MEMBER),
                AgentRow(
                    id="agent-1",
                    project_id="project-1",
                    user_id=OWNER,
                    name="Analyst",
                    provider="openai",
                    model="gpt-4o",
                    system_prompt="You are an analyst.",
                    created_at=base,
                ),
                AgentRow(
                    id="agent-2",
                    project_id="project-1",
                    user_id=OWNER,
                    name="Critic",
                    provider="anthropic",
                    model="claude-3-5-sonnet-latest",
                    created_at=base + timedelta(minutes=1),
                ),
                AgentRow(
                    id="agent-3",
                    project_id="project-2",
                    user_id=STRANGER,
                    name="Outsider",
                    provider="openai",
                    model="gpt-4o",
                ),
                ContextRow(id="ctx-1", project_id="project-1", user_id=OWNER, name="Notes", content="Launch on Monday"),
                ContextRow(id="ctx-2", project_id="project-2", user_id=STRANGER, name="Secret", content="classified"),
            ]
        )
        await s.commit()
    return factory


@pytest.fixture
def openai_adapter() -> RecordingAdapter:
    return RecordingAdapter("openai")


@pytest.fixture
def anthropic_adapter() -> RecordingAdapter:
    return RecordingAdapter("anthropic", text="Careful now")


@pytest.fixture
def chat_service(session_factory, openai_adapter, anthropic_adapter):
    from mars_next.server.services.chat_service import ChatService

    return ChatService(
        build_sql_repos(session_factory=session_factory),
        api_keys=StaticApiKeyProvider({"openai": "sk-test", "anthropic": "sk-ant-test"}),
        registry=ProviderRegistry({"openai": openai_adapter, "anthropic": anthropic_adapter}),
        error_handler=ApiErrorHandler(),
    )


@pytest.fixture
def recording_adapter() -> type:
    return RecordingAdapter


@pytest_asyncio.fixture(name="client")
async def client_fixture(chat_service) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and overridden dependencies."""
    from mars_next.server.main import app
    from mars_next.server.services.chat_service import get_chat_service

    app.dependency_overrides[get_chat_service] = lambda: chat_service

    # Mock the lifespan to prevent database initialization during tests
    async def mock_lifespan(app):
        yield

    with patch("mars_next.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"X-User-Id": OWNER}
