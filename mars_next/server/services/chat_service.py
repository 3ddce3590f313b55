from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from mars_next.agent_core.api_keys import ApiKeyProvider, SettingsApiKeyProvider, configured_providers
from mars_next.agent_core.batch_runner import MultiAgentBatchRunner
from mars_next.agent_core.errors import ApiErrorHandler
from mars_next.agent_core.executor import AgentTurnExecutor
from mars_next.agent_core.providers.registry import ProviderRegistry, build_default_registry
from mars_next.agent_core.repos.sql import SqlRepoBundle, build_sql_repos
from mars_next.agent_core.schemas.domain import (
    AgentConfig,
    AgentResponse,
    AgentResponseChunk,
    AIProvider,
    ChatMessage,
    ContextDocument,
    TurnOptions,
    UsageRecord,
    UsageStatus,
)
from mars_next.agent_core.synthesizer import Synthesizer
from mars_next.agent_core.usage import UsageRecorder
from mars_next.core.logging_config import get_logger
from mars_next.server.core.config import Settings, settings

logger = get_logger(__name__)


class ChatService:
    """
    Service layer behind the chat endpoints.

    Owns the repositories and the agent pipeline (executor, batch runner and
    synthesizer) and enforces the ownership rules: agents must belong to the
    requested project and user, contexts are fetched scoped to their owner.
    One instance is shared per process so the rate-limit cache is too.
    """

    def __init__(
        self,
        repos: Optional[SqlRepoBundle] = None,
        *,
        api_keys: Optional[ApiKeyProvider] = None,
        registry: Optional[ProviderRegistry] = None,
        error_handler: Optional[ApiErrorHandler] = None,
        config: Optional[Settings] = None,
    ) -> None:
        config = config or settings
        if repos is None:
            from mars_next.server.core.database import async_session_maker

            repos = build_sql_repos(session_factory=async_session_maker)
        self.repos = repos
        self.api_keys = api_keys or SettingsApiKeyProvider(config)
        self.registry = registry or build_default_registry(config)
        self.error_handler = error_handler or ApiErrorHandler()
        self.usage_recorder = UsageRecorder(repos.usage)

        self.executor = AgentTurnExecutor(
            registry=self.registry,
            api_keys=self.api_keys,
            error_handler=self.error_handler,
            usage_recorder=self.usage_recorder,
            max_retries=config.agent_max_retries,
            max_context_chars=config.max_context_chars,
        )
        self.batch_runner = MultiAgentBatchRunner(self.executor, max_concurrency=config.max_concurrent_agents)
        self.synthesizer = Synthesizer(
            registry=self.registry,
            api_keys=self.api_keys,
            error_handler=self.error_handler,
            usage_recorder=self.usage_recorder,
        )

    async def user_has_project_access(self, user_id: str, project_id: str) -> bool:
        return await self.repos.projects.user_has_access(user_id, project_id)

    async def get_project_agent(self, agent_id: str, project_id: str, user_id: str) -> Optional[AgentConfig]:
        """Return the agent only when it belongs to ``project_id`` and ``user_id``."""
        agent = await self.repos.agents.get(agent_id)
        if agent is None or agent.project_id != project_id or agent.user_id != user_id:
            return None
        return agent

    async def load_contexts(self, context_ids: Sequence[Any], user_id: str) -> List[ContextDocument]:
        """
        Fetch the user's context documents for the selected ids.

        Non-string and empty ids are dropped. Ids the user does not own, or
        that do not exist, are silently left out; the mismatch is only logged.
        """
        valid_ids = list(dict.fromkeys(cid for cid in context_ids if isinstance(cid, str) and cid))
        if not valid_ids:
            return []

        contexts = await self.repos.contexts.get_by_ids(valid_ids, user_id)
        if len(contexts) != len(valid_ids):
            logger.warning(
                f"User {user_id} requested {len(valid_ids)} contexts but only {len(contexts)} were accessible/found."
            )
        return contexts

    def stream_turn(
        self,
        agent: AgentConfig,
        query: str,
        contexts: Sequence[ContextDocument],
        history: Sequence[ChatMessage],
        *,
        user_id: str,
        project_id: str,
        options: Optional[TurnOptions] = None,
    ) -> AsyncIterator[AgentResponseChunk]:
        return self.executor.stream_turn(
            agent, query, contexts, history, user_id=user_id, project_id=project_id, options=options
        )

    async def select_project_agents(
        self, project_id: str, user_id: str, agent_ids: Optional[Sequence[str]] = None
    ) -> List[AgentConfig]:
        """Project agents of the user, restricted to ``agent_ids`` (in that order) when given."""
        agents = await self.repos.agents.list_for_project(project_id, user_id)
        if agent_ids is None:
            return agents
        by_id = {agent.id: agent for agent in agents}
        return [by_id[agent_id] for agent_id in dict.fromkeys(agent_ids) if agent_id in by_id]

    async def run_multi_agent(
        self,
        agents: Sequence[AgentConfig],
        query: str,
        contexts: Sequence[ContextDocument],
        history: Sequence[ChatMessage],
        *,
        user_id: str,
        project_id: str,
    ) -> Tuple[Dict[str, AgentResponse], str]:
        """Run every agent on ``query`` and synthesize their answers."""
        logger.info(f"Running {len(agents)} agents for project {project_id}")
        responses = await self.batch_runner.run(
            agents, query, contexts, history, user_id=user_id, project_id=project_id
        )
        synthesis = await self.synthesizer.synthesize(responses, query, user_id=user_id, project_id=project_id)
        return responses, synthesis

    def configured_providers(self) -> List[AIProvider]:
        return configured_providers(self.api_keys)

    async def usage_summary(
        self, user_id: str, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Aggregate the user's usage records per provider and model."""
        records: List[UsageRecord] = await self.repos.usage.list(user_id, from_date, to_date)

        by_provider: Dict[str, Dict[str, int]] = {}
        by_model: Dict[str, Dict[str, int]] = {}
        for record in records:
            for bucket, key in ((by_provider, record.provider), (by_model, f"{record.provider}/{record.model}")):
                totals = bucket.setdefault(key, {"requests": 0, "tokens_total": 0})
                totals["requests"] += 1
                totals["tokens_total"] += record.tokens_total

        return {
            "user_id": user_id,
            "period": {"from": from_date, "to": to_date},
            "entries_count": len(records),
            "success_count": sum(1 for r in records if r.status is UsageStatus.success),
            "error_count": sum(1 for r in records if r.status is UsageStatus.error),
            "tokens_prompt": sum(r.tokens_prompt for r in records),
            "tokens_completion": sum(r.tokens_completion for r in records),
            "tokens_total": sum(r.tokens_total for r in records),
            "by_provider": by_provider,
            "by_model": by_model,
        }


# Global singleton
_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service
