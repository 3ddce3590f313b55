"""Bounded-concurrency execution of several agents against one message."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence

from mars_next.core.logging_config import get_logger

from .executor import AgentTurnExecutor
from .schemas.domain import AgentConfig, AgentResponse, ChatMessage, ContextDocument

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 5


class MultiAgentBatchRunner:
    """
    Runs agents in sequential batches of at most ``max_concurrency``.

    Agents inside a batch run concurrently; the next batch starts only after
    every member of the current one has finished. Each agent's outcome lands
    in the result map, including unexpected exceptions, so one failing agent
    never hides the others.
    """

    def __init__(self, executor: AgentTurnExecutor, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.executor = executor
        self.max_concurrency = max_concurrency

    def batches(self, agents: Sequence[AgentConfig]) -> List[Sequence[AgentConfig]]:
        return [agents[i : i + self.max_concurrency] for i in range(0, len(agents), self.max_concurrency)]

    async def _run_one(
        self,
        agent: AgentConfig,
        user_message: str,
        contexts: Sequence[ContextDocument],
        history: Sequence[ChatMessage],
        user_id: Optional[str],
        project_id: Optional[str],
    ) -> AgentResponse:
        try:
            return await self.executor.execute_with_retry(
                agent, user_message, contexts, history, user_id=user_id, project_id=project_id
            )
        except Exception as e:
            logger.error(f"Unexpected failure while running agent {agent.id}: {e}", exc_info=True)
            return AgentResponse(agent_id=agent.id, agent_name=agent.name, response="", error=str(e) or type(e).__name__)

    async def run(
        self,
        agents: Sequence[AgentConfig],
        user_message: str,
        contexts: Sequence[ContextDocument] = (),
        history: Sequence[ChatMessage] = (),
        *,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Dict[str, AgentResponse]:
        """
        Execute every agent and collect the responses keyed by agent id.

        Args:
            agents: Agents to run, in order
            user_message: The message every agent answers
            contexts: Context documents shared by all agents
            history: Conversation history shared by all agents
            user_id: Owner of the usage records
            project_id: Project the turn belongs to

        Returns:
            ``{agent_id: AgentResponse}`` in the order of ``agents``.
        """
        results: Dict[str, AgentResponse] = {}
        batches = self.batches(agents)
        for index, batch in enumerate(batches, start=1):
            logger.info(f"Running agent batch {index}/{len(batches)} ({len(batch)} agents)")
            responses = await asyncio.gather(
                *(self._run_one(agent, user_message, contexts, history, user_id, project_id) for agent in batch)
            )
            for agent, response in zip(batch, responses):
                results[agent.id] = response
        return results
