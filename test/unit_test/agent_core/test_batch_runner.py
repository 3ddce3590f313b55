from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from mars_next.agent_core.batch_runner import MultiAgentBatchRunner
from mars_next.agent_core.schemas.domain import AgentConfig, AgentResponse, AIProvider

pytestmark = pytest.mark.asyncio


def _agents(count: int):
    return [
        AgentConfig(id=f"agent-{i}", name=f"Agent {i}", provider=AIProvider.openai, model="gpt-4o")
        for i in range(1, count + 1)
    ]


def _ok(agent: AgentConfig, *args, **kwargs) -> AgentResponse:
    return AgentResponse(agent_id=agent.id, agent_name=agent.name, response=f"answer from {agent.id}")


class TestMultiAgentBatchRunner:
    """Bounded-concurrency execution over ``execute_with_retry``."""

    async def test_one_failing_agent_does_not_hide_the_others(self):
        async def execute(agent, *args, **kwargs):
            if agent.id == "agent-2":
                raise RuntimeError("exploded")
            return _ok(agent)

        executor = AsyncMock()
        executor.execute_with_retry.side_effect = execute

        results = await MultiAgentBatchRunner(executor).run(_agents(3), "question")

        assert list(results) == ["agent-1", "agent-2", "agent-3"]
        assert results["agent-1"].response == "answer from agent-1"
        assert results["agent-3"].response == "answer from agent-3"
        assert results["agent-2"].response == ""
        assert results["agent-2"].error == "exploded"
        assert results["agent-2"].agent_name == "Agent 2"

    async def test_batches_never_exceed_max_concurrency(self):
        running = 0
        peak = 0
        batch_sizes = []

        async def execute(agent, *args, **kwargs):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1
            return _ok(agent)

        executor = AsyncMock()
        executor.execute_with_retry.side_effect = execute
        runner = MultiAgentBatchRunner(executor, max_concurrency=2)

        for batch in runner.batches(_agents(5)):
            batch_sizes.append(len(batch))
        results = await runner.run(_agents(5), "question")

        assert batch_sizes == [2, 2, 1]
        assert peak <= 2
        assert len(results) == 5

    async def test_shared_inputs_are_forwarded(self):
        executor = AsyncMock()
        executor.execute_with_retry.side_effect = _ok

        await MultiAgentBatchRunner(executor).run(
            _agents(1), "question", ["ctx"], ["history"], user_id="user-1", project_id="project-1"
        )

        executor.execute_with_retry.assert_awaited_once_with(
            _agents(1)[0], "question", ["ctx"], ["history"], user_id="user-1", project_id="project-1"
        )

    async def test_no_agents(self):
        assert await MultiAgentBatchRunner(AsyncMock()).run([], "question") == {}


async def test_max_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        MultiAgentBatchRunner(AsyncMock(), max_concurrency=0)
