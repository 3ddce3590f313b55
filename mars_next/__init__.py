"""MARS Next.

Multi-agent chat service: the agents of a project answer a user's message,
either one agent streaming its reply token by token, or several agents whose
answers are merged into one.

Core subpackages
----------------

- ``mars_next.agent_core``:

  - Domain schemas (agents, contexts, chat history, response chunks).
  - Prompt assembly with a bounded context budget.
  - Provider adapters over pydantic-ai, selected through a registry.
  - Error classification, rate-limit cooldowns and the fallback chain.
  - The agent-turn executor, the multi-agent batch runner and the synthesizer.
  - Repository interfaces and SQL implementations for persistence.

- ``mars_next.server``:

  - The FastAPI application, SSE transport and request dependencies.

Typical workflow
----------------

Most integrations go through ``mars_next.server.services.chat_service.ChatService``:

1. Check the user's access to the project and load the agent.
2. Load the selected context documents the user owns.
3. Stream the agent's turn, or run several agents and synthesize.
4. Usage of every provider call is recorded on the side.
"""
