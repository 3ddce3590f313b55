"""
Project Chat API Endpoints.

This module exposes the chat surface of a project:

- Streaming single-agent turns via Server-Sent Events (SSE). Each frame is
  ``data: <chunk json>`` where the chunk is a ``content`` delta, an ``error``
  sentence or the final ``metadata`` (token usage, model, finish reason).
- Multi-agent turns answered by several agents in bounded batches and merged
  by the synthesizer.

Checks run in this order: authentication (401), project access (403), body
validation (400), agent ownership (404).
"""

from fastapi import APIRouter, HTTPException, Request

from mars_next.core.logging_config import get_logger
from mars_next.server.schemas import ChatTurnRequest, MultiAgentChatRequest, MultiAgentChatResponse
from mars_next.server.services.deps import ChatServiceDep, CurrentUserDep, ProjectAccessDep
from mars_next.server.services.streaming import create_event_stream_response

logger = get_logger(__name__)
router = APIRouter()

AGENT_NOT_FOUND = "Agent not found or access denied"


@router.post(
    "/{project_id}/chat",
    summary="Stream Agent Turn",
    description="Run one agent on the query and stream its response as Server-Sent Events.",
    response_description="text/event-stream of agent response chunks.",
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Stream of agent response chunks"},
        401: {"description": "No authenticated user"},
        403: {"description": "No access to the project"},
        404: {"description": "Agent missing or not owned by the caller in this project"},
    },
)
async def stream_chat_turn(
    project_id: ProjectAccessDep,
    payload: ChatTurnRequest,
    request: Request,
    user_id: CurrentUserDep,
    chat_service: ChatServiceDep,
):
    """
    Stream a single agent turn.

    The agent must belong to the project and the caller. Selected contexts the
    caller does not own are left out without failing the request.
    """
    agent = await chat_service.get_project_agent(payload.agent_id, project_id, user_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=AGENT_NOT_FOUND)

    contexts = await chat_service.load_contexts(payload.context_ids, user_id)
    logger.info(f"Starting chat stream for agent {agent.id} in project {project_id} ({len(contexts)} contexts)")

    chunks = chat_service.stream_turn(
        agent,
        payload.query,
        contexts,
        payload.history,
        user_id=user_id,
        project_id=project_id,
        options=payload.turn_options(),
    )
    return create_event_stream_response(chunks, request)


@router.post(
    "/{project_id}/chat/multi",
    response_model=MultiAgentChatResponse,
    response_model_by_alias=True,
    summary="Multi-Agent Turn",
    description="Run several project agents on the query and synthesize one answer.",
    response_description="Every agent's response and the synthesized answer.",
)
async def multi_agent_chat(
    project_id: ProjectAccessDep,
    payload: MultiAgentChatRequest,
    user_id: CurrentUserDep,
    chat_service: ChatServiceDep,
) -> MultiAgentChatResponse:
    """
    Answer the query with several agents.

    Agents run concurrently in batches; a failing agent is reported in its own
    response entry and never fails the request.
    """
    agents = await chat_service.select_project_agents(project_id, user_id, payload.agent_ids)
    if not agents:
        raise HTTPException(status_code=404, detail=AGENT_NOT_FOUND)

    contexts = await chat_service.load_contexts(payload.context_ids, user_id)
    responses, synthesis = await chat_service.run_multi_agent(
        agents, payload.query, contexts, payload.history, user_id=user_id, project_id=project_id
    )
    return MultiAgentChatResponse(responses=responses, synthesis=synthesis)
