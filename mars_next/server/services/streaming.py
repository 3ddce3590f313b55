"""
Server-Sent Events transport for agent turns.

Turns the executor's chunk generator into ``data: <json>\\n\\n`` frames and
wraps them in an sse-starlette ``EventSourceResponse``. Stream-level failures
become one final ``error`` frame attributed to the ``system`` agent.
"""

from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import Request
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from mars_next.agent_core.schemas.domain import ErrorChunk
from mars_next.core.logging_config import get_logger

logger = get_logger(__name__)

SYSTEM_AGENT_ID = "system"
STREAM_ERROR_MESSAGE = "Stream encountered an error"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse_frame(chunk: BaseModel) -> str:
    """Serialize one chunk as an SSE ``data`` frame with camelCase keys."""
    return f"data: {chunk.model_dump_json(by_alias=True)}\n\n"


async def sse_event_stream(
    chunks: AsyncIterator[BaseModel],
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """
    Drain ``chunks`` into SSE frames.

    Args:
        chunks: Async generator of response chunks
        is_disconnected: Awaitable check for a gone client; draining stops
            without further frames once it reports True

    Yields:
        One frame per chunk, plus a final system ``error`` frame when the
        generator raised. The generator is always closed on exit.
    """
    try:
        async for chunk in chunks:
            if is_disconnected is not None and await is_disconnected():
                logger.info("Client disconnected, stopping agent stream")
                break
            yield format_sse_frame(chunk)
    except Exception as e:
        logger.error(f"Error in streaming response: {e}", exc_info=True)
        yield format_sse_frame(ErrorChunk(agent_id=SYSTEM_AGENT_ID, error=str(e) or STREAM_ERROR_MESSAGE))
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()


async def _encoded(frames: AsyncIterator[str]) -> AsyncIterator[bytes]:
    # bytes pass through EventSourceResponse untouched, keeping the frames as built
    async for frame in frames:
        yield frame.encode("utf-8")


def create_event_stream_response(chunks: AsyncIterator[BaseModel], request: Request) -> EventSourceResponse:
    """Build the ``text/event-stream`` response for a chunk generator."""
    return EventSourceResponse(
        _encoded(sse_event_stream(chunks, request.is_disconnected)),
        headers=SSE_HEADERS,
        sep="\n",
    )
