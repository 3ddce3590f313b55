"""
Health Check Endpoints.

This module provides basic system status endpoints (health, version, provider
configuration) used for monitoring and deployment verification.
"""

from fastapi import APIRouter

from mars_next.server.core import constant
from mars_next.server.services.deps import ChatServiceDep

router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Check the operational status of the API server.",
    response_description="Status object.",
)
async def health_check():
    """
    Health check endpoint.

    Returns a simple status indicator to confirm the server is running and reachable.
    """
    return {"status": "ok"}


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve version information for the API server.",
    response_description="Version object.",
)
async def version():
    """
    Get API version.

    Returns the current semantic version of the API and supported schema version.
    """
    return {"version": constant.VERSION, "schema_version": constant.SCHEMA_VERSION}


@router.get(
    "/health/providers",
    summary="Provider Configuration",
    description="List the LLM providers that have an API key configured.",
    response_description="Configured providers.",
)
async def provider_status(chat_service: ChatServiceDep):
    """
    Report which providers can serve agent turns.

    ``has_any_api_key`` is false when no provider key is configured at all; every turn would fail then.
    """
    providers = [provider.value for provider in chat_service.configured_providers()]
    return {"has_any_api_key": bool(providers), "configured_providers": providers}
