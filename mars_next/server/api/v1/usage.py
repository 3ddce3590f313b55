"""
Usage Statistics Endpoints.

This module provides endpoints for querying aggregated token usage of the
current user's agent turns and syntheses.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query

from mars_next.server.services.deps import ChatServiceDep, CurrentUserDep

router = APIRouter()


@router.get(
    "",
    summary="Get Usage Statistics",
    description="Retrieve aggregated token usage for the current user.",
    response_description="Aggregated usage data.",
)
async def get_usage(
    chat_service: ChatServiceDep,
    user_id: CurrentUserDep,
    from_date: Optional[datetime] = Query(None, alias="from", description="Start date for filtering usage."),
    to_date: Optional[datetime] = Query(None, alias="to", description="End date for filtering usage."),
):
    """
    Get aggregated usage.

    Calculates the request counts and token consumption (prompt, completion, total)
    within the specified date range, broken down by provider and by model.
    """
    return await chat_service.usage_summary(user_id, from_date=from_date, to_date=to_date)
