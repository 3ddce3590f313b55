"""
Unit tests for Usage Statistics API endpoints.

Tests cover:
- Aggregating usage per provider and per model
- Filtering by date range through the ``from``/``to`` query parameters
- Handling empty usage data and unauthenticated calls
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from mars_next.agent_core.schemas.domain import UsageRecord, UsageStatus
from mars_next.server.api.v1.usage import get_usage

pytestmark = pytest.mark.asyncio


async def _seed(chat_service) -> None:
    records = [
        UsageRecord(
            user_id="user-1",
            provider="openai",
            model="gpt-4o",
            tokens_prompt=10,
            tokens_completion=5,
            tokens_total=15,
            created_at=datetime(2026, 1, 10, tzinfo=timezone.utc),
        ),
        UsageRecord(
            user_id="user-1",
            provider="openai",
            model="gpt-4o-mini",
            tokens_prompt=4,
            tokens_total=4,
            status=UsageStatus.error,
            created_at=datetime(2026, 2, 10, tzinfo=timezone.utc),
        ),
        UsageRecord(
            user_id="user-1",
            provider="manual",
            model="basic-synthesis",
            tokens_completion=7,
            tokens_total=7,
            created_at=datetime(2026, 2, 11, tzinfo=timezone.utc),
        ),
        UsageRecord(user_id="user-3", provider="google", model="gemini-1.5-pro", tokens_total=99),
    ]
    for record in records:
        await chat_service.repos.usage.append(record)


class TestUsageEndpoint:
    """GET /api/v1/usage"""

    async def test_aggregates_the_callers_usage(self, client, auth_headers, chat_service):
        await _seed(chat_service)

        response = await client.get("/api/v1/usage", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "user-1"
        assert data["entries_count"] == 3
        assert data["success_count"] == 2
        assert data["error_count"] == 1
        assert (data["tokens_prompt"], data["tokens_completion"], data["tokens_total"]) == (14, 12, 26)
        assert data["by_provider"] == {
            "openai": {"requests": 2, "tokens_total": 19},
            "manual": {"requests": 1, "tokens_total": 7},
        }
        assert data["by_model"]["openai/gpt-4o-mini"] == {"requests": 1, "tokens_total": 4}

    async def test_date_range_filter(self, client, auth_headers, chat_service):
        await _seed(chat_service)

        response = await client.get(
            "/api/v1/usage",
            params={"from": "2026-02-01T00:00:00Z", "to": "2026-02-28T00:00:00Z"},
            headers=auth_headers,
        )

        data = response.json()
        assert data["entries_count"] == 2
        assert data["period"]["from"].startswith("2026-02-01")

    async def test_no_usage(self, client, auth_headers):
        response = await client.get("/api/v1/usage", headers=auth_headers)

        data = response.json()
        assert data["entries_count"] == 0
        assert data["by_provider"] == {}

    async def test_requires_a_user(self, client):
        response = await client.get("/api/v1/usage")

        assert response.status_code == 401


class TestDirectFunctionCalls:
    """Call the endpoint function directly with a mocked service."""

    async def test_forwards_the_date_range(self):
        chat_service = AsyncMock()
        chat_service.usage_summary.return_value = {"entries_count": 0}
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)

        result = await get_usage(chat_service=chat_service, user_id="user-1", from_date=start, to_date=None)

        assert result == {"entries_count": 0}
        chat_service.usage_summary.assert_awaited_once_with("user-1", from_date=start, to_date=None)
