"""Usage accounting for provider attempts.

``UsageRecorder`` is the only place that writes usage records. Recording is a
side effect of a turn: a failing write is logged and swallowed so it can never
fail the response the user is waiting for.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mars_next.core.logging_config import get_logger
from mars_next.core.monitoring import log_llm_call

from .errors import ApiErrorInfo
from .repos.interfaces import UsageRepository
from .schemas.domain import TokenUsage, UsageRecord, UsageStatus

logger = get_logger(__name__)


class UsageRecorder:
    """
    Appends ``UsageRecord`` rows through a ``UsageRepository``.

    Records without a user are skipped: anonymous calls (scripts, tests) are
    not accounted for.
    """

    def __init__(self, repository: Optional[UsageRepository] = None) -> None:
        self._repository = repository

    async def record(self, record: UsageRecord) -> bool:
        """Persist ``record``; returns False when it was skipped or could not be written."""
        if self._repository is None:
            return False
        try:
            await self._repository.append(record)
        except Exception as e:
            logger.warning(f"Failed to record usage for {record.provider}/{record.model}: {e}")
            return False
        if record.status is UsageStatus.success:
            log_llm_call(provider=record.provider, model=record.model, tokens_used=record.tokens_total)
        return True

    async def record_attempt(
        self,
        *,
        user_id: Optional[str],
        provider: str,
        model: str,
        usage: Optional[TokenUsage] = None,
        status: UsageStatus = UsageStatus.success,
        duration_ms: Optional[int] = None,
        project_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not user_id:
            return False
        usage = usage or TokenUsage()
        return await self.record(
            UsageRecord(
                user_id=user_id,
                project_id=project_id,
                agent_id=agent_id,
                provider=str(provider),
                model=model,
                tokens_prompt=usage.prompt,
                tokens_completion=usage.completion,
                tokens_total=usage.total,
                status=status,
                duration_ms=duration_ms,
                metadata=metadata,
            )
        )

    async def track_error(
        self,
        info: ApiErrorInfo,
        *,
        user_id: Optional[str],
        prompt_tokens: int = 0,
        project_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Record a failed attempt with the classified error attached to the metadata."""
        details: Dict[str, Any] = {"error_type": info.kind.value, "error_message": info.message}
        if metadata:
            details.update(metadata)
        return await self.record_attempt(
            user_id=user_id,
            provider=info.provider,
            model=info.model or "unknown",
            usage=TokenUsage.from_counts(prompt_tokens, 0),
            status=UsageStatus.error,
            duration_ms=duration_ms,
            project_id=project_id,
            agent_id=agent_id,
            metadata=details,
        )
