"""In-memory rate-limit cooldown tracking.

``RateLimitCache`` remembers, per ``(provider, model)``, when a provider last
answered with a rate-limit error and for how long it asked us to back off.
It is process-local and never persisted; a restart forgets everything.

Entries are kept in insertion order (an upsert moves the key to the back), so
pruning only has to look at the front of the map and can stop at the first
entry that is still cooling down.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Dict, Iterator, Optional, Tuple

from mars_next.core.logging_config import get_logger

from .schemas.domain import RateLimitEntry

logger = get_logger(__name__)

Clock = Callable[[], float]
_Key = Tuple[str, Optional[str]]


class RateLimitCache:
    """Cooldown bookkeeping keyed by provider and optional model.

    An entry recorded without a model applies to every model of that
    provider; a lookup without a model matches any entry of that provider.

    Args:
        clock: Monotonic time source in seconds. Tests inject a fake clock.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._entries: "OrderedDict[_Key, RateLimitEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RateLimitEntry]:
        return iter(list(self._entries.values()))

    def _is_active(self, entry: RateLimitEntry, now: float) -> bool:
        return now < entry.expires_at

    @staticmethod
    def _matches(entry: RateLimitEntry, provider: str, model: Optional[str]) -> bool:
        if entry.provider != provider:
            return False
        return model is None or entry.model is None or entry.model == model

    def record(self, provider: str, retry_after_ms: int, model: Optional[str] = None) -> RateLimitEntry:
        """
        Start (or restart) a cooldown for ``provider``/``model``.

        Replaces any existing entry for the same key and prunes expired
        entries from the front of the map.
        """
        key: _Key = (provider, model)
        entry = RateLimitEntry(
            provider=provider,
            model=model,
            recorded_at=self._clock(),
            cooldown_ms=max(int(retry_after_ms), 0),
        )
        self._entries.pop(key, None)
        self._entries[key] = entry
        self.prune()
        logger.warning(f"Rate limit recorded for {provider}/{model or '*'}: cooling down for {entry.cooldown_ms}ms")
        return entry

    def is_rate_limited(self, provider: str, model: Optional[str] = None) -> bool:
        now = self._clock()
        return any(
            self._matches(entry, provider, model) and self._is_active(entry, now) for entry in self._entries.values()
        )

    def get_retry_after_time(self, provider: str, model: Optional[str] = None) -> int:
        """Remaining cooldown in milliseconds across matching entries, 0 when none is active."""
        now = self._clock()
        remaining = [
            entry.expires_at - now
            for entry in self._entries.values()
            if self._matches(entry, provider, model) and self._is_active(entry, now)
        ]
        if not remaining:
            return 0
        return max(int(max(remaining) * 1000), 1)

    def prune(self) -> int:
        """Drop expired entries from the front; returns how many were removed."""
        now = self._clock()
        removed = 0
        while self._entries:
            key, entry = next(iter(self._entries.items()))
            if self._is_active(entry, now):
                break
            del self._entries[key]
            removed += 1
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> Dict[_Key, RateLimitEntry]:
        return dict(self._entries)
