from __future__ import annotations

from mars_next.agent_core.rate_limit import RateLimitCache


class TestRateLimitCache:
    """Cooldown windows measured against an injected clock."""

    def test_active_until_cooldown_elapses(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 5000, "gpt-4o")

        clock.advance(4.999)
        assert cache.is_rate_limited("openai", "gpt-4o")

        clock.advance(0.002)
        assert not cache.is_rate_limited("openai", "gpt-4o")

    def test_expires_exactly_at_cooldown_end(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 5000, "gpt-4o")

        clock.advance(5.0)

        assert not cache.is_rate_limited("openai", "gpt-4o")
        assert cache.get_retry_after_time("openai", "gpt-4o") == 0

    def test_remaining_time_in_milliseconds(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("anthropic", 10_000)

        clock.advance(4)

        assert cache.get_retry_after_time("anthropic") == 6000

    def test_provider_wide_entry_matches_every_model(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("google", 1000)

        assert cache.is_rate_limited("google", "gemini-1.5-pro")
        assert cache.is_rate_limited("google")
        assert not cache.is_rate_limited("openai")

    def test_model_entry_does_not_block_other_models(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 1000, "gpt-4o")

        assert not cache.is_rate_limited("openai", "gpt-4o-mini")
        assert cache.is_rate_limited("openai")

    def test_record_replaces_existing_entry(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 60_000, "gpt-4o")
        cache.record("openai", 1000, "gpt-4o")

        assert len(cache) == 1
        clock.advance(2)
        assert not cache.is_rate_limited("openai", "gpt-4o")

    def test_record_prunes_expired_entries(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 1000, "gpt-4o")
        cache.record("anthropic", 1000)

        clock.advance(5)
        cache.record("google", 1000)

        assert [entry.provider for entry in cache] == ["google"]

    def test_prune_stops_at_first_active_entry(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 1000)
        cache.record("anthropic", 60_000)
        cache.record("google", 1000)

        clock.advance(2)
        removed = cache.prune()

        assert removed == 1
        assert [entry.provider for entry in cache] == ["anthropic", "google"]

    def test_clear(self, clock):
        cache = RateLimitCache(clock=clock)
        cache.record("openai", 1000)

        cache.clear()

        assert len(cache) == 0
        assert cache.snapshot() == {}
