from __future__ import annotations

import asyncio

import httpx
import pytest
from pydantic_ai.exceptions import ModelHTTPError

from mars_next.agent_core.errors import (
    DEFAULT_RATE_LIMIT_RETRY_MS,
    ApiErrorHandler,
    ApiErrorInfo,
    ApiErrorKind,
    MissingApiKeyError,
    ProviderNotSupportedError,
    RateLimitExhaustedError,
    is_timeout,
)


@pytest.fixture
def handler() -> ApiErrorHandler:
    return ApiErrorHandler()


class TestClassification:
    """Provider heuristics mapping raw failures to error kinds."""

    def test_openai_429_is_retryable_rate_limit_with_header_delay(self, handler, sdk_error):
        error = sdk_error(headers={"retry-after": "7"})

        info = handler.classify(error, "openai", "gpt-4o")

        assert info.kind is ApiErrorKind.RATE_LIMIT
        assert info.retryable is True
        assert info.retry_after_ms == 7000
        assert info.message == "OpenAI rate limit exceeded"
        assert info.status_code == 429

    def test_rate_limit_without_header_uses_default_cooldown(self, handler, sdk_error):
        info = handler.classify(sdk_error(), "deepseek", "deepseek-chat")

        assert info.kind is ApiErrorKind.RATE_LIMIT
        assert info.retry_after_ms == DEFAULT_RATE_LIMIT_RETRY_MS
        assert info.message == "DeepSeek rate limit exceeded"

    @pytest.mark.parametrize(
        ("status", "error_type", "message", "kind"),
        [
            (401, "invalid_api_key", "Incorrect API key provided", ApiErrorKind.INVALID_API_KEY),
            (400, "content_filter", "Blocked", ApiErrorKind.CONTENT_FILTER),
            (404, "not_found", "The model does not exist", ApiErrorKind.MODEL_UNAVAILABLE),
            (400, "invalid_request_error", "Bad payload", ApiErrorKind.BAD_REQUEST),
            (500, "server_error", "Oops", ApiErrorKind.UNKNOWN),
        ],
    )
    def test_openai_kinds(self, handler, sdk_error, status, error_type, message, kind):
        error = sdk_error(message, status_code=status, error_type=error_type)

        info = handler.classify(error, "openai", "gpt-4o")

        assert info.kind is kind
        assert info.retryable is False

    def test_429_wins_over_quota_type(self, handler, sdk_error):
        error = sdk_error("You exceeded your current quota", status_code=429, error_type="insufficient_quota")

        assert handler.classify(error, "openai", "gpt-4o").kind is ApiErrorKind.RATE_LIMIT

    def test_openai_quota_without_429(self, handler, sdk_error):
        error = sdk_error("You exceeded your current quota", status_code=403, error_type="insufficient_quota")

        assert handler.classify(error, "openai", "gpt-4o").kind is ApiErrorKind.QUOTA_EXCEEDED

    def test_anthropic_rate_limit_from_message(self, handler):
        info = handler.classify(Exception("Rate limit reached for requests"), "anthropic", "claude-3-5-sonnet-latest")

        assert info.kind is ApiErrorKind.RATE_LIMIT
        assert info.retryable is True

    def test_anthropic_unauthorized(self, handler, sdk_error):
        error = sdk_error("authentication failed", status_code=401, error_type="authentication_error")

        assert handler.classify(error, "anthropic", "claude-3-5-sonnet-latest").kind is ApiErrorKind.INVALID_API_KEY

    def test_google_forbidden_is_invalid_key(self, handler, sdk_error):
        error = sdk_error("permission denied", status_code=403, error_type="PERMISSION_DENIED")

        assert handler.classify(error, "google", "gemini-1.5-pro").kind is ApiErrorKind.INVALID_API_KEY

    def test_google_safety_block_is_content_filter(self, handler):
        info = handler.classify(Exception("content blocked by safety settings"), "google", "gemini-1.5-pro")

        assert info.kind is ApiErrorKind.CONTENT_FILTER

    def test_unknown_provider_uses_generic_classifier(self, handler):
        info = handler.classify(ValueError("boom"), "acme", "m1")

        assert info.kind is ApiErrorKind.UNKNOWN
        assert info.message == "boom"

    def test_timeouts_are_recognized_for_every_provider(self, handler):
        for error in (asyncio.TimeoutError(), httpx.ReadTimeout("slow"), RuntimeError("request timed out")):
            info = handler.classify(error, "anthropic", "claude-3-5-sonnet-latest")
            assert info.kind is ApiErrorKind.TIMEOUT
            assert info.retryable is False

    def test_configuration_errors(self, handler):
        missing = handler.classify(MissingApiKeyError("xai"), "xai", "grok-2-latest")
        unsupported = handler.classify(ProviderNotSupportedError("acme"), "acme", "m1")

        assert missing.kind is ApiErrorKind.INVALID_API_KEY
        assert missing.message == "No API key configured for provider 'xai'"
        assert unsupported.kind is ApiErrorKind.BAD_REQUEST
        assert unsupported.message == "Provider 'acme' is not supported for streaming"

    def test_exhausted_rate_limit_is_not_retryable(self, handler):
        info = handler.classify(RateLimitExhaustedError("openai", "gpt-4o"), "openai", "gpt-4o")

        assert info.kind is ApiErrorKind.RATE_LIMIT
        assert info.retryable is False
        assert info.message == "Rate limit exceeded for openai. No fallbacks available."

    def test_model_http_error_message_does_not_trip_model_heuristic(self, handler):
        error = ModelHTTPError(status_code=500, model_name="gpt-4o", body=None)

        info = handler.classify(error, "openai", "gpt-4o")

        assert info.kind is ApiErrorKind.UNKNOWN
        assert info.message == "OpenAI error: HTTP 500"

    def test_registered_classifier_takes_over(self, handler):
        handler.register_classifier(
            "acme",
            lambda facts, provider, model: ApiErrorInfo(
                kind=ApiErrorKind.CONTENT_FILTER, message=facts.message, provider=provider, model=model
            ),
        )

        info = handler.classify(ValueError("flagged"), "acme", "m")

        assert info.kind is ApiErrorKind.CONTENT_FILTER
        assert info.message == "flagged"


def test_is_timeout_ignores_unrelated_errors():
    assert not is_timeout(ValueError("invalid"))


class TestFallbacksAndMessages:
    def test_fallback_chain_lookup(self, handler):
        assert handler.get_fallback_model("openai", "gpt-4o") == ("openai", "gpt-4o-mini")
        assert handler.get_fallback_model("anthropic", "claude-3-5-sonnet-latest") == (
            "anthropic",
            "claude-3-5-haiku-latest",
        )

    def test_unknown_model_falls_back_to_universal(self, handler):
        assert handler.get_fallback_model("google", "gemini-2.0-exp") == ("openai", "gpt-4o-mini")

    def test_never_falls_back_to_itself(self):
        handler = ApiErrorHandler(fallback_models={})

        assert handler.get_fallback_model("openai", "gpt-4o-mini") is None

    def test_user_friendly_messages(self, handler, sdk_error):
        rate_limited = handler.classify(sdk_error(), "openai", "gpt-4o")
        unavailable = handler.classify(sdk_error("no such model", 404, error_type="not_found"), "openai", "gpt-5")

        assert handler.get_user_friendly_message(rate_limited) == (
            "The openai API is currently experiencing high demand. Please try again in a few minutes."
        )
        assert handler.get_user_friendly_message(unavailable) == (
            "The gpt-5 model is currently unavailable. Try a different model."
        )

    def test_rate_limit_bookkeeping_goes_through_the_cache(self, error_handler, clock):
        error_handler.record_rate_limit("openai", 2000, "gpt-4o")

        assert error_handler.is_rate_limited("openai", "gpt-4o")
        assert error_handler.get_retry_after_time("openai", "gpt-4o") == 2000

        clock.advance(2)
        assert not error_handler.is_rate_limited("openai", "gpt-4o")
