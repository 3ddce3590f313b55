"""Provider error classification, retry hints and fallback selection.

Every exception raised while talking to an LLM provider is funnelled through
``ApiErrorHandler.classify`` which turns it into an ``ApiErrorInfo`` with one
of the ``ApiErrorKind`` values. The heuristics differ per vendor (status
codes, vendor error types, message substrings) and are registered per
provider in ``DEFAULT_CLASSIFIERS``; xAI and DeepSeek speak the OpenAI wire
protocol and share its rules.

The handler also owns the ``RateLimitCache`` it is constructed with, the
static fallback-model table and the user-facing message templates.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import httpx
from pydantic import ConfigDict
from pydantic_ai.exceptions import ModelHTTPError

from mars_next.core.logging_config import get_logger

from .rate_limit import RateLimitCache
from .schemas.base import BaseSchema

logger = get_logger(__name__)

DEFAULT_RATE_LIMIT_RETRY_MS = 60_000
DEFAULT_RETRY_DELAY_MS = 30_000


# =====================================================================
# Service exceptions
# =====================================================================


class MarsNextError(Exception):
    """Base class for errors raised by the agent core itself."""


class ConfigurationError(MarsNextError):
    """The turn cannot run with the current configuration; retrying will not help."""


class MissingApiKeyError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No API key configured for provider '{provider}'")


class ProviderNotSupportedError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}' is not supported for streaming")


class RateLimitExhaustedError(MarsNextError):
    def __init__(self, provider: str, model: Optional[str] = None) -> None:
        self.provider = provider
        self.model = model
        super().__init__(f"Rate limit exceeded for {provider}. No fallbacks available.")


# =====================================================================
# Classification result
# =====================================================================


class ApiErrorKind(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVALID_API_KEY = "INVALID_API_KEY"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    BAD_REQUEST = "BAD_REQUEST"
    TIMEOUT = "TIMEOUT"
    CONTENT_FILTER = "CONTENT_FILTER"
    UNKNOWN = "UNKNOWN"


class ApiErrorInfo(BaseSchema):
    model_config = ConfigDict(frozen=True)

    kind: ApiErrorKind
    message: str
    provider: str
    model: Optional[str] = None
    retryable: bool = False
    retry_after_ms: Optional[int] = None
    status_code: Optional[int] = None


@dataclass(frozen=True)
class ErrorFacts:
    """The bits of a raw exception the classifiers look at."""

    status: Optional[int]
    error_type: str
    message: str
    retry_after_ms: Optional[int]

    @property
    def lowered(self) -> str:
        return self.message.lower()

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorFacts":
        return cls(
            status=_status_code(error),
            error_type=_error_type(error),
            message=_error_message(error),
            retry_after_ms=_retry_after_ms(error),
        )


def _body_error(error: BaseException) -> Optional[Mapping[str, Any]]:
    body = getattr(error, "body", None)
    if not isinstance(body, Mapping):
        return None
    inner = body.get("error", body)
    return inner if isinstance(inner, Mapping) else body


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "http_status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    value = getattr(getattr(error, "response", None), "status_code", None)
    return value if isinstance(value, int) else None


def _error_type(error: BaseException) -> str:
    body = _body_error(error)
    if body is not None:
        for key in ("type", "code"):
            value = body.get(key)
            if isinstance(value, str):
                return value
    for attr in ("type", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, str):
            return value
    return ""


def _error_message(error: BaseException) -> str:
    body = _body_error(error)
    if body is not None and isinstance(body.get("message"), str):
        return body["message"]
    if isinstance(error, ModelHTTPError):
        # str() of this error embeds "model_name", which would trip the model heuristics
        raw_body = error.body
        return raw_body if isinstance(raw_body, str) else f"HTTP {error.status_code}"
    return str(error) or type(error).__name__


def _retry_after_ms(error: BaseException) -> Optional[int]:
    headers = getattr(error, "headers", None)
    if headers is None:
        headers = getattr(getattr(error, "response", None), "headers", None)
    if headers is None:
        return None
    try:
        value = headers.get("retry-after")
    except AttributeError:
        return None
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError):
        return None


def is_timeout(error: BaseException) -> bool:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return True
    if "timeout" in type(error).__name__.lower():
        return True
    return "timed out" in str(error).lower()


# =====================================================================
# Provider heuristics
# =====================================================================

ProviderClassifier = Callable[[ErrorFacts, str, Optional[str]], ApiErrorInfo]

PROVIDER_LABELS: Dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "xai": "xAI",
    "deepseek": "DeepSeek",
}


def _label(provider: str) -> str:
    return PROVIDER_LABELS.get(provider, provider)


def _info(kind: ApiErrorKind, message: str, provider: str, model: Optional[str], facts: ErrorFacts, **extra) -> ApiErrorInfo:
    return ApiErrorInfo(kind=kind, message=message, provider=provider, model=model, status_code=facts.status, **extra)


def _rate_limited(message: str, provider: str, model: Optional[str], facts: ErrorFacts) -> ApiErrorInfo:
    return _info(
        ApiErrorKind.RATE_LIMIT,
        message,
        provider,
        model,
        facts,
        retryable=True,
        retry_after_ms=facts.retry_after_ms or DEFAULT_RATE_LIMIT_RETRY_MS,
    )


def classify_openai_compatible(facts: ErrorFacts, provider: str, model: Optional[str]) -> ApiErrorInfo:
    label = _label(provider)
    text = facts.lowered
    if facts.status == 429 or facts.error_type == "rate_limit_exceeded":
        return _rate_limited(f"{label} rate limit exceeded", provider, model, facts)
    if facts.error_type == "insufficient_quota" or "quota" in text:
        return _info(ApiErrorKind.QUOTA_EXCEEDED, f"{label} quota exceeded", provider, model, facts)
    if facts.status == 401 or facts.error_type == "invalid_api_key":
        return _info(ApiErrorKind.INVALID_API_KEY, f"Invalid {label} API key", provider, model, facts)
    if facts.error_type == "content_filter" or "content filter" in text:
        return _info(ApiErrorKind.CONTENT_FILTER, f"Content filtered by {label}", provider, model, facts)
    if facts.status == 404 or "model" in text:
        return _info(ApiErrorKind.MODEL_UNAVAILABLE, f"{label} model '{model}' not available", provider, model, facts)
    if facts.status == 400:
        return _info(ApiErrorKind.BAD_REQUEST, f"{label} bad request: {facts.message}", provider, model, facts)
    return _info(ApiErrorKind.UNKNOWN, f"{label} error: {facts.message}", provider, model, facts)


def classify_anthropic(facts: ErrorFacts, provider: str, model: Optional[str]) -> ApiErrorInfo:
    text = facts.lowered
    if facts.status == 429 or "rate" in text or "limit" in text:
        return _rate_limited("Anthropic rate limit exceeded", provider, model, facts)
    if facts.status == 401:
        return _info(ApiErrorKind.INVALID_API_KEY, "Invalid Anthropic API key", provider, model, facts)
    if facts.status == 404 or "model" in text:
        return _info(ApiErrorKind.MODEL_UNAVAILABLE, f"Anthropic model '{model}' not available", provider, model, facts)
    if "content" in text and "policy" in text:
        return _info(ApiErrorKind.CONTENT_FILTER, "Content filtered by Anthropic", provider, model, facts)
    if facts.status == 400:
        return _info(ApiErrorKind.BAD_REQUEST, f"Anthropic bad request: {facts.message}", provider, model, facts)
    return _info(ApiErrorKind.UNKNOWN, f"Anthropic error: {facts.message}", provider, model, facts)


def classify_google(facts: ErrorFacts, provider: str, model: Optional[str]) -> ApiErrorInfo:
    text = facts.lowered
    if facts.status == 429 or "rate" in text or "quota" in text:
        return _rate_limited("Google API rate limit exceeded", provider, model, facts)
    if facts.status in (401, 403):
        return _info(
            ApiErrorKind.INVALID_API_KEY, "Invalid Google API key or unauthorized access", provider, model, facts
        )
    if facts.status == 404:
        return _info(ApiErrorKind.MODEL_UNAVAILABLE, f"Google model '{model}' not available", provider, model, facts)
    if "content" in text and "safety" in text:
        return _info(ApiErrorKind.CONTENT_FILTER, "Content filtered by Google", provider, model, facts)
    if facts.status == 400:
        return _info(ApiErrorKind.BAD_REQUEST, f"Google bad request: {facts.message}", provider, model, facts)
    return _info(ApiErrorKind.UNKNOWN, f"Google error: {facts.message}", provider, model, facts)


def classify_generic(facts: ErrorFacts, provider: str, model: Optional[str]) -> ApiErrorInfo:
    return _info(ApiErrorKind.UNKNOWN, facts.message or "Unknown API error", provider, model, facts)


DEFAULT_CLASSIFIERS: Dict[str, ProviderClassifier] = {
    "openai": classify_openai_compatible,
    "xai": classify_openai_compatible,
    "deepseek": classify_openai_compatible,
    "anthropic": classify_anthropic,
    "google": classify_google,
}


# =====================================================================
# Fallback models and user-facing messages
# =====================================================================

ModelRef = Tuple[str, str]

UNIVERSAL_FALLBACK: ModelRef = ("openai", "gpt-4o-mini")

# (provider, model) -> cheaper or alternate (provider, model)
FALLBACK_MODELS: Dict[ModelRef, ModelRef] = {
    ("openai", "gpt-4o"): ("openai", "gpt-4o-mini"),
    ("openai", "gpt-4-turbo"): ("openai", "gpt-4"),
    ("openai", "gpt-4"): ("openai", "gpt-3.5-turbo"),
    ("openai", "gpt-4o-mini"): ("anthropic", "claude-3-5-haiku-latest"),
    ("openai", "gpt-3.5-turbo"): ("anthropic", "claude-3-haiku-20240307"),
    ("anthropic", "claude-3-opus-20240229"): ("anthropic", "claude-3-5-sonnet-latest"),
    ("anthropic", "claude-3-5-sonnet-latest"): ("anthropic", "claude-3-5-haiku-latest"),
    ("anthropic", "claude-3-5-haiku-latest"): ("openai", "gpt-4o-mini"),
    ("anthropic", "claude-3-haiku-20240307"): ("openai", "gpt-4o-mini"),
    ("google", "gemini-1.5-pro"): ("google", "gemini-1.5-flash"),
    ("google", "gemini-1.5-flash"): ("openai", "gpt-4o-mini"),
    ("xai", "grok-2-latest"): ("openai", "gpt-4o-mini"),
    ("deepseek", "deepseek-chat"): ("openai", "gpt-4o-mini"),
}

USER_MESSAGES: Dict[ApiErrorKind, str] = {
    ApiErrorKind.RATE_LIMIT: "The {provider} API is currently experiencing high demand. Please try again in a few minutes.",
    ApiErrorKind.QUOTA_EXCEEDED: (
        "Your {provider} API quota has been exceeded. Please check your billing settings or use a different model."
    ),
    ApiErrorKind.INVALID_API_KEY: "There's an issue with your {provider} API key. Please check your API key settings.",
    ApiErrorKind.MODEL_UNAVAILABLE: "The {model} model is currently unavailable. Try a different model.",
    ApiErrorKind.CONTENT_FILTER: (
        "Your request was flagged by {provider}'s content filter. Please modify your input and try again."
    ),
    ApiErrorKind.BAD_REQUEST: (
        "There was an issue with your request to the {provider} API. Please try again with different parameters."
    ),
    ApiErrorKind.TIMEOUT: "The request to {provider} timed out. Please try again.",
    ApiErrorKind.UNKNOWN: "An error occurred with the {provider} API. Please try again later.",
}


class ApiErrorHandler:
    """
    Classifies provider failures and tracks rate-limit cooldowns.

    One instance is shared by every executor in the process so that a rate
    limit seen by one agent turn is honoured by the next.

    Args:
        rate_limits: The cooldown cache this handler reads and writes.
        classifiers: Per-provider heuristics; defaults to ``DEFAULT_CLASSIFIERS``.
        fallback_models: Static fallback chain; defaults to ``FALLBACK_MODELS``.
        universal_fallback: Used when the chain has no entry for a model.
    """

    def __init__(
        self,
        rate_limits: Optional[RateLimitCache] = None,
        classifiers: Optional[Mapping[str, ProviderClassifier]] = None,
        fallback_models: Optional[Mapping[ModelRef, ModelRef]] = None,
        universal_fallback: ModelRef = UNIVERSAL_FALLBACK,
    ) -> None:
        self.rate_limits = rate_limits if rate_limits is not None else RateLimitCache()
        if classifiers is None:
            classifiers = DEFAULT_CLASSIFIERS
        if fallback_models is None:
            fallback_models = FALLBACK_MODELS
        self._classifiers: Dict[str, ProviderClassifier] = dict(classifiers)
        self._fallback_models: Dict[ModelRef, ModelRef] = dict(fallback_models)
        self._universal_fallback = universal_fallback

    def register_classifier(self, provider: str, classifier: ProviderClassifier) -> None:
        self._classifiers[provider] = classifier

    def classify(self, error: BaseException, provider: str, model: Optional[str] = None) -> ApiErrorInfo:
        """
        Normalize ``error`` raised by ``provider``/``model`` into an ``ApiErrorInfo``.

        Configuration errors and timeouts are recognized for every provider;
        everything else goes through the provider's registered heuristics.
        """
        provider = str(provider)
        facts = ErrorFacts.from_exception(error)

        if isinstance(error, MissingApiKeyError):
            info = _info(ApiErrorKind.INVALID_API_KEY, str(error), provider, model, facts)
        elif isinstance(error, ProviderNotSupportedError):
            info = _info(ApiErrorKind.BAD_REQUEST, str(error), provider, model, facts)
        elif isinstance(error, RateLimitExhaustedError):
            info = _info(ApiErrorKind.RATE_LIMIT, str(error), provider, model, facts)
        elif is_timeout(error):
            info = _info(ApiErrorKind.TIMEOUT, f"{_label(provider)} request timed out", provider, model, facts)
        else:
            classifier = self._classifiers.get(provider, classify_generic)
            info = classifier(facts, provider, model)

        logger.debug(f"Classified {type(error).__name__} from {provider}/{model} as {info.kind.value}: {info.message}")
        return info

    # -----------------------------------------------------------------
    # Rate limits
    # -----------------------------------------------------------------

    def is_rate_limited(self, provider: str, model: Optional[str] = None) -> bool:
        return self.rate_limits.is_rate_limited(str(provider), model)

    def record_rate_limit(self, provider: str, retry_after_ms: int, model: Optional[str] = None) -> None:
        self.rate_limits.record(str(provider), retry_after_ms, model)

    def get_retry_after_time(self, provider: str, model: Optional[str] = None) -> int:
        return self.rate_limits.get_retry_after_time(str(provider), model)

    # -----------------------------------------------------------------
    # Fallbacks and messages
    # -----------------------------------------------------------------

    def get_fallback_model(self, provider: str, model: str) -> Optional[ModelRef]:
        """
        Look up the next model to try after ``provider``/``model`` failed.

        Returns:
            ``(provider, model)`` or None when the only candidate is the model itself.
        """
        current = (str(provider), model)
        fallback = self._fallback_models.get(current, self._universal_fallback)
        if fallback == current:
            return None
        return fallback

    def get_user_friendly_message(self, info: ApiErrorInfo) -> str:
        template = USER_MESSAGES.get(info.kind, USER_MESSAGES[ApiErrorKind.UNKNOWN])
        return template.format(provider=info.provider, model=info.model or "requested")
