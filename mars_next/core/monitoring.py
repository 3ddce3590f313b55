"""
Monitoring and Tracing Configuration Module.

This module provides integration with Pydantic Logfire for monitoring and
tracing of the agent-turn pipeline, including:
- Agent turn start/completion traces
- LLM provider calls and token usage
- API endpoint timings
- Error tracking

Every helper is best effort: a Logfire failure is logged at debug level and
never reaches the caller.
"""

import logging
import os
from typing import Optional

import logfire
from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Logfire configuration from environment
LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "mars-next-server")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "0.1.0")

# Sampling configuration
LOGFIRE_SAMPLE_RATE = float(os.getenv("LOGFIRE_SAMPLE_RATE", "1.0"))

# Feature flags
LOGFIRE_TRACE_PYDANTIC_AI = os.getenv("LOGFIRE_TRACE_PYDANTIC_AI", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_FASTAPI = os.getenv("LOGFIRE_TRACE_FASTAPI", "true").lower() in ("true", "1", "yes")


def _instrument(name: str, enabled: bool, instrument) -> None:
    if not enabled:
        return
    try:
        instrument()
        logger.info(f"Logfire: {name} instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument {name}: {e}")


def initialize_logfire(app: FastAPI | None = None) -> bool:
    """
    Initialize Pydantic Logfire for monitoring and tracing.

    Instruments pydantic-ai model calls, SQLAlchemy, HTTPX and (when ``app`` is
    given) the FastAPI endpoints. Initialization only happens when
    ``LOGFIRE_ENABLED`` is set and a ``LOGFIRE_TOKEN`` is available.

    Args:
        app: FastAPI application instance to instrument (optional).

    Returns:
        True when Logfire was configured.
    """
    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return False

    if not LOGFIRE_TOKEN:
        logger.warning(
            "Logfire is enabled but LOGFIRE_TOKEN is not set. "
            "Monitoring will not work. Set LOGFIRE_TOKEN to enable Logfire."
        )
        return False

    try:
        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
            sampling=logfire.SamplingOptions(head=LOGFIRE_SAMPLE_RATE),
        )
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)
        return False

    _instrument("Pydantic AI", LOGFIRE_TRACE_PYDANTIC_AI, logfire.instrument_pydantic_ai)
    _instrument("SQLAlchemy", LOGFIRE_TRACE_SQLALCHEMY, logfire.instrument_sqlalchemy)
    _instrument("HTTPX", LOGFIRE_TRACE_HTTPX, logfire.instrument_httpx)
    if app is not None:
        _instrument("FastAPI", LOGFIRE_TRACE_FASTAPI, lambda: logfire.instrument_fastapi(app=app))
    else:
        logger.debug("FastAPI app instance not provided, skipping FastAPI instrumentation")

    logger.info(f"Logfire monitoring initialized: environment={LOGFIRE_ENVIRONMENT}, service={LOGFIRE_SERVICE_NAME}")
    return True


def log_agent_turn(agent_id: str, provider: str, model: str, user_id: Optional[str] = None) -> None:
    """
    Log the start of an agent turn.

    Args:
        agent_id: The agent being run
        provider: The provider the turn is sent to
        model: The model identifier
        user_id: The user who asked (optional)
    """
    try:
        logfire.info("Agent turn started", agent_id=agent_id, provider=provider, model=model, user_id=user_id)
    except Exception:
        logger.debug(f"Could not log agent turn to Logfire: agent_id={agent_id}")


def log_agent_turn_completion(agent_id: str, status: str, duration_ms: float) -> None:
    """
    Log the completion of an agent turn.

    Args:
        agent_id: The agent that ran
        status: ``success`` or ``error``
        duration_ms: The duration of the turn in milliseconds
    """
    try:
        logfire.info("Agent turn completed", agent_id=agent_id, status=status, duration_ms=duration_ms)
    except Exception:
        logger.debug(f"Could not log agent turn completion to Logfire: agent_id={agent_id}")


def log_llm_call(provider: str, model: str, tokens_used: int) -> None:
    """Log an LLM provider call with its total token usage."""
    try:
        logfire.info("LLM call completed", provider=provider, model=model, tokens_used=tokens_used)
    except Exception:
        logger.debug(f"Could not log LLM call to Logfire: model={model}")


def log_api_request(method: str, path: str, status_code: int, duration_ms: float) -> None:
    """
    Log an API request with performance metrics.

    Args:
        method: HTTP method
        path: Request path
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
    """
    try:
        logfire.info(
            "API request completed",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
        )
    except Exception:
        logger.debug(f"Could not log API request to Logfire: {method} {path}")


def log_error(error_type: str, error_message: str, context: Optional[dict] = None) -> None:
    """
    Log an error with context for debugging.

    Args:
        error_type: Type of error
        error_message: Error message
        context: Additional context dictionary
    """
    try:
        logfire.error(f"{error_type}: {error_message}", **(context or {}))
    except Exception:
        logger.debug(f"Could not log error to Logfire: {error_type}")
