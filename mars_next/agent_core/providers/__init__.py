"""LLM provider adapters and their registry."""

from .base import CompletionResult, ContentDelta, ProviderAdapter, StreamEvent, StreamFinished
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    "CompletionResult",
    "ContentDelta",
    "ProviderAdapter",
    "ProviderRegistry",
    "StreamEvent",
    "StreamFinished",
    "build_default_registry",
]
