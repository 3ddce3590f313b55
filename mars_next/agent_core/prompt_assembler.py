"""Prompt assembly for a single agent turn.

Turns an agent configuration, the selected context documents and the client's
conversation history into the ordered message list sent to a provider:

1. the agent's system prompt (when set),
2. one system message carrying the context documents, cut to a character
   budget with an explicit truncation marker,
3. the history, only when the agent has memory enabled,
4. the new user query.

All functions here are pure; inputs are never mutated.
"""

from __future__ import annotations

from typing import List, Sequence

from .schemas.domain import AgentConfig, ChatMessage, ContextDocument, MessageRole, PromptMessage

MAX_CONTEXT_CHARS = 16000
CONTEXT_SEPARATOR = "\n\n---\n\n"
TRUNCATION_MARKER = "\n\n[... Context truncated due to length limits ...]"
CONTEXT_HEADER = "Relevant Context Document(s):\n"


def format_context_document(context: ContextDocument) -> str:
    return f"Context: {context.label}\nContent:\n{context.content}"


def build_context_block(contexts: Sequence[ContextDocument], max_chars: int = MAX_CONTEXT_CHARS) -> str:
    """
    Concatenate context documents in the given order, bounded by ``max_chars``.

    When the combined text is longer than the budget it is cut to exactly
    ``max_chars`` characters and ``TRUNCATION_MARKER`` is appended.

    Returns:
        The combined block, or an empty string when there is nothing to attach.
    """
    if not contexts:
        return ""
    combined = CONTEXT_SEPARATOR.join(format_context_document(c) for c in contexts)
    if len(combined) > max_chars:
        return combined[:max_chars] + TRUNCATION_MARKER
    return combined


def assemble_messages(
    agent: AgentConfig,
    query: str,
    contexts: Sequence[ContextDocument] = (),
    history: Sequence[ChatMessage] = (),
    max_context_chars: int = MAX_CONTEXT_CHARS,
) -> List[PromptMessage]:
    """
    Build the ordered message list for one agent turn.

    Args:
        agent: The agent whose system prompt and memory flag apply.
        query: The new user message; always the last element.
        contexts: Context documents in display order.
        history: Prior conversation, replayed verbatim when memory is enabled.
        max_context_chars: Character budget for the context block.

    Returns:
        A new list of ``PromptMessage``.
    """
    messages: List[PromptMessage] = []

    if agent.system_prompt:
        messages.append(PromptMessage(role=MessageRole.system, content=agent.system_prompt))

    context_block = build_context_block(contexts, max_context_chars)
    if context_block:
        messages.append(PromptMessage(role=MessageRole.system, content=CONTEXT_HEADER + context_block))

    if agent.memory_enabled and history:
        messages.extend(PromptMessage(role=m.role, content=m.content) for m in history)

    messages.append(PromptMessage(role=MessageRole.user, content=query))
    return messages


def estimate_tokens(text: str) -> int:
    """Rough token count used when a provider reports no usage (4 characters per token)."""
    return len(text) // 4


def estimate_prompt_tokens(messages: Sequence[PromptMessage]) -> int:
    return estimate_tokens("".join(m.content for m in messages))
