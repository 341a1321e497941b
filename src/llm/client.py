"""Async Claude API client used as the in-memory backend's reply generator."""

from __future__ import annotations

import logging
from typing import Any

import anthropic

from src.config import settings

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 1024,
) -> str:
    """Single-shot Claude call, without tools or streaming."""
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.claude_model,
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    response = await client.messages.create(**kwargs)
    return response.content[0].text


async def respond(history: list[dict[str, str]], system_prompt: str | None) -> str:
    """Reply generator for ``InMemoryBackend``.

    *history* is the backend thread's message log in API format; Claude
    requires it to start with a user turn, so any leading assistant turns
    (e.g. a greeting recorded before the first user message) are dropped.
    """
    messages = list(history)
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    logger.debug("Generating reply from %d thread messages", len(messages))
    return await complete_text(messages, system=system_prompt)
