"""Synthesis stage: extract memories and conversational signals from one utterance.

Understanding is delegated to the backend's language model.  The request
runs on a throwaway thread with memory turned off so the analysis never
shows up in the user's dialogue or in durable memory.  This module only
parses and validates the model's JSON answer; any failure degrades to an
empty result instead of blocking the conversation.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from src.backend.base import temporary_thread
from src.backend.models import MemoryMode
from src.llm.prompt import build_synthesis_prompt
from src.memory.models import (
    ExtractedMemory,
    MemoryCategory,
    StageOutcome,
    SynthesisResult,
    TerminationReason,
    clamp_unit,
)

if TYPE_CHECKING:
    from src.backend.base import MemoryBackend
    from src.backend.models import RetrievedMemory
    from src.conversations.models import Message

logger = logging.getLogger(__name__)

_CATEGORIES = {c.value for c in MemoryCategory}
_REASONS = {r.value for r in TerminationReason}


# -- Parsing -----------------------------------------------------------------


def _balanced_object_end(text: str, start: int) -> int | None:
    """Index just past the ``}`` closing the object opened at *start*."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def find_json_object(text: str) -> dict[str, Any] | None:
    """Return the first balanced ``{...}`` in *text* that decodes to an object."""
    start = text.find("{")
    while start != -1:
        end = _balanced_object_end(text, start)
        if end is None:
            start = text.find("{", start + 1)
            continue
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data
        # Objects nested inside a rejected candidate are never answers.
        start = text.find("{", end)
    return None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _memories(value: Any) -> list[ExtractedMemory]:
    if not isinstance(value, list):
        return []
    memories = []
    for item in value:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        category = item.get("category")
        if not isinstance(content, str) or not content.strip():
            continue
        # Unknown categories are dropped, never defaulted.
        if not isinstance(category, str) or category not in _CATEGORIES:
            continue
        memories.append(
            ExtractedMemory(
                content=content.strip(),
                category=MemoryCategory(category),
                confidence=clamp_unit(item.get("confidence")),
            )
        )
    return memories


def parse_synthesis_result(text: str) -> SynthesisResult | None:
    """Parse the model's answer. Returns None when it holds no JSON object."""
    data = find_json_object(text)
    if data is None:
        return None

    should_terminate = data.get("shouldTerminate") is True
    reason = data.get("terminationReason")
    termination_reason = (
        TerminationReason(reason)
        if should_terminate and isinstance(reason, str) and reason in _REASONS
        else None
    )

    return SynthesisResult(
        extracted_memories=_memories(data.get("extractedMemories")),
        follow_up_questions=_string_list(data.get("followUpQuestions")),
        elaboration_topics=_string_list(data.get("elaborationTopics")),
        previous_topics_to_revisit=_string_list(data.get("previousTopicsToRevisit")),
        confidence=clamp_unit(data.get("confidence")),
        should_terminate=should_terminate,
        termination_reason=termination_reason,
        is_minimal_response=data.get("isMinimalResponse") is True,
    )


# -- Stage -------------------------------------------------------------------


class MemorySynthesizer:
    """Runs the synthesis pass against a memory backend."""

    def __init__(self, backend: MemoryBackend) -> None:
        self._backend = backend

    async def synthesize(
        self,
        user_message: str,
        conversation_context: list[Message],
        existing_memories: list[RetrievedMemory] | None = None,
    ) -> StageOutcome[SynthesisResult]:
        prompt = build_synthesis_prompt(user_message, conversation_context, existing_memories)

        try:
            async with temporary_thread(self._backend) as thread_id:
                reply = await self._backend.add_message(
                    thread_id=thread_id,
                    content=prompt,
                    memory_mode=MemoryMode.OFF,
                )
        except Exception as exc:
            logger.exception("Memory synthesis failed (non-fatal)")
            return StageOutcome.fallback(SynthesisResult.empty(), str(exc))

        result = parse_synthesis_result(reply.content)
        if result is None:
            logger.warning("No JSON object in synthesis response")
            return StageOutcome.fallback(SynthesisResult.empty(), "unparseable synthesis output")

        logger.debug(
            "Synthesis: %d memories, %d follow-ups, terminate=%s, minimal=%s",
            len(result.extracted_memories),
            len(result.follow_up_questions),
            result.should_terminate,
            result.is_minimal_response,
        )
        return StageOutcome.ok(result)
