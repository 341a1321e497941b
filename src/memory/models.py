"""Data models produced by the synthesis and retrieval stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class MemoryCategory(StrEnum):
    GOAL = "goal"
    EVENT = "event"
    FEELING = "feeling"
    PERSON = "person"
    PLAN = "plan"
    REFLECTION = "reflection"


class TerminationReason(StrEnum):
    USER_FAREWELL = "user_farewell"
    USER_REQUEST = "user_request"
    NATURAL_CONCLUSION = "natural_conclusion"
    NO_NEW_INFO = "no_new_info"


@dataclass
class ExtractedMemory:
    content: str
    category: MemoryCategory
    confidence: float


@dataclass
class SynthesisResult:
    """What the synthesis pass learned from one user utterance."""

    extracted_memories: list[ExtractedMemory] = field(default_factory=list)
    follow_up_questions: list[str] = field(default_factory=list)
    elaboration_topics: list[str] = field(default_factory=list)
    previous_topics_to_revisit: list[str] = field(default_factory=list)
    confidence: float = 0.0
    should_terminate: bool = False
    termination_reason: TerminationReason | None = None
    is_minimal_response: bool = False

    @classmethod
    def empty(cls) -> SynthesisResult:
        return cls()

    def summary(self) -> dict:
        """Compact form stored in message metadata."""
        return {
            "extractedMemories": [
                {"content": m.content, "category": str(m.category), "confidence": m.confidence}
                for m in self.extracted_memories
            ],
            "followUpQuestions": self.follow_up_questions,
            "elaborationTopics": self.elaboration_topics,
            "previousTopicsToRevisit": self.previous_topics_to_revisit,
            "confidence": self.confidence,
            "shouldTerminate": self.should_terminate,
            "terminationReason": str(self.termination_reason) if self.termination_reason else None,
            "isMinimalResponse": self.is_minimal_response,
        }


@dataclass
class StageOutcome(Generic[T]):
    """Result of a best-effort stage.

    ``degraded`` distinguishes "the memory subsystem failed and this is the
    fallback value" from "the stage ran and found nothing".
    """

    value: T
    degraded: bool = False
    error: str | None = None

    @classmethod
    def ok(cls, value: T) -> StageOutcome[T]:
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, error: str) -> StageOutcome[T]:
        return cls(value=value, degraded=True, error=error)


def clamp_unit(value: object, default: float = 0.5) -> float:
    """Coerce *value* to a float in [0, 1]; non-numbers become *default*."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if value != value:  # NaN
        return default
    return max(0.0, min(1.0, float(value)))
