"""Response envelope returned by the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.backend.models import RetrievedMemory
    from src.memory.models import ExtractedMemory, TerminationReason


class ResponseStrategy(StrEnum):
    """Why the reply was framed the way it was (debugging/analytics only)."""

    INITIAL_GREETING = "initial_greeting"
    CONVERSATION_CLOSING = "conversation_closing"
    TOPIC_TRANSITION = "topic_transition"
    MINIMAL_RESPONSE_HANDLING = "minimal_response_handling"
    CONTEXTUAL_FOLLOW_UP = "contextual_follow_up"
    ELABORATION_PROMPT = "elaboration_prompt"
    EMOTIONAL_SUPPORT = "emotional_support"
    GOAL_TRACKING = "goal_tracking"
    GENERAL_JOURNALING = "general_journaling"


@dataclass
class AgentPlanningState:
    extracted_memories: list[ExtractedMemory] = field(default_factory=list)
    follow_up_questions: list[str] = field(default_factory=list)
    retrieved_context: list[RetrievedMemory] = field(default_factory=list)
    response_strategy: ResponseStrategy = ResponseStrategy.GENERAL_JOURNALING


@dataclass
class AgentResponse:
    content: str
    planning_state: AgentPlanningState
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    should_terminate: bool = False
    termination_reason: TerminationReason | None = None
