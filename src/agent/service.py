"""Caller-facing surface of the agent loop.

Shapes the agent's response envelope into the payloads a transport layer
returns, and turns a missing conversation into the caller-visible
``NotFoundError``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel

from src.errors import ConversationNotFoundError, NotFoundError

if TYPE_CHECKING:
    from src.agent.orchestrator import JournalAgent

logger = logging.getLogger(__name__)


class TurnDebug(BaseModel):
    extracted_memories_count: int
    retrieved_context_count: int
    response_strategy: str


class SendMessageResult(BaseModel):
    content: str
    timestamp: datetime
    debug: TurnDebug
    should_terminate: bool = False
    termination_reason: str | None = None


class StartConversationResult(BaseModel):
    content: str
    timestamp: datetime


class JournalService:
    """Entry points for an authenticated user's journaling session."""

    def __init__(self, agent: JournalAgent) -> None:
        self._agent = agent

    async def send_message(
        self, conversation_id: str, user_id: str, content: str
    ) -> SendMessageResult:
        try:
            response = await self._agent.process_message(conversation_id, user_id, content)
        except ConversationNotFoundError as exc:
            logger.info("send_message: conversation %s not found for user", conversation_id)
            raise NotFoundError(str(exc)) from exc

        planning = response.planning_state
        return SendMessageResult(
            content=response.content,
            timestamp=response.timestamp,
            debug=TurnDebug(
                extracted_memories_count=len(planning.extracted_memories),
                retrieved_context_count=len(planning.retrieved_context),
                response_strategy=str(planning.response_strategy),
            ),
            should_terminate=response.should_terminate,
            termination_reason=(
                str(response.termination_reason) if response.termination_reason else None
            ),
        )

    async def start_conversation(
        self, conversation_id: str, user_id: str
    ) -> StartConversationResult:
        try:
            response = await self._agent.start_conversation(conversation_id, user_id)
        except ConversationNotFoundError as exc:
            logger.info(
                "start_conversation: conversation %s not found for user", conversation_id
            )
            raise NotFoundError(str(exc)) from exc

        return StartConversationResult(content=response.content, timestamp=response.timestamp)
