"""The journaling agent loop.

One call to ``JournalAgent.process_message`` handles one user turn:

1. resolve the conversation's backend thread (``ConversationNotFoundError``)
2. load the recent dialogue
3. synthesize memories and signals from the utterance
4. retrieve and rank relevant durable memories
5. write the extracted memories to the backend
6. build the augmented prompt
7. get the reply with memory in read-only mode
8. persist the user message and the reply locally
9. infer the response strategy
10. decide whether the conversation should end

Synthesis, retrieval and memory writes are best effort; reply generation
and local persistence are not, and their failures propagate.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from src.agent.models import AgentPlanningState, AgentResponse, ResponseStrategy
from src.backend.models import MemoryMode
from src.conversations.models import MessageRole
from src.errors import ConversationNotFoundError
from src.llm.prompt import JOURNAL_SYSTEM_PROMPT, build_greeting_prompt
from src.memory.models import MemoryCategory, TerminationReason

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable

    from src.backend.base import MemoryBackend
    from src.backend.models import RetrievedMemory
    from src.conversations.store import ConversationStore
    from src.memory.models import ExtractedMemory, SynthesisResult
    from src.memory.retrieval import MemoryRetriever
    from src.memory.synthesis import MemorySynthesizer

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = 10
RETRIEVAL_LIMIT = 5
GREETING_MEMORY_LIMIT = 5

PROMPT_MEMORY_LIMIT = 3
PROMPT_QUESTION_LIMIT = 2
PROMPT_TOPIC_LIMIT = 2
PROMPT_REVISIT_LIMIT = 2

TERMINATION_HINT = (
    "The user wants to end this session. Close warmly in one or two sentences "
    "and do not ask another question."
)
MINIMAL_RESPONSE_HINT = (
    "The user gave a short answer with no new information. Do not press for "
    "details on the same point; offer a gentle new direction or an easy way "
    "to wrap up."
)


# -- Pure helpers ------------------------------------------------------------


def build_augmented_prompt(
    user_message: str,
    synthesis: SynthesisResult,
    retrieved: list[RetrievedMemory],
) -> str:
    """The user's message followed by internal planning context.

    The context block is seen by the backend's model but never shown to
    the user.  It is omitted entirely when there is nothing to add.
    """
    sections: list[str] = []

    if synthesis.should_terminate:
        sections.append(f"Session ending: {TERMINATION_HINT}")
    elif synthesis.is_minimal_response:
        sections.append(f"Minimal response: {MINIMAL_RESPONSE_HINT}")

    def listing(title: str, items: list[str]) -> None:
        if items:
            sections.append("\n".join([title, *(f"- {item}" for item in items)]))

    listing(
        "Relevant memories from past conversations:",
        [m.content for m in retrieved[:PROMPT_MEMORY_LIMIT]],
    )
    listing(
        "Potential follow-up questions:",
        synthesis.follow_up_questions[:PROMPT_QUESTION_LIMIT],
    )
    listing(
        "Topics that could be elaborated:",
        synthesis.elaboration_topics[:PROMPT_TOPIC_LIMIT],
    )
    listing(
        "Earlier topics worth revisiting:",
        synthesis.previous_topics_to_revisit[:PROMPT_REVISIT_LIMIT],
    )

    if not sections:
        return user_message

    header = "---\n(Internal context for response planning - do not mention explicitly)"
    return "\n\n".join([user_message, header, *sections])


def infer_response_strategy(
    synthesis: SynthesisResult, retrieved: list[RetrievedMemory]
) -> ResponseStrategy:
    """First matching rule wins."""
    if synthesis.should_terminate:
        return ResponseStrategy.CONVERSATION_CLOSING
    if synthesis.is_minimal_response:
        if synthesis.previous_topics_to_revisit:
            return ResponseStrategy.TOPIC_TRANSITION
        return ResponseStrategy.MINIMAL_RESPONSE_HANDLING
    if retrieved:
        return ResponseStrategy.CONTEXTUAL_FOLLOW_UP
    if synthesis.follow_up_questions:
        return ResponseStrategy.ELABORATION_PROMPT
    categories = {m.category for m in synthesis.extracted_memories}
    if MemoryCategory.FEELING in categories:
        return ResponseStrategy.EMOTIONAL_SUPPORT
    if MemoryCategory.GOAL in categories:
        return ResponseStrategy.GOAL_TRACKING
    return ResponseStrategy.GENERAL_JOURNALING


def decide_termination(synthesis: SynthesisResult) -> tuple[bool, TerminationReason | None]:
    """End on an explicit signal, or on a minimal reply with nothing left to ask."""
    if synthesis.should_terminate:
        return True, synthesis.termination_reason
    nothing_to_pursue = (
        not synthesis.follow_up_questions and not synthesis.previous_topics_to_revisit
    )
    if synthesis.is_minimal_response and nothing_to_pursue:
        return True, TerminationReason.NO_NEW_INFO
    return False, None


async def _complete_writes(writes: Awaitable[object]) -> None:
    """Run local writes to completion even if the caller is cancelled.

    On cancellation the writes are awaited before the cancellation is
    re-raised, so the caller still holds the conversation lock until they
    land and any write error surfaces.
    """
    task = asyncio.ensure_future(writes)
    try:
        await asyncio.shield(task)
    except asyncio.CancelledError:
        await task
        raise


# -- Agent -------------------------------------------------------------------


class JournalAgent:
    """Sequences the stages of a journaling turn. Holds no per-turn state.

    Turns for the same conversation are serialized so their message writes
    cannot interleave; turns for different conversations run independently.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        synthesizer: MemorySynthesizer,
        retriever: MemoryRetriever,
        backend: MemoryBackend,
        system_prompt: str = JOURNAL_SYSTEM_PROMPT,
        context_window: int = CONTEXT_WINDOW,
        retrieval_limit: int = RETRIEVAL_LIMIT,
        greeting_memory_limit: int = GREETING_MEMORY_LIMIT,
    ) -> None:
        self._conversations = conversations
        self._synthesizer = synthesizer
        self._retriever = retriever
        self._backend = backend
        self._system_prompt = system_prompt
        self._context_window = context_window
        self._retrieval_limit = retrieval_limit
        self._greeting_memory_limit = greeting_memory_limit
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _conversation_turn(self, conversation_id: str) -> AsyncIterator[None]:
        self._lock_users[conversation_id] += 1
        try:
            async with self._locks[conversation_id]:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if self._lock_users[conversation_id] == 0:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    async def _resolve_thread(self, conversation_id: str, user_id: str) -> str:
        thread_id = await self._conversations.get_thread_id(conversation_id, user_id)
        if not thread_id:
            raise ConversationNotFoundError(conversation_id)
        return thread_id

    async def _store_memories(
        self, conversation_id: str, memories: list[ExtractedMemory]
    ) -> int:
        """Write extracted memories concurrently. Returns the failure count."""
        if not memories:
            return 0

        timestamp = datetime.now(UTC).isoformat()
        results = await asyncio.gather(
            *(
                self._backend.create_memory(
                    content=memory.content,
                    metadata={
                        "category": str(memory.category),
                        "confidence": memory.confidence,
                        "source": "synthesis",
                        "timestamp": timestamp,
                        "conversation_id": conversation_id,
                    },
                )
                for memory in memories
            ),
            return_exceptions=True,
        )

        failures = 0
        for memory, result in zip(memories, results, strict=True):
            if isinstance(result, BaseException):
                failures += 1
                logger.error(
                    "Failed to store memory [%s]: %s",
                    memory.category,
                    memory.content[:80],
                    exc_info=result,
                )
        if failures < len(memories):
            logger.info("Stored %d memories from synthesis", len(memories) - failures)
        return failures

    async def _persist_turn(
        self,
        conversation_id: str,
        user_message: str,
        user_metadata: dict[str, Any],
        reply: str,
    ) -> None:
        await self._conversations.add_message(
            conversation_id, MessageRole.USER, user_message, metadata=user_metadata
        )
        await self._conversations.add_message(conversation_id, MessageRole.ASSISTANT, reply)

    async def process_message(
        self, conversation_id: str, user_id: str, user_message: str
    ) -> AgentResponse:
        """Run one journaling turn and return the reply envelope."""
        async with self._conversation_turn(conversation_id):
            thread_id = await self._resolve_thread(conversation_id, user_id)

            context = await self._conversations.get_recent_context(
                conversation_id, self._context_window
            )

            synthesis_outcome = await self._synthesizer.synthesize(user_message, context)
            synthesis = synthesis_outcome.value

            retrieval_outcome = await self._retriever.retrieve_context(
                synthesis, context, limit=self._retrieval_limit
            )
            retrieved = retrieval_outcome.value

            failed_writes = await self._store_memories(
                conversation_id, synthesis.extracted_memories
            )

            prompt = build_augmented_prompt(user_message, synthesis, retrieved)
            reply = await self._backend.add_message(
                thread_id=thread_id,
                content=prompt,
                memory_mode=MemoryMode.READONLY,
                system_prompt=self._system_prompt,
            )

            metadata = {
                "synthesisResult": synthesis.summary(),
                "retrievedContext": [{"id": m.id, "content": m.content} for m in retrieved],
                "synthesisDegraded": synthesis_outcome.degraded,
                "retrievalDegraded": retrieval_outcome.degraded,
                "failedMemoryWrites": failed_writes,
            }
            if synthesis_outcome.error:
                metadata["synthesisError"] = synthesis_outcome.error
            if retrieval_outcome.error:
                metadata["retrievalError"] = retrieval_outcome.error
            await _complete_writes(
                self._persist_turn(conversation_id, user_message, metadata, reply.content)
            )

        strategy = infer_response_strategy(synthesis, retrieved)
        should_terminate, reason = decide_termination(synthesis)
        logger.info(
            "Turn on %s: strategy=%s terminate=%s memories=%d retrieved=%d",
            conversation_id,
            strategy,
            should_terminate,
            len(synthesis.extracted_memories),
            len(retrieved),
        )

        return AgentResponse(
            content=reply.content,
            planning_state=AgentPlanningState(
                extracted_memories=synthesis.extracted_memories,
                follow_up_questions=synthesis.follow_up_questions,
                retrieved_context=retrieved,
                response_strategy=strategy,
            ),
            should_terminate=should_terminate,
            termination_reason=reason,
        )

    async def _greeting_memories(self) -> list[RetrievedMemory]:
        try:
            return await self._backend.get_memories(limit=self._greeting_memory_limit)
        except Exception:
            logger.exception("Failed to fetch memories for greeting (non-fatal)")
            return []

    async def start_conversation(self, conversation_id: str, user_id: str) -> AgentResponse:
        """Open a session with a greeting personalized by recent memories."""
        async with self._conversation_turn(conversation_id):
            thread_id = await self._resolve_thread(conversation_id, user_id)

            memories = await self._greeting_memories()
            reply = await self._backend.add_message(
                thread_id=thread_id,
                content=build_greeting_prompt(memories),
                memory_mode=MemoryMode.READONLY,
                system_prompt=self._system_prompt,
            )

            await _complete_writes(
                self._conversations.add_message(
                    conversation_id, MessageRole.ASSISTANT, reply.content
                )
            )

        return AgentResponse(
            content=reply.content,
            planning_state=AgentPlanningState(
                response_strategy=ResponseStrategy.INITIAL_GREETING
            ),
        )
