"""Prompt text for the journaling assistant and its synthesis pass."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.backend.models import RetrievedMemory
    from src.conversations.models import Message

JOURNAL_SYSTEM_PROMPT = """\
You are a warm and attentive voice assistant helping people reflect on their \
day through journaling conversations.

## Your Role
- Help users talk about their day in a natural, conversational way
- Ask thoughtful follow-up questions to help them elaborate on experiences
- Remember important details from past conversations and reference them naturally
- Gently encourage deeper reflection on feelings and experiences

## Conversation Style
- Speak naturally as if in a friendly conversation
- Keep responses concise (2-3 sentences typically) since this is voice-based
- Use verbal acknowledgments ("I see", "That sounds...", "Tell me more about...")
- Be encouraging without being overly enthusiastic

## Memory Usage
- Reference past conversations naturally ("Last time you mentioned...")
- Connect current topics to past experiences when relevant
- Track ongoing goals, projects, and relationships the user has shared

## Ending the Session
- When the user says goodbye or that they are done, close warmly in one or two \
sentences without asking another question

## Response Format
Your responses will be converted to speech. Avoid bullet points, numbered \
lists, markdown and long paragraphs."""

GREETING_PROMPT = (
    "Start a new journaling session with the user. Give a warm, brief greeting "
    "and ask an open-ended question to help them start sharing about their day. "
    "Keep it to 1-2 sentences."
)

MEMORY_SYNTHESIS_PROMPT = """\
You are analyzing a user's journal entry to extract key memories and generate \
follow-up questions.

Given the user's message and conversation context, identify:
1. New memories to store (facts, events, goals, feelings, people, plans, reflections)
2. Follow-up questions that would help flesh out the journal entry
3. Topics that could benefit from elaboration
4. Earlier topics from the conversation worth coming back to
5. Whether the user wants to end the session (goodbye, "I'm done", "that's all")
6. Whether the message is a minimal acknowledgment with no new information \
("ok", "yeah", "not much")

Respond in JSON format:
{
  "extractedMemories": [
    {"content": "string describing the memory", "category": "goal|event|feeling|person|plan|reflection", "confidence": 0.0-1.0}
  ],
  "followUpQuestions": ["question 1", "question 2"],
  "elaborationTopics": ["topic 1", "topic 2"],
  "previousTopicsToRevisit": ["topic 1"],
  "confidence": 0.0-1.0,
  "shouldTerminate": false,
  "terminationReason": null | "user_farewell" | "user_request" | "natural_conclusion",
  "isMinimalResponse": false
}

Be selective - only extract genuinely meaningful information, not trivial details."""

SYNTHESIS_MEMORY_LIMIT = 5
SYNTHESIS_MESSAGE_LIMIT = 10


def build_context_summary(
    messages: list[Message], memories: list[RetrievedMemory] | None = None
) -> str:
    """Render recent memories and dialogue for the synthesis prompt."""
    parts: list[str] = []

    if memories:
        parts.append("### Relevant Memories from Past Conversations")
        parts.extend(f"- {m.content}" for m in memories[:SYNTHESIS_MEMORY_LIMIT])
        parts.append("")

    if messages:
        parts.append("### Recent Conversation")
        parts.extend(
            f"{str(m.role).upper()}: {m.content}"
            for m in messages[-SYNTHESIS_MESSAGE_LIMIT:]
        )

    return "\n".join(parts)


def build_synthesis_prompt(
    user_message: str,
    messages: list[Message],
    memories: list[RetrievedMemory] | None = None,
) -> str:
    return (
        f"{MEMORY_SYNTHESIS_PROMPT}\n\n"
        f"## Conversation Context\n{build_context_summary(messages, memories)}\n\n"
        f"## User's Message\n{user_message}\n\n"
        "Analyze the user's message and extract memories, follow-up questions, "
        "and elaboration topics."
    )


def build_greeting_prompt(memories: list[RetrievedMemory]) -> str:
    """Greeting instruction, personalized with recent memories when available."""
    if not memories:
        return GREETING_PROMPT

    lines = [
        GREETING_PROMPT,
        "",
        "(Internal context - things the user shared in earlier sessions. You may "
        "refer to one of them naturally, but do not list them.)",
    ]
    lines.extend(f"- {m.content}" for m in memories)
    return "\n".join(lines)
