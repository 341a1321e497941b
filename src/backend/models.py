"""Data models exchanged with the memory backend."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class MemoryMode(StrEnum):
    """Whether a chat exchange writes a durable memory as a side effect."""

    AUTO = "Auto"
    READONLY = "Readonly"
    OFF = "off"


def _now() -> datetime:
    return datetime.now(UTC)


class AssistantConfig(BaseModel):
    name: str
    system_prompt: str
    embedding_model_name: str | None = None
    embedding_provider: str | None = None


class Assistant(BaseModel):
    assistant_id: str
    name: str
    system_prompt: str = ""
    created_at: datetime = Field(default_factory=_now)


class Thread(BaseModel):
    thread_id: str
    created_at: datetime = Field(default_factory=_now)


class AssistantReply(BaseModel):
    content: str
    role: str = "assistant"


class Memory(BaseModel):
    """A durable memory owned by the backend. Never mutated once created."""

    id: str
    content: str
    score: float = 1.0
    created_at: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrievedMemory(BaseModel):
    """A memory as seen by the agent loop.

    ``relevance_score`` starts as the backend's static score and is
    recomputed by each retrieval call; it is never written back.
    """

    id: str
    content: str
    relevance_score: float = 1.0
    created_at: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_memory(cls, memory: Memory) -> "RetrievedMemory":
        return cls(
            id=memory.id,
            content=memory.content,
            relevance_score=memory.score,
            created_at=memory.created_at,
            metadata=memory.metadata,
        )


class MemoryStats(BaseModel):
    total_memories: int = 0
    memories_by_category: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_memories(cls, memories: list[Memory]) -> "MemoryStats":
        by_category: dict[str, int] = {}
        for memory in memories:
            category = memory.metadata.get("category")
            if isinstance(category, str) and category:
                by_category[category] = by_category.get(category, 0) + 1
        return cls(total_memories=len(memories), memories_by_category=by_category)
