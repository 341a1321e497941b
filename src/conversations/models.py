"""Conversation and message records."""

from __future__ import annotations

import json
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ConversationStatus(StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


_id_lock = threading.Lock()
_last_tick = 0


def make_id() -> str:
    """Generate a time-ordered ID.

    The first 16 hex digits are a nanosecond clock that never repeats or
    goes backwards within the process, so comparing IDs as strings follows
    creation order.  An 8-digit random suffix keeps IDs unique across
    processes.
    """
    global _last_tick  # noqa: PLW0603
    with _id_lock:
        tick = max(time.time_ns(), _last_tick + 1)
        _last_tick = tick
    return f"{tick:016x}{secrets.token_hex(4)}"


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Message:
    """A single persisted conversation message. Immutable once written."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    metadata: dict[str, Any] | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``messages`` column order."""
        return (
            self.id,
            self.conversation_id,
            str(self.role),
            self.content,
            json.dumps(self.metadata) if self.metadata is not None else None,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(
            id=row[0],
            conversation_id=row[1],
            role=MessageRole(row[2]),
            content=row[3],
            metadata=json.loads(row[4]) if row[4] else None,
            created_at=row[5],
        )


@dataclass
class Conversation:
    """A journaling conversation and the backend thread it is bound to.

    Attributes:
        id: Time-ordered identifier (see ``make_id``).
        user_id: Owning user.
        thread_id: Backend chat-thread ID. One per conversation, never changes.
        title: Optional display title.
        status: ``active`` until explicitly archived.
        created_at: ISO 8601 timestamp.
    """

    id: str
    user_id: str
    thread_id: str
    title: str | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()

    def to_row(self) -> tuple:
        return (
            self.id,
            self.user_id,
            self.thread_id,
            self.title,
            str(self.status),
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            user_id=row[1],
            thread_id=row[2],
            title=row[3],
            status=ConversationStatus(row[4]),
            created_at=row[5],
        )


@dataclass
class CreatedConversation:
    id: str
    thread_id: str


@dataclass
class ConversationSummary:
    """Listing row with derived message statistics."""

    id: str
    title: str | None
    status: ConversationStatus
    message_count: int
    last_message_at: str | None
    created_at: str


@dataclass
class ConversationWithMessages:
    id: str
    title: str | None
    status: ConversationStatus
    created_at: str
    messages: list[Message] = field(default_factory=list)


@dataclass
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""

    items: list[T]
    next_cursor: str | None
    has_more: bool


def paginate(rows: list[T], limit: int, key: Any) -> Page[T]:
    """Build a page from ``limit + 1`` fetched rows.

    *key* extracts the cursor value (the ID) from a kept row.
    """
    has_more = len(rows) > limit
    items = rows[:limit] if has_more else rows
    next_cursor = key(items[-1]) if has_more and items else None
    return Page(items=items, next_cursor=next_cursor, has_more=has_more)
