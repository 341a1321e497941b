"""ConversationStore: libsql CRUD for conversations and their messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.conversations.models import (
    Conversation,
    ConversationStatus,
    ConversationSummary,
    ConversationWithMessages,
    CreatedConversation,
    Message,
    MessageRole,
    Page,
    make_id,
    paginate,
)
from src.db import get_connection
from src.errors import ConversationNotFoundError

if TYPE_CHECKING:
    from pathlib import Path

    from src.backend.base import MemoryBackend
    from src.db import AsyncConnection

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id          TEXT PRIMARY KEY,
        user_id     TEXT NOT NULL,
        thread_id   TEXT NOT NULL UNIQUE,
        title       TEXT,
        status      TEXT NOT NULL DEFAULT 'active',
        created_at  TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS conversation_user_idx ON conversations (user_id)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id               TEXT PRIMARY KEY,
        conversation_id  TEXT NOT NULL REFERENCES conversations (id) ON DELETE CASCADE,
        role             TEXT NOT NULL,
        content          TEXT NOT NULL,
        metadata         TEXT,
        created_at       TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS message_conversation_idx ON messages (conversation_id)",
)

_MESSAGE_COLUMNS = "id, conversation_id, role, content, metadata, created_at"
_CONVERSATION_COLUMNS = "id, user_id, thread_id, title, status, created_at"


class ConversationStore:
    """Owns conversation and message records.

    Each conversation is bound to exactly one backend thread; creation and
    deletion keep the two in step.  Pass an explicit *db_path* for test
    isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, backend: MemoryBackend, db_path: Path | None = None) -> None:
        self._backend = backend
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> AsyncConnection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    async def _fetch_owned(
        self, db: AsyncConnection, conversation_id: str, user_id: str
    ) -> Conversation | None:
        cursor = await db.execute(
            f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id),
        )
        row = await cursor.fetchone()
        return Conversation.from_row(row) if row else None

    # -- Conversations ---------------------------------------------------------

    async def create(self, user_id: str, title: str | None = None) -> CreatedConversation:
        """Create a backend thread and the local record bound to it.

        If the local insert fails, the freshly created thread is deleted so
        that neither side is left orphaned.
        """
        thread_id = await self._backend.create_thread()
        conversation = Conversation(
            id=make_id(), user_id=user_id, thread_id=thread_id, title=title
        )
        try:
            async with await self._connect() as db:
                await db.execute(
                    f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    conversation.to_row(),
                )
                await db.commit()
        except Exception:
            logger.exception("Failed to store conversation; removing thread %s", thread_id)
            try:
                await self._backend.delete_thread(thread_id)
            except Exception:
                logger.exception("Failed to remove orphaned thread %s", thread_id)
            raise

        logger.info("Created conversation %s (thread %s)", conversation.id, thread_id)
        return CreatedConversation(id=conversation.id, thread_id=thread_id)

    async def get_by_id(
        self, conversation_id: str, user_id: str
    ) -> ConversationWithMessages | None:
        """Fetch a conversation with its messages (newest first), or None."""
        async with await self._connect() as db:
            conversation = await self._fetch_owned(db, conversation_id, user_id)
            if conversation is None:
                return None
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at DESC, id DESC",
                (conversation_id,),
            )
            rows = await cursor.fetchall()

        return ConversationWithMessages(
            id=conversation.id,
            title=conversation.title,
            status=conversation.status,
            created_at=conversation.created_at,
            messages=[Message.from_row(row) for row in rows],
        )

    async def get_by_thread_id(self, thread_id: str) -> tuple[str, str] | None:
        """Return ``(conversation_id, user_id)`` for a backend thread, or None."""
        async with await self._connect() as db:
            cursor = await db.execute(
                "SELECT id, user_id FROM conversations WHERE thread_id = ?",
                (thread_id,),
            )
            row = await cursor.fetchone()
        return (row[0], row[1]) if row else None

    async def get_thread_id(self, conversation_id: str, user_id: str) -> str | None:
        """Return the backend thread ID of a conversation the user owns."""
        async with await self._connect() as db:
            cursor = await db.execute(
                "SELECT thread_id FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def list(
        self,
        user_id: str,
        status: ConversationStatus | None = None,
        limit: int = 20,
        cursor: str | None = None,
    ) -> Page[ConversationSummary]:
        """List a user's conversations, newest first."""
        conditions = ["c.user_id = ?"]
        params: list[Any] = [user_id]
        if status is not None:
            conditions.append("c.status = ?")
            params.append(str(status))
        if cursor:
            conditions.append("c.id < ?")
            params.append(cursor)
        params.append(limit + 1)

        async with await self._connect() as db:
            result = await db.execute(
                f"""
                SELECT c.id, c.title, c.status, c.created_at,
                       (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id),
                       (SELECT MAX(m.created_at) FROM messages m WHERE m.conversation_id = c.id)
                FROM conversations c
                WHERE {" AND ".join(conditions)}
                ORDER BY c.created_at DESC, c.id DESC
                LIMIT ?
                """,
                tuple(params),
            )
            rows = await result.fetchall()

        summaries = [
            ConversationSummary(
                id=row[0],
                title=row[1],
                status=ConversationStatus(row[2]),
                created_at=row[3],
                message_count=int(row[4] or 0),
                last_message_at=row[5],
            )
            for row in rows
        ]
        return paginate(summaries, limit, key=lambda s: s.id)

    async def archive(self, conversation_id: str, user_id: str) -> None:
        async with await self._connect() as db:
            result = await db.execute(
                "UPDATE conversations SET status = ? WHERE id = ? AND user_id = ?",
                (str(ConversationStatus.ARCHIVED), conversation_id, user_id),
            )
            await db.commit()
            if result.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)
        logger.info("Archived conversation %s", conversation_id)

    async def update_title(self, conversation_id: str, user_id: str, title: str) -> None:
        async with await self._connect() as db:
            result = await db.execute(
                "UPDATE conversations SET title = ? WHERE id = ? AND user_id = ?",
                (title, conversation_id, user_id),
            )
            await db.commit()
            if result.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)

    async def delete(self, conversation_id: str, user_id: str) -> None:
        """Delete a conversation, its messages and its backend thread.

        The backend thread goes first: if that fails the local record is
        untouched and the delete can be retried.
        """
        async with await self._connect() as db:
            conversation = await self._fetch_owned(db, conversation_id, user_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        await self._backend.delete_thread(conversation.thread_id)

        async with await self._connect() as db:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            await db.execute(
                "DELETE FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            await db.commit()
        logger.info("Deleted conversation %s", conversation_id)

    # -- Messages --------------------------------------------------------------

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole | str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message to a conversation. Returns the persisted record."""
        message = Message(
            id=make_id(),
            conversation_id=conversation_id,
            role=MessageRole(role),
            content=content,
            metadata=metadata,
        )
        async with await self._connect() as db:
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                message.to_row(),
            )
            await db.commit()
        return message

    async def get_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int = 50,
        cursor: str | None = None,
    ) -> Page[Message]:
        """Page through a conversation's messages, newest first."""
        async with await self._connect() as db:
            if await self._fetch_owned(db, conversation_id, user_id) is None:
                raise ConversationNotFoundError(conversation_id)

            sql = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ?"
            params: list[Any] = [conversation_id]
            if cursor:
                sql += " AND id < ?"
                params.append(cursor)
            sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
            params.append(limit + 1)

            result = await db.execute(sql, tuple(params))
            rows = await result.fetchall()

        messages = [Message.from_row(row) for row in rows]
        return paginate(messages, limit, key=lambda m: m.id)

    async def get_recent_context(self, conversation_id: str, count: int) -> list[Message]:
        """Return the last *count* messages in chronological order."""
        async with await self._connect() as db:
            result = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (conversation_id, count),
            )
            rows = await result.fetchall()
        return [Message.from_row(row) for row in reversed(rows)]
