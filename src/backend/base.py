"""Memory backend interface.

The agent loop depends only on ``MemoryBackend``.  Two variants exist:
``BackboardBackend`` talks to the hosted service, ``InMemoryBackend`` keeps
everything in process for development and tests.  The variant is chosen
once, when the app is wired (see ``src.app``).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from src.errors import BackendError, FailedPreconditionError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from src.backend.models import (
        Assistant,
        AssistantConfig,
        AssistantReply,
        Memory,
        MemoryMode,
        MemoryStats,
        RetrievedMemory,
        Thread,
    )

logger = logging.getLogger(__name__)


class MemoryBackend(ABC):
    """Assistant/thread lifecycle, chat exchange and durable memory storage.

    The current assistant ID is shared by every caller in the process.  It
    is set once by ``ensure_assistant``, which is serialized by a lock so
    concurrent first-time callers never create two assistants.
    """

    def __init__(self, assistant_id: str | None = None) -> None:
        self._assistant_id = assistant_id or None
        self._init_lock = asyncio.Lock()

    # -- Assistant -------------------------------------------------------------

    async def ensure_assistant(self, config: AssistantConfig) -> str:
        """Return a verified assistant ID, creating an assistant if needed.

        A configured ID that no longer resolves is replaced by a newly
        created assistant.
        """
        async with self._init_lock:
            if self._assistant_id:
                try:
                    await self.get_assistant(self._assistant_id)
                    return self._assistant_id
                except (NotFoundError, BackendError):
                    logger.warning(
                        "Assistant %s not found, creating a new one", self._assistant_id
                    )

            assistant = await self._create_assistant(config)
            self._assistant_id = assistant.assistant_id
            logger.info("Created assistant %s (%s)", assistant.assistant_id, config.name)
            return assistant.assistant_id

    def get_assistant_id(self) -> str:
        """Return the current assistant ID. Raises if never initialized."""
        if not self._assistant_id:
            msg = "Memory backend: assistant not initialized"
            raise FailedPreconditionError(msg)
        return self._assistant_id

    @abstractmethod
    async def get_assistant(self, assistant_id: str) -> Assistant: ...

    @abstractmethod
    async def _create_assistant(self, config: AssistantConfig) -> Assistant: ...

    # -- Threads ---------------------------------------------------------------

    @abstractmethod
    async def create_thread(self) -> str:
        """Create a thread under the current assistant. Returns its ID."""

    @abstractmethod
    async def get_thread(self, thread_id: str) -> Thread: ...

    @abstractmethod
    async def delete_thread(self, thread_id: str) -> None: ...

    # -- Messages --------------------------------------------------------------

    @abstractmethod
    async def add_message(
        self,
        thread_id: str,
        content: str,
        memory_mode: MemoryMode,
        system_prompt: str | None = None,
    ) -> AssistantReply:
        """Send a user message on a thread and return the assistant's reply."""

    @abstractmethod
    def add_message_streaming(
        self,
        thread_id: str,
        content: str,
        memory_mode: MemoryMode,
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        """Like ``add_message`` but yields the reply in chunks."""

    # -- Memories --------------------------------------------------------------

    @abstractmethod
    async def get_memories(self, limit: int | None = None) -> list[RetrievedMemory]:
        """Return the assistant's memories, most recent first."""

    @abstractmethod
    async def get_memory_stats(self) -> MemoryStats: ...

    @abstractmethod
    async def create_memory(
        self, content: str, metadata: dict[str, Any] | None = None
    ) -> Memory: ...

    @abstractmethod
    async def delete_memory(self, memory_id: str) -> None: ...


@asynccontextmanager
async def temporary_thread(backend: MemoryBackend) -> AsyncIterator[str]:
    """Create a throwaway thread and delete it on every exit path.

    Deletion errors are logged, never raised, so they cannot mask the
    result (or the exception) of the body.
    """
    thread_id = await backend.create_thread()
    try:
        yield thread_id
    finally:
        try:
            await backend.delete_thread(thread_id)
        except Exception:
            logger.warning("Failed to delete temporary thread %s", thread_id, exc_info=True)
