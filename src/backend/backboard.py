"""Backboard REST client: the hosted memory backend.

Every call goes through ``_request`` which maps transport failures and
non-success responses onto the shared error taxonomy: HTTP 404 becomes
``BackendNotFoundError``, anything else ``BackendError``.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC
from typing import TYPE_CHECKING, Any

import httpx

from src.backend.base import MemoryBackend
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
from src.errors import BackendError, BackendNotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class BackboardBackend(MemoryBackend):
    """``MemoryBackend`` backed by the Backboard API.

    Args:
        api_key: Backboard API key, sent as ``X-API-Key``.
        base_url: API root, e.g. ``https://app.backboard.io/api``.
        assistant_id: Previously created assistant to reuse, if any.
        llm_provider: Provider name the backend should generate replies with.
        llm_model: Model name for that provider.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient``; its own base URL and timeout
            are kept, the API key header is added to it.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        assistant_id: str | None = None,
        llm_provider: str = "google",
        llm_model: str = "gemini-2.0-flash",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(assistant_id)
        self._llm_provider = llm_provider
        self._llm_model = llm_model
        if client is None:
            client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        # Shared clients get the credential too.
        client.headers["X-API-Key"] = api_key
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- Transport -------------------------------------------------------------

    @staticmethod
    def _check(response: httpx.Response, what: str) -> None:
        if response.status_code == 404:
            msg = f"{what}: not found"
            raise BackendNotFoundError(msg)
        if response.is_error:
            msg = f"{what}: HTTP {response.status_code} {response.text[:200]}"
            raise BackendError(msg, status_code=response.status_code)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        what = f"{method} {path}"
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{what}: {exc}"
            raise BackendError(msg) from exc
        self._check(response, what)
        if not response.content:
            return None
        return response.json()

    def _message_form(self, content: str, memory_mode: MemoryMode, stream: bool) -> dict:
        return {
            "content": content,
            "llm_provider": self._llm_provider,
            "model_name": self._llm_model,
            "memory": str(memory_mode),
            "stream": "true" if stream else "false",
        }

    # -- Assistant -------------------------------------------------------------

    async def get_assistant(self, assistant_id: str) -> Assistant:
        data = await self._request("GET", f"/assistants/{assistant_id}")
        return Assistant(
            assistant_id=data["assistant_id"],
            name=data.get("name", ""),
            system_prompt=data.get("system_prompt") or data.get("description") or "",
        )

    async def _create_assistant(self, config: AssistantConfig) -> Assistant:
        payload: dict[str, Any] = {
            "name": config.name,
            "system_prompt": config.system_prompt,
        }
        if config.embedding_provider:
            payload["embedding_provider"] = config.embedding_provider
        if config.embedding_model_name:
            payload["embedding_model_name"] = config.embedding_model_name
        data = await self._request("POST", "/assistants", json=payload)
        return Assistant(
            assistant_id=data["assistant_id"],
            name=data.get("name", config.name),
            system_prompt=config.system_prompt,
        )

    # -- Threads ---------------------------------------------------------------

    async def create_thread(self) -> str:
        assistant_id = self.get_assistant_id()
        data = await self._request("POST", f"/assistants/{assistant_id}/threads", json={})
        return data["thread_id"]

    async def get_thread(self, thread_id: str) -> Thread:
        data = await self._request("GET", f"/threads/{thread_id}")
        thread = {"thread_id": data["thread_id"]}
        if data.get("created_at"):
            thread["created_at"] = data["created_at"]
        return Thread.model_validate(thread)

    async def delete_thread(self, thread_id: str) -> None:
        await self._request("DELETE", f"/threads/{thread_id}")

    # -- Messages --------------------------------------------------------------

    # The hosted assistant carries its own system prompt, so the per-message
    # system_prompt argument is accepted for interface parity only.

    async def add_message(
        self,
        thread_id: str,
        content: str,
        memory_mode: MemoryMode,
        system_prompt: str | None = None,
    ) -> AssistantReply:
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            data=self._message_form(content, memory_mode, stream=False),
        )
        return AssistantReply(content=data.get("content") or "")

    async def add_message_streaming(
        self,
        thread_id: str,
        content: str,
        memory_mode: MemoryMode,
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        path = f"/threads/{thread_id}/messages"
        what = f"POST {path} (stream)"
        try:
            async with self._client.stream(
                "POST", path, data=self._message_form(content, memory_mode, stream=True)
            ) as response:
                if response.is_error:
                    await response.aread()
                self._check(response, what)
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:") :].strip()
                    if not payload or payload == "[DONE]":
                        continue
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed stream event: %s", payload[:80])
                        continue
                    chunk = event.get("content") if isinstance(event, dict) else None
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            msg = f"{what}: {exc}"
            raise BackendError(msg) from exc

    # -- Memories --------------------------------------------------------------

    @staticmethod
    def _to_memory(item: dict[str, Any]) -> Memory:
        memory: dict[str, Any] = {
            "id": str(item.get("id", "")),
            "content": item.get("content", ""),
            "score": item.get("score") if item.get("score") is not None else 1.0,
            "metadata": item.get("metadata") or {},
        }
        if item.get("created_at"):
            memory["created_at"] = item["created_at"]
        parsed = Memory.model_validate(memory)
        if parsed.created_at.tzinfo is None:
            parsed.created_at = parsed.created_at.replace(tzinfo=UTC)
        return parsed

    async def _list_memories(self) -> list[Memory]:
        assistant_id = self.get_assistant_id()
        data = await self._request("GET", f"/assistants/{assistant_id}/memories")
        items = data.get("memories", []) if isinstance(data, dict) else data or []
        return [self._to_memory(item) for item in items]

    async def get_memories(self, limit: int | None = None) -> list[RetrievedMemory]:
        memories = sorted(await self._list_memories(), key=lambda m: m.created_at, reverse=True)
        if limit is not None:
            memories = memories[:limit]
        return [RetrievedMemory.from_memory(m) for m in memories]

    async def get_memory_stats(self) -> MemoryStats:
        assistant_id = self.get_assistant_id()
        data = await self._request("GET", f"/assistants/{assistant_id}/memories/stats")
        return MemoryStats(total_memories=int(data.get("total_memories", 0)))

    async def create_memory(
        self, content: str, metadata: dict[str, Any] | None = None
    ) -> Memory:
        assistant_id = self.get_assistant_id()
        data = await self._request(
            "POST",
            f"/assistants/{assistant_id}/memories",
            json={"content": content, "metadata": metadata or {}},
        )
        item = data if isinstance(data, dict) else {}
        return self._to_memory({"content": content, "metadata": metadata, **item})

    async def delete_memory(self, memory_id: str) -> None:
        assistant_id = self.get_assistant_id()
        await self._request("DELETE", f"/assistants/{assistant_id}/memories/{memory_id}")
