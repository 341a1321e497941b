"""Application factory: picks a memory backend and wires the agent loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.agent.orchestrator import JournalAgent
from src.agent.service import JournalService
from src.backend.backboard import BackboardBackend
from src.backend.in_memory import InMemoryBackend
from src.backend.models import AssistantConfig
from src.config import Settings, settings
from src.conversations.store import ConversationStore
from src.llm.prompt import JOURNAL_SYSTEM_PROMPT
from src.memory.retrieval import MemoryRetriever
from src.memory.synthesis import MemorySynthesizer

if TYPE_CHECKING:
    from pathlib import Path

    from src.backend.base import MemoryBackend

logger = logging.getLogger(__name__)


@dataclass
class JournalApp:
    """Everything a transport layer needs, already connected."""

    backend: MemoryBackend
    conversations: ConversationStore
    retriever: MemoryRetriever
    agent: JournalAgent
    service: JournalService


def create_backend(cfg: Settings = settings) -> MemoryBackend:
    """Choose the backend variant once, from configuration."""
    if cfg.use_hosted_backend():
        logger.info("Memory backend: Backboard (%s)", cfg.backboard_base_url)
        return BackboardBackend(
            api_key=cfg.backboard_api_key,
            base_url=cfg.backboard_base_url,
            assistant_id=cfg.backboard_assistant_id or None,
            llm_provider=cfg.backboard_llm_provider,
            llm_model=cfg.backboard_llm_model,
            timeout=cfg.backend_timeout_seconds,
        )

    if cfg.memory_backend.strip().lower() == "backboard":
        logger.warning("BACKBOARD_API_KEY is not set; falling back to the in-memory backend")

    responder = None
    if cfg.anthropic_api_key:
        from src.llm.client import respond

        responder = respond
        logger.info("Memory backend: in-memory, replies from %s", cfg.claude_model)
    else:
        logger.info("Memory backend: in-memory, templated replies")
    return InMemoryBackend(responder=responder)


async def create_app(
    cfg: Settings = settings,
    backend: MemoryBackend | None = None,
    db_path: Path | None = None,
) -> JournalApp:
    """Build the app and make sure the backend has an assistant."""
    backend = backend or create_backend(cfg)
    await backend.ensure_assistant(
        AssistantConfig(name=cfg.assistant_name, system_prompt=JOURNAL_SYSTEM_PROMPT)
    )

    conversations = ConversationStore(backend, db_path=db_path)
    retriever = MemoryRetriever(backend)
    agent = JournalAgent(
        conversations=conversations,
        synthesizer=MemorySynthesizer(backend),
        retriever=retriever,
        backend=backend,
        context_window=cfg.context_window_size,
        retrieval_limit=cfg.retrieval_limit,
        greeting_memory_limit=cfg.greeting_memory_limit,
    )
    return JournalApp(
        backend=backend,
        conversations=conversations,
        retriever=retriever,
        agent=agent,
        service=JournalService(agent),
    )
