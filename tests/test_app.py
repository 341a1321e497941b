"""End-to-end tests: app wiring with the in-memory backend and a temp database."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from src.app import create_app, create_backend
from src.backend.backboard import BackboardBackend
from src.backend.in_memory import InMemoryBackend, mock_reply
from src.config import Settings
from src.conversations.models import MessageRole
from src.errors import NotFoundError
from src.llm.prompt import JOURNAL_SYSTEM_PROMPT

pytestmark = pytest.mark.usefixtures("_no_turso")

SYNTHESIS_REPLY = json.dumps(
    {
        "extractedMemories": [
            {"content": "Started training for a marathon", "category": "goal", "confidence": 0.9}
        ],
        "followUpQuestions": ["How far did you run?"],
        "elaborationTopics": [],
        "previousTopicsToRevisit": [],
        "confidence": 0.8,
        "shouldTerminate": False,
        "terminationReason": None,
        "isMinimalResponse": False,
    }
)


class TestCreateBackend:
    def test_default_is_in_memory(self):
        backend = create_backend(Settings())
        assert isinstance(backend, InMemoryBackend)

    def test_backboard_selected(self):
        cfg = Settings(
            memory_backend="backboard",
            backboard_api_key="bb-key",
            backboard_assistant_id="asst_1",
        )
        backend = create_backend(cfg)
        assert isinstance(backend, BackboardBackend)
        assert backend.get_assistant_id() == "asst_1"

    def test_backboard_without_key_falls_back(self):
        backend = create_backend(Settings(memory_backend="backboard"))
        assert isinstance(backend, InMemoryBackend)


async def test_create_app_initializes_assistant(tmp_path: Path) -> None:
    backend = InMemoryBackend()
    app = await create_app(
        Settings(assistant_name="Joanna"), backend=backend, db_path=tmp_path / "j.db"
    )

    assistant = await backend.get_assistant(backend.get_assistant_id())
    assert assistant.name == "Joanna"
    assert assistant.system_prompt == JOURNAL_SYSTEM_PROMPT
    assert app.backend is backend


async def test_full_session(tmp_path: Path) -> None:
    async def responder(history, system_prompt):
        if "## User's Message" in history[-1]["content"]:
            return SYNTHESIS_REPLY
        return mock_reply(history[-1]["content"].split("\n\n")[0])

    backend = InMemoryBackend(responder=AsyncMock(side_effect=responder))
    app = await create_app(Settings(), backend=backend, db_path=tmp_path / "j.db")

    created = await app.conversations.create(user_id="u1", title="Evening")
    greeting = await app.service.start_conversation(created.id, "u1")
    result = await app.service.send_message(created.id, "u1", "I went for my first long run")

    assert greeting.content
    assert result.content == mock_reply("I went for my first long run")
    assert result.debug.extracted_memories_count == 1
    assert result.debug.response_strategy == "elaboration_prompt"
    assert result.should_terminate is False

    memories = await backend.get_memories()
    assert [m.content for m in memories] == ["Started training for a marathon"]
    assert memories[0].metadata["conversation_id"] == created.id

    # Only the conversation's own thread remains; synthesis threads are gone.
    assert list(backend.threads) == [created.thread_id]

    history = await app.conversations.get_recent_context(created.id, 10)
    assert [m.role for m in history] == [
        MessageRole.ASSISTANT,
        MessageRole.USER,
        MessageRole.ASSISTANT,
    ]
    assert history[1].content == "I went for my first long run"
    assert history[1].metadata["synthesisResult"]["extractedMemories"][0]["category"] == "goal"
    assert history[1].metadata["synthesisDegraded"] is False


async def test_other_users_conversation_is_not_found(tmp_path: Path) -> None:
    app = await create_app(Settings(), backend=InMemoryBackend(), db_path=tmp_path / "j.db")
    created = await app.conversations.create(user_id="owner")

    with pytest.raises(NotFoundError):
        await app.service.send_message(created.id, "intruder", "hello")

    assert await app.conversations.get_recent_context(created.id, 10) == []
