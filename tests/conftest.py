"""Shared test fixtures."""

from pathlib import Path

import pytest

from src.backend.in_memory import InMemoryBackend
from src.conversations.store import ConversationStore

ASSISTANT_ID = "asst_test"


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def backend() -> InMemoryBackend:
    """In-memory backend with a pre-registered assistant."""
    return InMemoryBackend(assistant_id=ASSISTANT_ID)


@pytest.fixture
def store(backend: InMemoryBackend, tmp_path: Path) -> ConversationStore:
    """ConversationStore backed by a temp database and the in-memory backend."""
    return ConversationStore(backend, db_path=tmp_path / "test.db")
