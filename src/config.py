"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Journal companion configuration. All values come from environment variables."""

    # Anthropic (LLM pass-through for the in-memory backend)
    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-haiku-4-5-20251001")

    # Memory backend: "backboard" (hosted) or "memory" (in-process double)
    memory_backend: str = Field(default="memory")

    # Backboard
    backboard_api_key: str = Field(default="")
    backboard_base_url: str = Field(default="https://app.backboard.io/api")
    backboard_assistant_id: str = Field(default="")
    backboard_llm_provider: str = Field(default="google")
    backboard_llm_model: str = Field(default="gemini-2.0-flash")
    backend_timeout_seconds: float = Field(default=60.0)

    # Assistant persona
    assistant_name: str = Field(default="Joanna")

    # Database
    database_path: Path = Field(default=Path("data/journal.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Agent loop
    context_window_size: int = Field(default=10)
    retrieval_limit: int = Field(default=5)
    greeting_memory_limit: int = Field(default=5)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def use_hosted_backend(self) -> bool:
        """True when the Backboard backend is selected and has credentials."""
        return self.memory_backend.strip().lower() == "backboard" and bool(
            self.backboard_api_key
        )


settings = Settings()
