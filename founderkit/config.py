from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

DATA_DIR = Path(__file__).parent / "data"


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _env_number(key: str, default, cast, kind: str):
    raw = _env(key)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{key} must be {kind}, got {raw!r}") from None


def _env_int(key: str, default: int) -> int:
    return _env_number(key, default, int, "an integer")


def _env_float(key: str, default: float) -> float:
    return _env_number(key, default, float, "a number")


class Settings(BaseModel):
    database_path: Path = Field(
        default_factory=lambda: Path(_env("FOUNDERKIT_DB_PATH") or DATA_DIR / "founderkit.db")
    )

    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "anthropic"))
    anthropic_api_key: str | None = Field(default_factory=lambda: _env("ANTHROPIC_API_KEY") or None)
    openai_api_key: str | None = Field(default_factory=lambda: _env("OPENAI_API_KEY") or None)
    openai_base_url: str | None = Field(default_factory=lambda: _env("OPENAI_BASE_URL") or None)
    llm_chat_model: str = Field(default_factory=lambda: _env("LLM_CHAT_MODEL"))
    llm_generation_model: str = Field(default_factory=lambda: _env("LLM_GENERATION_MODEL"))
    llm_timeout_seconds: float = Field(default_factory=lambda: _env_float("LLM_TIMEOUT_SECONDS", 30.0))
    llm_max_retries: int = Field(default_factory=lambda: _env_int("LLM_MAX_RETRIES", 2))
    llm_backoff_seconds: float = 1.0

    daily_message_limit: int = Field(default_factory=lambda: _env_int("DAILY_MESSAGE_LIMIT", 30))
    chat_message_cost: int = 1
    artifact_message_cost: int = 3
    max_ventures_per_user: int = 10

    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO").upper())

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    @property
    def llm_api_key(self) -> str | None:
        """Credential for the configured provider; ``None`` selects mock mode."""
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
