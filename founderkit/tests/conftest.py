from __future__ import annotations

import pytest

from founderkit.config import Settings
from founderkit.context import AppContext, build_context
from founderkit.db import Store
from founderkit.llm import LLMGateway


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_path=tmp_path / "founderkit.db",
        llm_provider="anthropic",
        anthropic_api_key=None,
        openai_api_key=None,
        daily_message_limit=30,
    )


@pytest.fixture()
def store():
    """In-memory store shared across sessions through a StaticPool."""
    s = Store("sqlite://")
    yield s
    s.dispose()


@pytest.fixture()
def ctx(settings: Settings, store: Store) -> AppContext:
    return build_context(settings=settings, store=store, llm=LLMGateway())


@pytest.fixture()
def user(ctx: AppContext) -> dict:
    return ctx.ventures.create_user(
        "founder@example.com", experience_level=2, business_type="ONLINE", budget=500,
    )


@pytest.fixture()
def venture(ctx: AppContext, user: dict) -> dict:
    return ctx.ventures.create_venture(user["id"], "Ledgerly")


@pytest.fixture()
def other_venture(ctx: AppContext) -> dict:
    other = ctx.ventures.create_user("someone@else.com")
    return ctx.ventures.create_venture(other["id"], "Elsewhere")
