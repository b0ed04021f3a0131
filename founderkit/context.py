"""Wiring of the services shared by the HTTP API and the MCP server."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from founderkit.config import Settings, get_settings
from founderkit.conversations import ConversationStore
from founderkit.copilot import Copilot
from founderkit.db import Store
from founderkit.llm import LLMGateway
from founderkit.phases import PhaseEngine
from founderkit.quota import QuotaLedger
from founderkit.ventures import VentureService

log = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: Store
    quota: QuotaLedger
    ventures: VentureService
    phases: PhaseEngine
    conversations: ConversationStore
    llm: LLMGateway
    copilot: Copilot


def build_context(
    settings: Settings | None = None,
    store: Store | None = None,
    llm: LLMGateway | None = None,
) -> AppContext:
    settings = settings or get_settings()
    store = store or Store(settings.database_url)
    llm = llm or LLMGateway.from_settings(settings)
    quota = QuotaLedger(store, limit=settings.daily_message_limit)
    ventures = VentureService(store, quota=quota, max_ventures=settings.max_ventures_per_user)
    conversations = ConversationStore(store)
    copilot = Copilot(
        store, llm, quota, ventures,
        conversations=conversations,
        chat_cost=settings.chat_message_cost,
        artifact_cost=settings.artifact_message_cost,
    )
    log.info("founderkit ready (db=%s, llm=%s)", store.url, "mock" if llm.mock else llm.provider)
    return AppContext(
        settings=settings,
        store=store,
        quota=quota,
        ventures=ventures,
        phases=PhaseEngine(store),
        conversations=conversations,
        llm=llm,
        copilot=copilot,
    )
