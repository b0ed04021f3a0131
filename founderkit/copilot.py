"""AI copilot: phase-aware chat and artifact generation.

Both operations debit the venture's daily quota *before* calling the LLM.
Reserved units are not refunded when the LLM call fails afterwards.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy import select

from founderkit.conversations import ConversationStore, ConversationThread, new_message
from founderkit.db import Store
from founderkit.errors import InvalidArtifactType, PhaseNotFound
from founderkit.gates import GateSet
from founderkit.llm import CHAT, GENERATION, CompletionRequest, LLMGateway
from founderkit.models import Artifact, ArtifactType, PhaseProgress, User, Venture
from founderkit.prompts import artifact_request_message, assemble_prompt, build_artifact_generation_prompt
from founderkit.quota import QuotaLedger
from founderkit.ventures import VentureService, load_artifacts, load_user, load_venture, validate_phase_number
from founderkit.utils import strip_code_fences

log = logging.getLogger(__name__)

GENERATABLE_TYPES = (
    ArtifactType.BUSINESS_PLAN,
    ArtifactType.OFFER_STATEMENT,
    ArtifactType.GTM_PLAN,
    ArtifactType.GROWTH_PLAN,
)
CHAT_MAX_TOKENS = 1024
GENERATION_MAX_TOKENS = 2048


@dataclass
class ChatContext:
    venture: Venture
    user: User
    gates: GateSet
    artifacts: list[Artifact]


def parse_artifact_json(text: str) -> dict | list:
    """Parse LLM output as JSON, keeping the raw text when it is not valid."""
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        log.warning("LLM returned invalid artifact JSON: %s", text[:200])
        return {"raw": text, "parse_error": True}
    if not isinstance(parsed, (dict, list)):
        return {"raw": text, "parse_error": True}
    return parsed


class Copilot:
    def __init__(
        self,
        store: Store,
        llm: LLMGateway,
        quota: QuotaLedger,
        ventures: VentureService,
        conversations: ConversationStore | None = None,
        chat_cost: int = 1,
        artifact_cost: int = 3,
    ):
        self.store = store
        self.llm = llm
        self.quota = quota
        self.ventures = ventures
        self.conversations = conversations or ConversationStore(store)
        self.chat_cost = chat_cost
        self.artifact_cost = artifact_cost

    def _load_context(self, venture_id: str, phase_number: int) -> ChatContext:
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            user = load_user(session, venture.user_id)
            phase = session.execute(
                select(PhaseProgress).where(
                    PhaseProgress.venture_id == venture_id, PhaseProgress.phase_number == phase_number,
                )
            ).scalar_one_or_none()
            if phase is None:
                raise PhaseNotFound(venture_id, phase_number)
            return ChatContext(
                venture=venture,
                user=user,
                gates=GateSet.from_json(phase.gate_criteria_json),
                artifacts=load_artifacts(session, venture_id),
            )

    async def chat(
        self,
        venture_id: str,
        phase_number: int,
        message: str,
        conversation_id: str | None = None,
    ) -> dict:
        ctx = self._load_context(venture_id, phase_number)
        if conversation_id:
            # Validate before debiting so a bad id costs nothing.
            self.conversations.get_by_id(conversation_id, venture_id)
        remaining = self.quota.reserve(venture_id, self.chat_cost)

        thread: ConversationThread = (
            self.conversations.get_by_id(conversation_id, venture_id)
            if conversation_id
            else self.conversations.get_or_create(venture_id, phase_number)
        )
        user_msg = new_message("user", message)
        assembled = assemble_prompt(
            ctx.user, ctx.venture, phase_number, ctx.gates, ctx.artifacts,
            thread.messages + [user_msg],
        )
        result = await self.llm.complete(CompletionRequest(
            system_prompt=assembled.system_prompt,
            messages=[{"role": m["role"], "content": m["content"]} for m in assembled.bounded_history],
            tier=CHAT,
            max_tokens=CHAT_MAX_TOKENS,
        ))
        assistant_msg = new_message("assistant", result.content)
        self.conversations.append(thread, [user_msg, assistant_msg], assembled.system_prompt_hash)
        log.info(
            "Chat on venture %s phase %d: %d tokens, %d units left",
            venture_id, phase_number, result.tokens_used, remaining,
        )
        return {
            "reply": result.content,
            "tokens_used": result.tokens_used,
            "remaining_today": remaining,
            "model": result.model,
            "conversation_id": thread.id,
        }

    async def generate_artifact(self, venture_id: str, phase_number: int, artifact_type: str) -> dict:
        if artifact_type not in GENERATABLE_TYPES:
            raise InvalidArtifactType(artifact_type, [t.value for t in GENERATABLE_TYPES])
        validate_phase_number(phase_number)
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            user = load_user(session, venture.user_id)
        remaining = self.quota.reserve(venture_id, self.artifact_cost)

        result = await self.llm.complete(CompletionRequest(
            system_prompt=build_artifact_generation_prompt(artifact_type, venture, user),
            messages=[artifact_request_message(artifact_type)],
            tier=GENERATION,
            max_tokens=GENERATION_MAX_TOKENS,
        ))
        content = parse_artifact_json(result.content)
        artifact = self.ventures.create_artifact(venture_id, phase_number, artifact_type, content)
        return {
            "artifact": artifact,
            "tokens_used": result.tokens_used,
            "remaining_today": remaining,
            "model": result.model,
        }

    def get_chat_history(self, venture_id: str, phase_number: int | None = None) -> list[dict]:
        with self.store.session() as session:
            load_venture(session, venture_id)
        return [t.to_dict() for t in self.conversations.history(venture_id, phase_number)]

    def get_rate_limit(self, venture_id: str) -> dict:
        with self.store.session() as session:
            load_venture(session, venture_id)
        return self.quota.status(venture_id).to_dict()
