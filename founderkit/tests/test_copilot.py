"""Copilot chat and artifact generation against the mock and fake LLMs."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from founderkit.copilot import Copilot, parse_artifact_json
from founderkit.errors import (
    ConversationNotFound, InvalidArtifactType, LlmUnavailable, PhaseNotFound, QuotaExceeded,
    ValidationFailed, VentureNotFound,
)
from founderkit.llm import GENERATION, CompletionResult
from founderkit.models import ChatMessage


def _fake_llm(content: str = "{}", side_effect=None) -> MagicMock:
    llm = MagicMock()
    llm.mock = False
    llm.complete = AsyncMock(
        return_value=CompletionResult(content=content, tokens_used=7, model="fake-model"),
        side_effect=side_effect,
    )
    return llm


@pytest.fixture()
def fake_copilot(ctx):
    def build(llm) -> Copilot:
        return Copilot(ctx.store, llm, ctx.quota, ctx.ventures, ctx.conversations)
    return build


def _used(ctx, venture_id: str) -> int:
    return ctx.quota.status(venture_id).used


async def _echo(request) -> CompletionResult:
    await asyncio.sleep(0)
    return CompletionResult(content=f"re: {request.messages[-1]['content']}", tokens_used=1, model="fake-model")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class TestChat:
    @pytest.mark.asyncio
    async def test_reply_and_quota(self, ctx, venture):
        result = await ctx.copilot.chat(venture["id"], 1, "How do I find my first customers?")
        assert result["remaining_today"] == 29
        assert result["model"] == "mock-chat"
        assert result["tokens_used"] > 0
        assert "Phase 1 (Discovery)" in result["reply"]
        assert "Problem statement written" in result["reply"]

    @pytest.mark.asyncio
    async def test_follow_up_reuses_conversation(self, ctx, venture):
        first = await ctx.copilot.chat(venture["id"], 1, "First question")
        second = await ctx.copilot.chat(venture["id"], 1, "Second question")
        assert second["conversation_id"] == first["conversation_id"]
        assert second["remaining_today"] == 28

        history = ctx.copilot.get_chat_history(venture["id"])
        assert len(history) == 1
        assert [m["role"] for m in history[0]["messages"]] == ["user", "assistant", "user", "assistant"]
        assert history[0]["messages"][2]["content"] == "Second question"

    @pytest.mark.asyncio
    async def test_explicit_conversation_id(self, ctx, venture):
        first = await ctx.copilot.chat(venture["id"], 1, "Hello")
        again = await ctx.copilot.chat(venture["id"], 1, "Again", conversation_id=first["conversation_id"])
        assert again["conversation_id"] == first["conversation_id"]

    @pytest.mark.asyncio
    async def test_foreign_conversation_costs_nothing(self, ctx, venture, other_venture):
        theirs = await ctx.copilot.chat(other_venture["id"], 1, "Private")
        with pytest.raises(ConversationNotFound):
            await ctx.copilot.chat(venture["id"], 1, "Sneaky", conversation_id=theirs["conversation_id"])
        assert _used(ctx, venture["id"]) == 0

    @pytest.mark.asyncio
    async def test_history_is_sent_to_llm(self, ctx, venture, fake_copilot):
        await ctx.copilot.chat(venture["id"], 2, "Earlier question")
        ctx.phases.force_unlock(venture["id"], 2, "test setup")
        llm = _fake_llm("Sure.")
        await fake_copilot(llm).chat(venture["id"], 2, "Later question")

        request = llm.complete.await_args.args[0]
        assert [m["content"] for m in request.messages][0] == "Earlier question"
        assert request.messages[-1] == {"role": "user", "content": "Later question"}
        assert "Phase 2: Planning" in request.system_prompt

    @pytest.mark.asyncio
    async def test_quota_exhausted_skips_llm(self, ctx, venture, fake_copilot):
        ctx.quota.reserve(venture["id"], 30)
        llm = _fake_llm()
        with pytest.raises(QuotaExceeded):
            await fake_copilot(llm).chat(venture["id"], 1, "Anything")
        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_debit(self, ctx, venture, fake_copilot):
        llm = _fake_llm(side_effect=LlmUnavailable("down"))
        with pytest.raises(LlmUnavailable):
            await fake_copilot(llm).chat(venture["id"], 1, "Hello?")
        assert _used(ctx, venture["id"]) == 1
        assert ctx.copilot.get_chat_history(venture["id"]) == []

    @pytest.mark.asyncio
    async def test_concurrent_turns_on_one_conversation_stay_paired(self, ctx, venture, fake_copilot):
        vid = venture["id"]
        seeded = await ctx.copilot.chat(vid, 1, "Opening question")
        conv_id = seeded["conversation_id"]

        llm = MagicMock()
        llm.mock = False
        llm.complete = AsyncMock(side_effect=_echo)
        copilot = fake_copilot(llm)
        await asyncio.gather(
            copilot.chat(vid, 1, "Left", conversation_id=conv_id),
            copilot.chat(vid, 1, "Right", conversation_id=conv_id),
        )

        history = ctx.copilot.get_chat_history(vid)
        assert [h["id"] for h in history] == [conv_id]
        messages = history[0]["messages"]
        assert len(messages) == 6
        for question, answer in zip(messages[2::2], messages[3::2]):
            assert question["role"] == "user"
            assert answer["role"] == "assistant"
            assert answer["content"] == f"re: {question['content']}"
        assert {m["content"] for m in messages[2::2]} == {"Left", "Right"}

        with ctx.store.session() as session:
            rows = session.execute(
                select(ChatMessage.id, ChatMessage.seq).where(ChatMessage.conversation_id == conv_id)
                .order_by(ChatMessage.seq)
            ).all()
        assert [seq for _, seq in rows] == [1, 2, 3, 4, 5, 6]
        assert len({message_id for message_id, _ in rows}) == 6
        assert _used(ctx, vid) == 3

    @pytest.mark.asyncio
    async def test_unknown_venture(self, ctx):
        with pytest.raises(VentureNotFound):
            await ctx.copilot.chat("missing", 1, "Hello")

    @pytest.mark.asyncio
    async def test_unknown_phase(self, ctx, venture):
        with pytest.raises(PhaseNotFound):
            await ctx.copilot.chat(venture["id"], 8, "Hello")
        assert _used(ctx, venture["id"]) == 0


# ---------------------------------------------------------------------------
# Artifact generation
# ---------------------------------------------------------------------------


class TestGenerateArtifact:
    @pytest.mark.asyncio
    async def test_mock_business_plan(self, ctx, venture):
        result = await ctx.copilot.generate_artifact(venture["id"], 2, "BUSINESS_PLAN")
        assert result["remaining_today"] == 27
        assert result["model"] == "mock-generation"
        artifact = result["artifact"]
        assert artifact["type"] == "BUSINESS_PLAN"
        assert artifact["phase_number"] == 2
        assert artifact["version"] == 1
        assert "problem" in artifact["content"]
        assert len(ctx.ventures.list_artifacts(venture["id"], 2)) == 1

    @pytest.mark.asyncio
    async def test_growth_plan_feeds_phase_five_gate(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 5, "test setup")
        ctx.phases.update_gate_criterion(vid, 5, "revenue_positive", True)
        await ctx.copilot.generate_artifact(vid, 5, "GROWTH_PLAN")
        assert ctx.phases.evaluate_gate(vid, 5).cycle_complete is True

    @pytest.mark.asyncio
    async def test_uses_generation_tier(self, ctx, venture, fake_copilot):
        llm = _fake_llm('{"headline": "x"}')
        await fake_copilot(llm).generate_artifact(venture["id"], 2, "OFFER_STATEMENT")
        request = llm.complete.await_args.args[0]
        assert request.tier == GENERATION
        assert request.max_tokens == 2048

    @pytest.mark.asyncio
    async def test_invalid_type_costs_nothing(self, ctx, venture):
        with pytest.raises(InvalidArtifactType):
            await ctx.copilot.generate_artifact(venture["id"], 1, "CUSTOMER_LIST")
        assert _used(ctx, venture["id"]) == 0

    @pytest.mark.asyncio
    async def test_invalid_phase_costs_nothing(self, ctx, venture):
        with pytest.raises(ValidationFailed):
            await ctx.copilot.generate_artifact(venture["id"], 0, "GTM_PLAN")
        assert _used(ctx, venture["id"]) == 0

    @pytest.mark.asyncio
    async def test_not_enough_quota_for_three_units(self, ctx, venture, fake_copilot):
        ctx.quota.reserve(venture["id"], 28)
        llm = _fake_llm()
        with pytest.raises(QuotaExceeded):
            await fake_copilot(llm).generate_artifact(venture["id"], 4, "GTM_PLAN")
        llm.complete.assert_not_awaited()
        assert _used(ctx, venture["id"]) == 28

    @pytest.mark.asyncio
    async def test_unparseable_output_is_kept_raw(self, ctx, venture, fake_copilot):
        llm = _fake_llm("Sorry, here is your plan: not json")
        result = await fake_copilot(llm).generate_artifact(venture["id"], 4, "GTM_PLAN")
        assert result["artifact"]["content"] == {
            "raw": "Sorry, here is your plan: not json", "parse_error": True,
        }

    @pytest.mark.asyncio
    async def test_fenced_output_is_parsed(self, ctx, venture, fake_copilot):
        llm = _fake_llm('```json\n{"headline": "Books done"}\n```')
        result = await fake_copilot(llm).generate_artifact(venture["id"], 2, "OFFER_STATEMENT")
        assert result["artifact"]["content"] == {"headline": "Books done"}

    @pytest.mark.asyncio
    async def test_llm_failure_is_not_refunded(self, ctx, venture, fake_copilot):
        llm = _fake_llm(side_effect=LlmUnavailable("down"))
        with pytest.raises(LlmUnavailable):
            await fake_copilot(llm).generate_artifact(venture["id"], 2, "BUSINESS_PLAN")
        assert _used(ctx, venture["id"]) == 3
        assert ctx.ventures.list_artifacts(venture["id"]) == []


class TestParseArtifactJson:
    def test_object(self):
        assert parse_artifact_json('{"a": 1}') == {"a": 1}

    def test_list(self):
        assert parse_artifact_json("[1, 2]") == [1, 2]

    def test_scalar_is_a_parse_error(self):
        assert parse_artifact_json("42") == {"raw": "42", "parse_error": True}


class TestReadOnlyQueries:
    def test_rate_limit(self, ctx, venture):
        ctx.quota.reserve(venture["id"], 5)
        status = ctx.copilot.get_rate_limit(venture["id"])
        assert status["messages_used"] == 5
        assert status["remaining_today"] == 25

    def test_rate_limit_unknown_venture(self, ctx):
        with pytest.raises(VentureNotFound):
            ctx.copilot.get_rate_limit("missing")

    def test_history_unknown_venture(self, ctx):
        with pytest.raises(VentureNotFound):
            ctx.copilot.get_chat_history("missing")
