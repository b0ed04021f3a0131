"""Phase gate state machine: evaluation rules, transitions, and immutability."""
from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select

from founderkit import phases as phase_module
from founderkit.context import build_context
from founderkit.db import Store
from founderkit.errors import GateNotFound, PhaseLocked, PhaseNotFound, VentureNotFound
from founderkit.gates import GATE_DEFINITIONS
from founderkit.models import Artifact, PhaseProgress, PhaseStatus
from founderkit.llm import LLMGateway
from founderkit.phases import PhaseEngine, count_competitors


def _status(ctx, venture_id: str, phase_number: int) -> str:
    phases = {p["phase_number"]: p for p in ctx.ventures.get_phases(venture_id)}
    return phases[phase_number]["status"]


def _complete_phase_one(ctx, venture_id: str) -> None:
    ctx.ventures.update_venture(venture_id, {
        "problem_statement": "Freelancers lose hours every week reconciling receipts by hand.",
    })
    ctx.ventures.create_artifact(venture_id, 1, "CUSTOMER_LIST", {
        "competitors": ["QuickBooks", "Wave", "FreshBooks"],
    })
    ctx.phases.update_gate_criterion(venture_id, 1, "customer_conversations", True)


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


class TestSeededPhases:
    def test_five_phases_with_catalogue_gates(self, ctx, venture):
        phases = ctx.ventures.get_phases(venture["id"])
        assert [p["phase_number"] for p in phases] == [1, 2, 3, 4, 5]
        for p in phases:
            keys = [g["key"] for g in p["gate_criteria"]]
            assert keys == [d.key for d in GATE_DEFINITIONS[p["phase_number"]]]
            assert all(g["satisfied"] is False for g in p["gate_criteria"])

    def test_only_phase_one_starts_active(self, ctx, venture):
        phases = ctx.ventures.get_phases(venture["id"])
        assert phases[0]["status"] == "ACTIVE"
        assert phases[0]["started_at"] is not None
        assert all(p["status"] == "LOCKED" for p in phases[1:])
        assert all(p["started_at"] is None for p in phases[1:])


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestEvaluateGate:
    def test_fresh_venture_misses_all_phase_one_gates(self, ctx, venture):
        result = ctx.phases.evaluate_gate(venture["id"], 1)
        assert result.passed is False
        assert result.status == "ACTIVE"
        assert [m["key"] for m in result.missing] == [
            "problem_statement", "competitors_identified", "customer_conversations",
        ]
        assert result.cycle_complete is None

    def test_phase_one_completion_unlocks_phase_two(self, ctx, venture):
        _complete_phase_one(ctx, venture["id"])
        result = ctx.phases.evaluate_gate(venture["id"], 1)

        assert result.passed is True
        assert result.missing == []
        assert result.status == "COMPLETE"
        assert _status(ctx, venture["id"], 1) == "COMPLETE"
        assert _status(ctx, venture["id"], 2) == "ACTIVE"

        phases = {p["phase_number"]: p for p in ctx.ventures.get_phases(venture["id"])}
        assert phases[1]["completed_at"] is not None
        assert phases[1]["gate_satisfied"] is True
        assert phases[2]["started_at"] is not None

    def test_short_problem_statement_does_not_pass(self, ctx, venture):
        ctx.ventures.update_venture(venture["id"], {"problem_statement": "too short"})
        result = ctx.phases.evaluate_gate(venture["id"], 1)
        assert "problem_statement" in [m["key"] for m in result.missing]

    def test_evaluation_persists_recomputed_criteria(self, ctx, venture):
        ctx.ventures.update_venture(venture["id"], {
            "problem_statement": "Freelancers lose hours every week reconciling receipts.",
        })
        ctx.phases.evaluate_gate(venture["id"], 1)
        phase = ctx.ventures.get_phases(venture["id"])[0]
        satisfied = {g["key"]: g["satisfied"] for g in phase["gate_criteria"]}
        assert satisfied["problem_statement"] is True
        assert phase["gate_satisfied"] is False

    def test_locked_phase_raises(self, ctx, venture):
        with pytest.raises(PhaseLocked):
            ctx.phases.evaluate_gate(venture["id"], 2)

    def test_unknown_venture_raises(self, ctx):
        with pytest.raises(VentureNotFound):
            ctx.phases.evaluate_gate("missing", 1)

    def test_missing_phase_row_raises(self, ctx, venture):
        with pytest.raises(PhaseNotFound):
            ctx.phases.evaluate_gate(venture["id"], 9)


class TestCompletePhaseIsImmutable:
    def test_repeated_evaluation_returns_cached_criteria(self, ctx, venture):
        _complete_phase_one(ctx, venture["id"])
        first = ctx.phases.evaluate_gate(venture["id"], 1)

        # Undo the inputs; a completed phase must not be recomputed.
        ctx.ventures.update_venture(venture["id"], {"problem_statement": ""})

        second = ctx.phases.evaluate_gate(venture["id"], 1)
        third = ctx.phases.evaluate_gate(venture["id"], 1)
        assert second.gate_criteria == first.gate_criteria
        assert third.gate_criteria == first.gate_criteria
        assert second.passed is True
        assert _status(ctx, venture["id"], 1) == "COMPLETE"

    def test_gate_update_on_complete_phase_is_ignored(self, ctx, venture):
        _complete_phase_one(ctx, venture["id"])
        ctx.phases.evaluate_gate(venture["id"], 1)
        criteria = ctx.phases.update_gate_criterion(venture["id"], 1, "customer_conversations", False)
        assert all(g["satisfied"] for g in criteria)


class TestPhaseFiveLoops:
    def test_cycle_complete_keeps_phase_active(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 5, "test setup")
        ctx.phases.update_gate_criterion(vid, 5, "revenue_positive", True)
        ctx.ventures.create_artifact(vid, 5, "GROWTH_PLAN", {"goals": []})

        for _ in range(3):
            result = ctx.phases.evaluate_gate(vid, 5)
            assert result.passed is True
            assert result.cycle_complete is True
            assert result.status == "ACTIVE"
        assert _status(ctx, vid, 5) == "ACTIVE"

    def test_growth_plan_must_belong_to_phase_five(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 5, "test setup")
        ctx.phases.update_gate_criterion(vid, 5, "revenue_positive", True)
        ctx.ventures.create_artifact(vid, 4, "GROWTH_PLAN", {"goals": []})
        result = ctx.phases.evaluate_gate(vid, 5)
        assert result.passed is False
        assert result.cycle_complete is None


class TestPhaseRules:
    def test_business_plan_requires_all_eight_fields(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 2, "test setup")
        fields = {
            "problem_statement": "Freelancers lose hours every week on receipts.",
            "solution_statement": "Automatic categorization.",
            "target_customer": "Solo freelancers",
            "offer_description": "Monthly subscription",
            "revenue_model": "SaaS",
            "distribution_channel": "Communities",
            "advantage": "Human review included",
        }
        ctx.ventures.update_venture(vid, fields)
        result = ctx.phases.evaluate_gate(vid, 2)
        assert "business_plan_complete" in [m["key"] for m in result.missing]

        ctx.ventures.update_venture(vid, {"estimated_costs": {"startup": 500, "monthly": 50}})
        result = ctx.phases.evaluate_gate(vid, 2)
        assert "business_plan_complete" not in [m["key"] for m in result.missing]

    def test_offer_statement_artifact_satisfies_gate(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 2, "test setup")
        ctx.ventures.create_artifact(vid, 2, "OFFER_STATEMENT", {"headline": "Books done"})
        result = ctx.phases.evaluate_gate(vid, 2)
        assert "offer_statement" not in [m["key"] for m in result.missing]

    def test_entity_type_satisfies_entity_gate(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 3, "test setup")
        ctx.ventures.update_venture(vid, {"entity_type": "LLC"})
        result = ctx.phases.evaluate_gate(vid, 3)
        assert "entity_chosen" not in [m["key"] for m in result.missing]

    def test_entity_skip_flag_survives_evaluation(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 3, "test setup")
        criteria = ctx.phases.update_gate_criterion(vid, 3, "entity_chosen", True)
        entity = next(g for g in criteria if g["key"] == "entity_chosen")
        assert entity["satisfied"] is True
        assert entity["skipped"] is True
        result = ctx.phases.evaluate_gate(vid, 3)
        assert "entity_chosen" not in [m["key"] for m in result.missing]

    def test_clearing_entity_type_reopens_gate(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 3, "test setup")
        ctx.ventures.update_venture(vid, {"entity_type": "LLC"})
        assert "entity_chosen" not in [m["key"] for m in ctx.phases.evaluate_gate(vid, 3).missing]

        ctx.ventures.update_venture(vid, {"entity_type": "NONE"})
        result = ctx.phases.evaluate_gate(vid, 3)
        assert "entity_chosen" in [m["key"] for m in result.missing]

    def test_withdrawn_skip_reopens_gate(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 3, "test setup")
        ctx.phases.update_gate_criterion(vid, 3, "entity_chosen", True)
        criteria = ctx.phases.update_gate_criterion(vid, 3, "entity_chosen", False)
        entity = next(g for g in criteria if g["key"] == "entity_chosen")
        assert entity["satisfied"] is False
        assert entity["skipped"] is False
        assert "entity_chosen" in [m["key"] for m in ctx.phases.evaluate_gate(vid, 3).missing]

    def test_phase_four_is_fully_self_reported(self, ctx, venture):
        vid = venture["id"]
        ctx.phases.force_unlock(vid, 4, "test setup")
        for key in ("distribution_active", "first_outreach", "first_customer"):
            ctx.phases.update_gate_criterion(vid, 4, key, True)
        result = ctx.phases.evaluate_gate(vid, 4)
        assert result.passed is True
        assert _status(ctx, vid, 5) == "ACTIVE"


def _artifact(content, artifact_type="CUSTOMER_LIST", phase_number=1) -> Artifact:
    return Artifact(
        venture_id="v", phase_number=phase_number, type=artifact_type,
        content_json=json.dumps(content), version=1,
    )


class TestCountCompetitors:
    def test_top_level_list(self):
        assert count_competitors([_artifact(["A", "B", "C"])]) == 3

    def test_competitors_field(self):
        assert count_competitors([_artifact({"competitors": ["A", "B"]})]) == 2

    def test_duplicates_across_artifacts_count_once(self):
        arts = [_artifact(["Wave", "QuickBooks"]), _artifact({"competitors": ["wave ", "Xero"]})]
        assert count_competitors(arts) == 3

    def test_other_list_fields_are_ignored(self):
        assert count_competitors([_artifact({"customers": ["A", "B", "C"]})]) == 0

    def test_wrong_type_or_phase_ignored(self):
        arts = [_artifact(["A", "B", "C"], artifact_type="CUSTOM"), _artifact(["A", "B", "C"], phase_number=2)]
        assert count_competitors(arts) == 0

    def test_object_entries_use_name(self):
        content = {"competitors": [{"name": "Wave"}, {"name": "Xero"}, {"name": "wave"}]}
        assert count_competitors([_artifact(content)]) == 2


# ---------------------------------------------------------------------------
# Force unlock, self-report, CAS
# ---------------------------------------------------------------------------


class TestForceUnlock:
    def test_unlocks_locked_phase(self, ctx, venture):
        phase = ctx.phases.force_unlock(venture["id"], 3, "support ticket")
        assert phase["status"] == "ACTIVE"
        assert phase["started_at"] is not None

    def test_noop_on_complete(self, ctx, venture):
        _complete_phase_one(ctx, venture["id"])
        ctx.phases.evaluate_gate(venture["id"], 1)
        phase = ctx.phases.force_unlock(venture["id"], 1, "should not matter")
        assert phase["status"] == "COMPLETE"

    def test_noop_on_active(self, ctx, venture):
        before = ctx.ventures.get_phases(venture["id"])[0]
        phase = ctx.phases.force_unlock(venture["id"], 1, "already open")
        assert phase["status"] == "ACTIVE"
        assert phase["started_at"] == before["started_at"]

    def test_missing_phase(self, ctx, venture):
        with pytest.raises(PhaseNotFound):
            ctx.phases.force_unlock(venture["id"], 7, "nope")


class TestUpdateGateCriterion:
    def test_returns_updated_criteria(self, ctx, venture):
        criteria = ctx.phases.update_gate_criterion(venture["id"], 1, "customer_conversations", True)
        by_key = {g["key"]: g["satisfied"] for g in criteria}
        assert by_key["customer_conversations"] is True
        assert by_key["problem_statement"] is False

    def test_unknown_gate(self, ctx, venture):
        with pytest.raises(GateNotFound):
            ctx.phases.update_gate_criterion(venture["id"], 1, "pricing_set", True)

    def test_missing_phase(self, ctx, venture):
        with pytest.raises(PhaseNotFound):
            ctx.phases.update_gate_criterion(venture["id"], 6, "anything", True)


class TestCompareAndSwap:
    def test_only_first_transition_wins(self, store, ctx, venture):
        vid = venture["id"]
        with store.session() as s1, store.session() as s2:
            won_first = PhaseEngine.compare_and_swap_status(s1, vid, 1, PhaseStatus.ACTIVE, PhaseStatus.COMPLETE)
            s1.commit()
            won_second = PhaseEngine.compare_and_swap_status(s2, vid, 1, PhaseStatus.ACTIVE, PhaseStatus.COMPLETE)
            s2.commit()
        assert won_first is True
        assert won_second is False

    def test_wrong_expected_status_leaves_row_untouched(self, store, ctx, venture):
        vid = venture["id"]
        with store.session() as session:
            assert not PhaseEngine.compare_and_swap_status(
                session, vid, 2, PhaseStatus.ACTIVE, PhaseStatus.COMPLETE,
            )
            session.commit()
            status = session.execute(
                select(PhaseProgress.status).where(
                    PhaseProgress.venture_id == vid, PhaseProgress.phase_number == 2,
                )
            ).scalar_one()
        assert status == "LOCKED"


class TestConcurrentEvaluation:
    @pytest.fixture()
    def file_ctx(self, settings):
        store = Store.from_path(settings.database_path)
        yield build_context(settings=settings, store=store, llm=LLMGateway())
        store.dispose()

    def test_parallel_passing_evaluations_transition_once(self, file_ctx, monkeypatch, caplog):
        user = file_ctx.ventures.create_user("racer@example.com")
        vid = file_ctx.ventures.create_venture(user["id"], "Racer")["id"]
        _complete_phase_one(file_ctx, vid)

        # Both evaluations read the ACTIVE phase before either one writes.
        barrier = threading.Barrier(2, timeout=10)
        original = phase_module.compute_gates

        def compute_after_both_read(*args, **kwargs):
            barrier.wait()
            return original(*args, **kwargs)

        monkeypatch.setattr(phase_module, "compute_gates", compute_after_both_read)
        caplog.set_level(logging.INFO, logger="founderkit.phases")

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: file_ctx.phases.evaluate_gate(vid, 1), range(2)))

        assert [r.status for r in results] == ["COMPLETE", "COMPLETE"]
        messages = [r.getMessage() for r in caplog.records]
        assert messages.count(f"Venture {vid} completed phase 1") == 1
        assert messages.count(f"Venture {vid} unlocked phase 2") == 1

        phases = {p["phase_number"]: p for p in file_ctx.ventures.get_phases(vid)}
        assert phases[1]["status"] == "COMPLETE"
        assert phases[2]["status"] == "ACTIVE"
        assert phases[2]["started_at"] == phases[1]["completed_at"]
        assert phases[3]["status"] == "LOCKED"

    def test_repeat_evaluation_keeps_timestamps(self, ctx, venture):
        vid = venture["id"]
        _complete_phase_one(ctx, vid)
        ctx.phases.evaluate_gate(vid, 1)
        before = {p["phase_number"]: p for p in ctx.ventures.get_phases(vid)}

        ctx.phases.evaluate_gate(vid, 1)
        after = {p["phase_number"]: p for p in ctx.ventures.get_phases(vid)}
        assert after[1]["completed_at"] == before[1]["completed_at"]
        assert after[2]["started_at"] == before[2]["started_at"]


class TestEnrichedPhases:
    def test_merges_phase_config(self, ctx, venture):
        phases = ctx.phases.get_enriched_phases(venture["id"])
        assert [p["name"] for p in phases] == ["Discovery", "Planning", "Formation", "Launch", "Scale"]
        assert phases[0]["tool_recommendations"]
        assert phases[0]["guide_content"].startswith("## Phase 1")
        assert phases[0]["status"] == "ACTIVE"

    def test_unknown_venture(self, ctx):
        with pytest.raises(VentureNotFound):
            ctx.phases.get_enriched_phases("missing")
