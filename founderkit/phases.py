"""Phase gate state machine.

Each venture moves forward through five phases.  A phase is LOCKED, ACTIVE
or COMPLETE, and every status change goes through
``PhaseEngine.compare_and_swap_status`` so that concurrent evaluations of the
same phase produce exactly one transition.  COMPLETE is terminal: evaluating
a completed phase is a pure read of the criteria cached when it completed.
Phase 5 loops; when its gates pass the evaluation reports ``cycle_complete``
and the phase stays ACTIVE.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from founderkit.db import Store
from founderkit.errors import GateNotFound, PhaseLocked, PhaseNotFound
from founderkit.gates import LOOPING_PHASE, GateSet, is_skippable
from founderkit.models import Artifact, ArtifactType, PhaseConfig, PhaseProgress, PhaseStatus, Venture
from founderkit.services import BUSINESS_PLAN_FIELDS, artifact_content, phase_config_dict, phase_dict
from founderkit.ventures import load_artifacts, load_venture

log = logging.getLogger(__name__)

PROBLEM_STATEMENT_MIN_CHARS = 20
MIN_COMPETITORS = 3


@dataclass
class GateEvaluation:
    passed: bool
    status: str
    gate_criteria: list[dict] = field(default_factory=list)
    missing: list[dict] = field(default_factory=list)
    cycle_complete: bool | None = None

    def to_dict(self) -> dict:
        result = {
            "passed": self.passed,
            "status": self.status,
            "missing": self.missing,
            "gate_criteria": self.gate_criteria,
        }
        if self.cycle_complete is not None:
            result["cycle_complete"] = self.cycle_complete
        return result


# ---------------------------------------------------------------------------
# Gate rules
# ---------------------------------------------------------------------------


def count_competitors(artifacts: list[Artifact]) -> int:
    """Distinct competitor entries across phase-1 CUSTOMER_LIST artifacts.

    Only list-shaped content counts: a top-level list, or the ``competitors``
    field of an object.
    """
    seen: set[str] = set()
    for artifact in artifacts:
        if artifact.type != ArtifactType.CUSTOMER_LIST or artifact.phase_number != 1:
            continue
        content = artifact_content(artifact.content_json)
        if isinstance(content, dict):
            content = content.get("competitors")
        if not isinstance(content, list):
            continue
        for entry in content:
            if isinstance(entry, dict):
                name = entry.get("name") or entry.get("competitor") or repr(sorted(entry.items()))
            else:
                name = entry
            key = str(name).strip().lower()
            if key:
                seen.add(key)
    return len(seen)


def _has_artifact(artifacts: list[Artifact], artifact_type: str, phase_number: int) -> bool:
    return any(a.type == artifact_type and a.phase_number == phase_number for a in artifacts)


def _business_plan_complete(venture: Venture) -> bool:
    for name in BUSINESS_PLAN_FIELDS:
        if name == "estimated_costs":
            if not (venture.estimated_costs_json or "").strip():
                return False
        elif not (getattr(venture, name) or "").strip():
            return False
    return True


def _phase1(venture: Venture, artifacts: list[Artifact], gates: GateSet) -> None:
    gates.set("problem_statement", len((venture.problem_statement or "").strip()) >= PROBLEM_STATEMENT_MIN_CHARS)
    gates.set("competitors_identified", count_competitors(artifacts) >= MIN_COMPETITORS)


def _phase2(venture: Venture, artifacts: list[Artifact], gates: GateSet) -> None:
    gates.set("business_plan_complete", _business_plan_complete(venture))
    gates.set("offer_statement", _has_artifact(artifacts, ArtifactType.OFFER_STATEMENT, 2))


def _phase3(venture: Venture, artifacts: list[Artifact], gates: GateSet) -> None:
    gates.set("entity_chosen", venture.entity_type != "NONE" or gates.is_skipped("entity_chosen"))


def _phase4(venture: Venture, artifacts: list[Artifact], gates: GateSet) -> None:
    pass  # all self-reported


def _phase5(venture: Venture, artifacts: list[Artifact], gates: GateSet) -> None:
    gates.set("growth_plan", _has_artifact(artifacts, ArtifactType.GROWTH_PLAN, 5))


_PHASE_RULES: dict[int, Callable[[Venture, list[Artifact], GateSet], None]] = {
    1: _phase1,
    2: _phase2,
    3: _phase3,
    4: _phase4,
    5: _phase5,
}


def compute_gates(phase_number: int, venture: Venture, artifacts: list[Artifact], stored: GateSet) -> GateSet:
    """Recompute auto gates; self-reported values are carried over from *stored*."""
    gates = stored.copy()
    rule = _PHASE_RULES.get(phase_number)
    if rule is not None:
        rule(venture, artifacts, gates)
    return gates


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _load_phase(session: Session, venture_id: str, phase_number: int) -> PhaseProgress:
    phase = session.execute(
        select(PhaseProgress).where(
            PhaseProgress.venture_id == venture_id, PhaseProgress.phase_number == phase_number,
        )
    ).scalar_one_or_none()
    if phase is None:
        raise PhaseNotFound(venture_id, phase_number)
    return phase


class PhaseEngine:
    def __init__(self, store: Store):
        self.store = store

    @staticmethod
    def compare_and_swap_status(
        session: Session,
        venture_id: str,
        phase_number: int,
        expected: str,
        new: str,
        **timestamps: datetime,
    ) -> bool:
        """Move a phase from *expected* to *new*; returns whether this call won."""
        result = session.execute(
            update(PhaseProgress)
            .where(
                PhaseProgress.venture_id == venture_id,
                PhaseProgress.phase_number == phase_number,
                PhaseProgress.status == expected,
            )
            .values(status=new, **timestamps)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def evaluate_gate(self, venture_id: str, phase_number: int) -> GateEvaluation:
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            phase = _load_phase(session, venture_id, phase_number)

            if phase.status == PhaseStatus.LOCKED:
                raise PhaseLocked(phase_number)
            if phase.status == PhaseStatus.COMPLETE:
                return GateEvaluation(
                    passed=True,
                    status=PhaseStatus.COMPLETE,
                    gate_criteria=GateSet.from_json(phase.gate_criteria_json).to_list(),
                )

            artifacts = load_artifacts(session, venture_id)
            gates = compute_gates(phase_number, venture, artifacts, GateSet.from_json(phase.gate_criteria_json))
            passed = gates.all_satisfied()

            session.execute(
                update(PhaseProgress)
                .where(PhaseProgress.id == phase.id, PhaseProgress.status != PhaseStatus.COMPLETE)
                .values(gate_criteria_json=gates.to_json(), gate_satisfied=passed)
                .execution_options(synchronize_session=False)
            )

            if passed and phase.status == PhaseStatus.ACTIVE and phase_number != LOOPING_PHASE:
                now = datetime.now(UTC)
                if self.compare_and_swap_status(
                    session, venture_id, phase_number, PhaseStatus.ACTIVE, PhaseStatus.COMPLETE,
                    completed_at=now,
                ):
                    log.info("Venture %s completed phase %d", venture_id, phase_number)
                    if self.compare_and_swap_status(
                        session, venture_id, phase_number + 1, PhaseStatus.LOCKED, PhaseStatus.ACTIVE,
                        started_at=now,
                    ):
                        log.info("Venture %s unlocked phase %d", venture_id, phase_number + 1)
            session.commit()

            status = session.execute(
                select(PhaseProgress.status).where(PhaseProgress.id == phase.id)
            ).scalar_one()

        evaluation = GateEvaluation(
            passed=passed,
            status=status,
            gate_criteria=gates.to_list(),
            missing=[{"key": g.key, "label": g.label} for g in gates.missing()],
        )
        if phase_number == LOOPING_PHASE and passed:
            evaluation.cycle_complete = True
        return evaluation

    def force_unlock(self, venture_id: str, phase_number: int, reason: str) -> dict:
        """Administrative LOCKED -> ACTIVE. No-op for phases already open."""
        with self.store.session() as session:
            phase = _load_phase(session, venture_id, phase_number)
            if phase.status == PhaseStatus.LOCKED:
                if self.compare_and_swap_status(
                    session, venture_id, phase_number, PhaseStatus.LOCKED, PhaseStatus.ACTIVE,
                    started_at=datetime.now(UTC),
                ):
                    log.warning(
                        "Force-unlocked phase %d for venture %s: %s", phase_number, venture_id, reason,
                    )
                session.commit()
                session.refresh(phase)
            return phase_dict(phase)

    def update_gate_criterion(
        self, venture_id: str, phase_number: int, key: str, satisfied: bool,
    ) -> list[dict]:
        """Record a self-reported gate value and return the phase's criteria.

        On a skippable auto gate the value is the founder's opt-out flag.

        Completed phases keep the criteria they completed with.
        """
        with self.store.session() as session:
            phase = _load_phase(session, venture_id, phase_number)
            gates = GateSet.from_json(phase.gate_criteria_json)
            if key not in gates:
                raise GateNotFound(key, phase_number)
            if phase.status == PhaseStatus.COMPLETE:
                log.info("Ignoring gate update on completed phase %d of %s", phase_number, venture_id)
                return gates.to_list()
            if is_skippable(phase_number, key):
                # Opting out is stored apart from the computed value.
                gates.set_skipped(key, satisfied)
                gates = compute_gates(
                    phase_number, load_venture(session, venture_id), load_artifacts(session, venture_id), gates,
                )
            else:
                gates.set(key, satisfied)
            session.execute(
                update(PhaseProgress)
                .where(PhaseProgress.id == phase.id, PhaseProgress.status != PhaseStatus.COMPLETE)
                .values(gate_criteria_json=gates.to_json())
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return gates.to_list()

    def get_enriched_phases(self, venture_id: str) -> list[dict]:
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            configs = {
                c.phase_number: c for c in session.execute(select(PhaseConfig)).scalars().all()
            }
            enriched = []
            for phase in venture.phases:
                content = phase_config_dict(configs.get(phase.phase_number))
                if not content["name"]:
                    content["name"] = f"Phase {phase.phase_number}"
                enriched.append({**phase_dict(phase), **content})
            return enriched
