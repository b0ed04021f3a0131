"""Serialization helpers shared by the API and MCP server."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from founderkit.gates import GateSet
from founderkit.models import Artifact, ArtifactVersion, PhaseConfig, PhaseProgress, User, Venture
from founderkit.utils import json_parse

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

USER_PROFILE_FIELDS = (
    "experience_level", "business_type", "budget", "income_goal", "weekly_hours",
)

VENTURE_TEXT_FIELDS = (
    "name", "problem_statement", "solution_statement", "target_customer",
    "offer_description", "revenue_model", "distribution_channel", "advantage",
)

VENTURE_UPDATABLE_FIELDS = (
    *VENTURE_TEXT_FIELDS, "estimated_costs", "entity_type", "entity_state",
    "ein_obtained", "bank_account_opened",
)

# The eight fields a complete 1-page business plan needs.
BUSINESS_PLAN_FIELDS = (
    "problem_statement", "solution_statement", "target_customer", "offer_description",
    "revenue_model", "distribution_channel", "estimated_costs", "advantage",
)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def artifact_content(raw: str | None) -> Any:
    """Decode stored artifact content, keeping unparseable text visible."""
    try:
        return json.loads(raw or "")
    except (json.JSONDecodeError, TypeError):
        return {"_raw": raw, "_parse_error": True}


def estimated_costs(venture: Venture) -> dict | None:
    costs = json_parse(venture.estimated_costs_json, None)
    return costs if isinstance(costs, dict) else None


def user_dict(user: User) -> dict:
    return {
        "id": user.id, "email": user.email,
        **{f: getattr(user, f) for f in USER_PROFILE_FIELDS},
        "created_at": _iso(user.created_at),
    }


def venture_dict(venture: Venture) -> dict:
    return {
        "id": venture.id, "user_id": venture.user_id,
        **{f: getattr(venture, f) for f in VENTURE_TEXT_FIELDS},
        "estimated_costs": estimated_costs(venture),
        "entity_type": venture.entity_type,
        "entity_state": venture.entity_state,
        "ein_obtained": bool(venture.ein_obtained),
        "bank_account_opened": bool(venture.bank_account_opened),
        "created_at": _iso(venture.created_at),
        "updated_at": _iso(venture.updated_at),
    }


def phase_dict(phase: PhaseProgress) -> dict:
    return {
        "id": phase.id, "venture_id": phase.venture_id,
        "phase_number": phase.phase_number, "status": phase.status,
        "started_at": _iso(phase.started_at),
        "completed_at": _iso(phase.completed_at),
        "gate_criteria": GateSet.from_json(phase.gate_criteria_json).to_list(),
        "gate_satisfied": bool(phase.gate_satisfied),
    }


def phase_config_dict(config: PhaseConfig | None) -> dict:
    if config is None:
        return {"name": "", "description": "", "core_deliverable": "",
                "guide_content": "", "tool_recommendations": []}
    return {
        "name": config.name, "description": config.description,
        "core_deliverable": config.core_deliverable,
        "guide_content": config.guide_content,
        "tool_recommendations": json_parse(config.tool_recommendations_json, []),
    }


def artifact_dict(artifact: Artifact) -> dict:
    return {
        "id": artifact.id, "venture_id": artifact.venture_id,
        "phase_number": artifact.phase_number, "type": artifact.type,
        "content": artifact_content(artifact.content_json),
        "version": artifact.version,
        "created_at": _iso(artifact.created_at),
    }


def artifact_version_dict(version: ArtifactVersion) -> dict:
    return {
        "id": version.id, "artifact_id": version.artifact_id,
        "version": version.version,
        "content": artifact_content(version.content_json),
        "created_at": _iso(version.created_at),
    }


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)
