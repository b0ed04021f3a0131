from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from founderkit.config import get_settings
from founderkit.context import AppContext, build_context
from founderkit.errors import FounderKitError
from founderkit.gates import GATE_DEFINITIONS, PHASE_NAMES

log = logging.getLogger(__name__)

_ctx: AppContext | None = None


def get_context() -> AppContext:
    global _ctx
    if _ctx is None:
        _ctx = build_context()
    return _ctx


def set_context(ctx: AppContext | None) -> None:
    """Swap the services the tools run against (tests, embedding)."""
    global _ctx
    _ctx = ctx


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def founderkit_lifespan(server: FastMCP) -> AsyncIterator[None]:
    get_context()
    yield


mcp = FastMCP(
    "founderkit",
    instructions=(
        "founderkit guides a first-time founder through five gated phases "
        "(Discovery, Planning, Formation, Launch, Scale). Register with create_user() "
        "and create_venture(), then use get_dashboard(venture_id), evaluate_gate() to "
        "advance, chat() to ask the copilot, and generate_artifact() for structured "
        "deliverables. Chat costs 1 unit and generation 3 units of a 30-unit daily quota."
    ),
    lifespan=founderkit_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _call(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return fn(*args, **kwargs)
    except FounderKitError as exc:
        return {"error": exc.to_dict()}


async def _acall(fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    try:
        return await fn(*args, **kwargs)
    except FounderKitError as exc:
        return {"error": exc.to_dict()}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("founderkit://overview")
def founderkit_overview() -> str:
    """Phases, their gates, and the quota rules."""
    settings = get_context().settings
    return json.dumps({
        "phases": {
            number: {
                "name": PHASE_NAMES[number],
                "gates": [
                    {"key": d.key, "label": d.label, "gate_type": d.gate_type}
                    for d in GATE_DEFINITIONS[number]
                ],
            }
            for number in sorted(GATE_DEFINITIONS)
        },
        "rules": [
            "Phases move forward only: LOCKED -> ACTIVE -> COMPLETE.",
            "Completing phase N unlocks phase N+1. Phase 5 loops and never completes.",
            "Auto gates are computed from venture data and artifacts; self-reported gates are set with update_gate_criterion().",
        ],
        "quota": {
            "daily_limit": settings.daily_message_limit,
            "chat_cost": settings.chat_message_cost,
            "artifact_cost": settings.artifact_message_cost,
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Users
# ---------------------------------------------------------------------------


def _profile(**fields: Any) -> dict:
    profile = {k: v for k, v in fields.items() if v is not None}
    if profile.get("business_type"):
        profile["business_type"] = str(profile["business_type"]).upper()
    return profile


@mcp.tool()
def create_user(
    email: str,
    experience_level: int | None = None,
    business_type: str | None = None,
    budget: int | None = None,
    income_goal: int | None = None,
    weekly_hours: int | None = None,
) -> dict:
    """Register a founder. Returns the user with its id, used by create_venture().

    Args:
        experience_level: 1 (first business) to 10.
        business_type: One of ONLINE, LOCAL, HYBRID.
    """
    profile = _profile(
        experience_level=experience_level, business_type=business_type,
        budget=budget, income_goal=income_goal, weekly_hours=weekly_hours,
    )
    return _call(get_context().ventures.create_user, email, **profile)


@mcp.tool()
def update_profile(
    user_id: str,
    experience_level: int | None = None,
    business_type: str | None = None,
    budget: int | None = None,
    income_goal: int | None = None,
    weekly_hours: int | None = None,
) -> dict:
    """Update a founder's profile. Only provided (non-null) fields are changed."""
    profile = _profile(
        experience_level=experience_level, business_type=business_type,
        budget=budget, income_goal=income_goal, weekly_hours=weekly_hours,
    )
    if not profile:
        return {"error": {"code": "VALIDATION_ERROR", "message": "No fields to update"}}
    return _call(get_context().ventures.update_profile, user_id, **profile)


# ---------------------------------------------------------------------------
# Tools: Ventures
# ---------------------------------------------------------------------------


@mcp.tool()
def create_venture(user_id: str, name: str = "") -> dict:
    """Create a venture with its five phases; phase 1 starts ACTIVE."""
    return _call(get_context().ventures.create_venture, user_id, name)


@mcp.tool()
def get_venture(venture_id: str) -> dict:
    """Full venture record, including estimated_costs and formation flags."""
    return _call(get_context().ventures.get_venture, venture_id)


@mcp.tool()
def list_ventures(user_id: str) -> list[dict] | dict:
    """List a user's ventures, newest first."""
    return _call(get_context().ventures.list_ventures, user_id)


@mcp.tool()
def get_dashboard(venture_id: str) -> dict:
    """Venture summary: current phase, gate progress, artifact count, quota."""
    return _call(get_context().ventures.get_dashboard, venture_id)


@mcp.tool()
def update_venture(
    venture_id: str,
    name: str | None = None,
    problem_statement: str | None = None,
    solution_statement: str | None = None,
    target_customer: str | None = None,
    offer_description: str | None = None,
    revenue_model: str | None = None,
    distribution_channel: str | None = None,
    advantage: str | None = None,
    entity_type: str | None = None,
    entity_state: str | None = None,
    estimated_costs: dict | None = None,
    ein_obtained: bool | None = None,
    bank_account_opened: bool | None = None,
) -> dict:
    """Update venture fields. Only provided (non-null) fields are changed.

    Args:
        entity_type: One of NONE, SOLE_PROP, LLC, CORP.
        estimated_costs: {"startup": number, "monthly": number}; the last of the
            eight business plan fields.
    """
    updates = {k: v for k, v in {
        "name": name, "problem_statement": problem_statement,
        "solution_statement": solution_statement, "target_customer": target_customer,
        "offer_description": offer_description, "revenue_model": revenue_model,
        "distribution_channel": distribution_channel, "advantage": advantage,
        "entity_type": entity_type, "entity_state": entity_state,
        "estimated_costs": estimated_costs, "ein_obtained": ein_obtained,
        "bank_account_opened": bank_account_opened,
    }.items() if v is not None}
    if not updates:
        return {"error": {"code": "VALIDATION_ERROR", "message": "No fields to update"}}
    return _call(get_context().ventures.update_venture, venture_id, updates)


# ---------------------------------------------------------------------------
# Tools: Phases
# ---------------------------------------------------------------------------


@mcp.tool()
def get_phases(venture_id: str) -> list[dict] | dict:
    """All five phases with status, gate criteria, and guide content."""
    return _call(get_context().phases.get_enriched_phases, venture_id)


@mcp.tool()
def evaluate_gate(venture_id: str, phase_number: int) -> dict:
    """Recompute a phase's gates. Completes it and unlocks the next one when all pass."""
    result = _call(get_context().phases.evaluate_gate, venture_id, phase_number)
    return result if isinstance(result, dict) else result.to_dict()


@mcp.tool()
def update_gate_criterion(venture_id: str, phase_number: int, key: str, satisfied: bool) -> list[dict] | dict:
    """Set a self-reported gate, e.g. customer_conversations or pricing_set."""
    return _call(get_context().phases.update_gate_criterion, venture_id, phase_number, key, satisfied)


@mcp.tool()
def force_unlock(venture_id: str, phase_number: int, reason: str) -> dict:
    """Administratively unlock a LOCKED phase. Has no effect on open phases."""
    return _call(get_context().phases.force_unlock, venture_id, phase_number, reason)


# ---------------------------------------------------------------------------
# Tools: Artifacts
# ---------------------------------------------------------------------------


@mcp.tool()
def list_artifacts(venture_id: str, phase_number: int | None = None, artifact_type: str | None = None) -> list[dict] | dict:
    """List artifacts ordered by phase and creation time."""
    return _call(get_context().ventures.list_artifacts, venture_id, phase_number, artifact_type)


@mcp.tool()
def create_artifact(venture_id: str, phase_number: int, artifact_type: str, content: dict | list) -> dict:
    """Store an artifact. CUSTOMER_LIST content with a competitors list feeds the phase 1 gate."""
    return _call(get_context().ventures.create_artifact, venture_id, phase_number, artifact_type, content)


@mcp.tool()
def update_artifact(venture_id: str, artifact_id: str, content: dict | list) -> dict:
    """Replace artifact content; the previous content is kept as a version."""
    return _call(get_context().ventures.update_artifact, venture_id, artifact_id, content)


@mcp.tool()
def list_artifact_versions(venture_id: str, artifact_id: str) -> list[dict] | dict:
    """Earlier contents of an artifact, oldest version first."""
    return _call(get_context().ventures.list_artifact_versions, venture_id, artifact_id)


# ---------------------------------------------------------------------------
# Tools: Copilot
# ---------------------------------------------------------------------------


@mcp.tool()
async def chat(venture_id: str, phase_number: int, message: str, conversation_id: str | None = None) -> dict:
    """Ask the copilot about a phase. Costs 1 quota unit."""
    return await _acall(get_context().copilot.chat, venture_id, phase_number, message, conversation_id)


@mcp.tool()
async def generate_artifact(venture_id: str, phase_number: int, artifact_type: str) -> dict:
    """Generate BUSINESS_PLAN, OFFER_STATEMENT, GTM_PLAN or GROWTH_PLAN. Costs 3 quota units."""
    return await _acall(get_context().copilot.generate_artifact, venture_id, phase_number, artifact_type)


@mcp.tool()
def get_chat_history(venture_id: str, phase_number: int | None = None) -> list[dict] | dict:
    """Conversations for a venture, newest first."""
    return _call(get_context().copilot.get_chat_history, venture_id, phase_number)


@mcp.tool()
def get_rate_limit(venture_id: str) -> dict:
    """Today's quota usage and reset time."""
    return _call(get_context().copilot.get_rate_limit, venture_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the founderkit MCP server over stdio."""
    logging.basicConfig(level=get_settings().log_level)
    mcp.run()


if __name__ == "__main__":
    main()
