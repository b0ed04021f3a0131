"""Prompt assembly for the copilot.

The chat system prompt is built from five layers joined by a horizontal rule:

1. Base persona
2. User profile
3. Venture state
4. Phase constraint (completed / remaining gates)
5. Artifact summaries, capped at ``ARTIFACT_TOKEN_BUDGET``

Conversation history is sent separately as a sliding window capped at
``HISTORY_TOKEN_BUDGET``.  Token counts are estimated at 4 characters per
token; the same estimate is used for mock-mode accounting.
"""
from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Any, Iterable

from founderkit.gates import PHASE_COUNT, PHASE_NAMES, GateSet
from founderkit.models import Artifact, ArtifactType, EntityType, User, Venture
from founderkit.utils import json_parse

LAYER_SEPARATOR = "\n\n---\n\n"
ARTIFACT_TOKEN_BUDGET = 1000
ARTIFACT_LINE_TOKENS = 150
HISTORY_TOKEN_BUDGET = 5000
JSON_ONLY_INSTRUCTION = "Respond ONLY with a valid JSON object. No markdown, no explanation."


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


@dataclass
class AssembledPrompt:
    system_prompt: str
    system_prompt_hash: str
    bounded_history: list[dict] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------

BASE_PERSONA = """\
You are an experienced entrepreneurial advisor working alongside a first-time founder. \
Your job is to help them build a real business, one concrete step at a time.

How you work:
- Be encouraging but honest. Do not offer false reassurance.
- Give specific, actionable advice instead of generic motivation.
- Use plain language. The founder may have no business background.
- For legal or financial questions, give educational information and remind them to consult a qualified professional.
- Favor progress over perfection: help them take the next step.
- Refer to the details of their venture when you advise.
- Keep answers focused, around 150-300 words unless asked for more."""


def _experience_band(level: int) -> str:
    if level <= 3:
        return "beginner"
    if level <= 6:
        return "some experience"
    return "experienced"


def build_user_context(user: User) -> str:
    parts = ["User profile:"]
    if user.experience_level is not None:
        parts.append(f"- Experience level: {user.experience_level}/10 ({_experience_band(user.experience_level)})")
    if user.business_type:
        parts.append(f"- Business type: {user.business_type}")
    if user.budget is not None:
        parts.append(f"- Starting budget: ${user.budget}")
    if user.income_goal is not None:
        parts.append(f"- Monthly income goal: ${user.income_goal}")
    if user.weekly_hours is not None:
        parts.append(f"- Weekly hours available: {user.weekly_hours}")
    return "\n".join(parts)


_VENTURE_TEXT_FIELDS: list[tuple[str, str]] = [
    ("Name", "name"),
    ("Problem", "problem_statement"),
    ("Solution", "solution_statement"),
    ("Target customer", "target_customer"),
    ("Offer", "offer_description"),
    ("Revenue model", "revenue_model"),
    ("Distribution", "distribution_channel"),
]


def build_venture_state(venture: Venture) -> str:
    parts = ["Current venture state:"]
    for label, attr in _VENTURE_TEXT_FIELDS:
        val = getattr(venture, attr, "")
        if val:
            parts.append(f"- {label}: {val}")
    costs = json_parse(venture.estimated_costs_json, None)
    if isinstance(costs, dict) and costs:
        parts.append(
            f"- Estimated costs: ${costs.get('startup', 0)} startup, ${costs.get('monthly', 0)}/month"
        )
    if venture.advantage:
        parts.append(f"- Advantage: {venture.advantage}")
    if venture.entity_type and venture.entity_type != EntityType.NONE:
        parts.append(f"- Entity type: {venture.entity_type}")
    if venture.entity_state:
        parts.append(f"- Entity state: {venture.entity_state}")
    if venture.ein_obtained:
        parts.append("- EIN: obtained")
    if venture.bank_account_opened:
        parts.append("- Bank account: opened")
    if len(parts) == 1:
        parts.append("- No venture details populated yet.")
    return "\n".join(parts)


def build_phase_constraint(phase_number: int, gates: GateSet) -> str:
    phase_name = PHASE_NAMES.get(phase_number, f"Phase {phase_number}")
    parts = [f"The user is currently in Phase {phase_number}: {phase_name}.", ""]

    done = gates.satisfied()
    if done:
        parts.append("Completed gates:")
        parts.extend(f"  ✓ {g.label}" for g in done)
        parts.append("")

    remaining = gates.missing()
    if remaining:
        parts.append("Remaining gates to complete:")
        parts.extend(f"  ☐ {g.label}" for g in remaining)
        parts.append("")

    horizon = min(phase_number + 1, PHASE_COUNT)
    parts += [
        "IMPORTANT CONSTRAINTS:",
        f"- Help the user complete the remaining gates for Phase {phase_number}.",
        f"- Do NOT discuss topics from phases beyond Phase {horizon} unless the user specifically asks.",
        "- Do NOT overwhelm the user with future steps. Focus on what they need to do RIGHT NOW.",
        "- If all gates are satisfied, congratulate them and explain what happens next.",
    ]
    return "\n".join(parts)


def _artifact_content_text(artifact: Artifact) -> str:
    parsed = json_parse(artifact.content_json, None)
    if parsed is None:
        return artifact.content_json or ""
    return json.dumps(parsed, separators=(",", ":"))


def build_artifact_summaries(artifacts: Iterable[Artifact]) -> str:
    ordered = sorted(artifacts, key=lambda a: (a.phase_number, a.created_at))
    if not ordered:
        return "No artifacts generated yet."

    header = "Previously generated artifacts:"
    lines = [header]
    used = estimate_tokens(header)
    for index, artifact in enumerate(ordered):
        content = truncate_to_tokens(_artifact_content_text(artifact), ARTIFACT_LINE_TOKENS)
        line = f"- [Phase {artifact.phase_number}] {artifact.type} (v{artifact.version}): {content}"
        cost = estimate_tokens(line)
        if used + cost > ARTIFACT_TOKEN_BUDGET:
            lines.append(
                f"... and {len(ordered) - index} more artifacts (truncated for context budget)"
            )
            break
        lines.append(line)
        used += cost
    return "\n".join(lines)


def bounded_history(messages: list[dict], budget: int = HISTORY_TOKEN_BUDGET) -> list[dict]:
    """Newest messages that fit in *budget*, returned oldest first.

    The most recent message is always kept, even when it alone exceeds the budget.
    """
    kept: list[dict] = []
    total = 0
    for msg in reversed(messages):
        tokens = estimate_tokens(msg.get("content", ""))
        if kept and total + tokens > budget:
            break
        total += tokens
        kept.append(msg)
    kept.reverse()
    return kept


def hash_prompt(system_prompt: str) -> str:
    return hashlib.sha256(system_prompt.encode("utf-8")).hexdigest()


def assemble_prompt(
    user: User,
    venture: Venture,
    phase_number: int,
    gate_criteria: GateSet,
    artifacts: Iterable[Artifact],
    history: list[dict],
) -> AssembledPrompt:
    layers = [
        BASE_PERSONA,
        build_user_context(user),
        build_venture_state(venture),
        build_phase_constraint(phase_number, gate_criteria),
        build_artifact_summaries(artifacts),
    ]
    system_prompt = LAYER_SEPARATOR.join(layers)
    return AssembledPrompt(
        system_prompt=system_prompt,
        system_prompt_hash=hash_prompt(system_prompt),
        bounded_history=bounded_history(history),
    )


# ---------------------------------------------------------------------------
# Artifact generation prompts
# ---------------------------------------------------------------------------

_ARTIFACT_INSTRUCTIONS: dict[str, str] = {
    ArtifactType.BUSINESS_PLAN: """\
Generate a structured 1-page business plan as a JSON object with these fields:
- problem: The problem being solved (2-3 sentences)
- solution: The proposed solution (2-3 sentences)
- target_customer: The ideal customer (2-3 sentences)
- value_proposition: The unique value offered (2-3 sentences)
- revenue_model: How the business makes money (2-3 sentences)
- distribution_channels: How to reach customers (2-3 channels)
- cost_structure: Startup and ongoing cost breakdown
- competitive_advantage: What makes this different (2-3 sentences)
- key_metrics: 3-5 metrics to track success
- next_steps: 3 immediate action items

Base the plan on the venture details above. Where fields are missing, make reasonable \
assumptions from the business type and budget. Be specific, not generic.""",
    ArtifactType.OFFER_STATEMENT: """\
Generate a compelling offer statement as a JSON object with these fields:
- headline: A clear, benefit-driven headline (under 15 words)
- for_who: The specific target customer
- problem: The pain point addressed
- solution: What the customer gets
- transformation: The outcome they can expect
- price_point: Suggested pricing with rationale
- guarantee: A suggested risk reversal (money-back, free trial, etc.)
- social_proof_strategy: How to build credibility before the first customers

Be specific to this venture and avoid generic marketing language.""",
    ArtifactType.GTM_PLAN: """\
Generate a go-to-market plan as a JSON object with these fields:
- primary_channel: The single best distribution channel and why
- first_10_customers: A concrete strategy for the first 10 customers
- messaging: Key messages per customer segment
- launch_timeline: Week-by-week plan for the first 4 weeks
- budget_allocation: How to spend the available budget
- metrics: 3 key launch metrics
- contingency: What to do if the primary channel does not work

Tailor the plan to the budget, business type, and target customer.""",
    ArtifactType.GROWTH_PLAN: """\
Generate a 90-day growth plan as a JSON object with these fields:
- current_state: Where the business is now
- goals: 3 goals, each with { metric, current, target, weekly_actions[] }
- systems_to_build: 3 repeatable systems or processes
- ai_integrations: 3 specific ways to use AI in the workflow
- weekly_review_checklist: 5 items to check every week
- monthly_milestones: Targets for month 1, 2, and 3
- risks: Top 3 risks with mitigations

Build on the existing customers and revenue. Favor systems that scale without \
proportional time investment.""",
}


def build_artifact_generation_prompt(artifact_type: str, venture: Venture, user: User) -> str:
    context = "\n\n".join([build_user_context(user), build_venture_state(venture)])
    instructions = _ARTIFACT_INSTRUCTIONS.get(artifact_type)
    if instructions is None:
        instructions = (
            f'Generate a structured deliverable of type "{artifact_type}" as a JSON object with '
            "fields relevant to this kind of document. Base the content on the venture details "
            "above. Be specific and actionable."
        )
    return f"{context}\n\n{instructions}\n\n{JSON_ONLY_INSTRUCTION}"


def artifact_request_message(artifact_type: str) -> dict[str, Any]:
    return {"role": "user", "content": f"Generate a {artifact_type} artifact for my venture."}
