"""Gate catalogue and phase content.

``GATE_DEFINITIONS`` is the single source of truth for which gates each phase
carries: ventures are seeded from it and the phase engine evaluates against
the keys it declares.  ``PHASE_SEED`` is the editable phase content written
into the ``phase_config`` table on startup.
"""
from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import asdict, dataclass

from founderkit.utils import json_parse

AUTO = "auto"
SELF_REPORTED = "self_reported"

PHASE_COUNT = 5
LOOPING_PHASE = 5


@dataclass(frozen=True)
class GateDefinition:
    key: str
    label: str
    gate_type: str  # auto | self_reported
    skippable: bool = False


GATE_DEFINITIONS: dict[int, tuple[GateDefinition, ...]] = {
    1: (
        GateDefinition("problem_statement", "Problem statement written (≥20 chars)", AUTO),
        GateDefinition("competitors_identified", "≥3 competitor/existing solutions identified", AUTO),
        GateDefinition("customer_conversations", "≥5 customer conversations logged", SELF_REPORTED),
    ),
    2: (
        GateDefinition("business_plan_complete", "All 8 business plan fields populated", AUTO),
        GateDefinition("offer_statement", "Offer statement finalized", AUTO),
        GateDefinition("pricing_set", "Pricing set", SELF_REPORTED),
    ),
    3: (
        GateDefinition("entity_chosen", "Entity type chosen or explicitly skipped", AUTO, skippable=True),
        GateDefinition("bookkeeping_selected", "Bookkeeping method selected", SELF_REPORTED),
        GateDefinition("bank_status_logged", "Bank account status logged", SELF_REPORTED),
    ),
    4: (
        GateDefinition("distribution_active", "≥1 distribution channel active", SELF_REPORTED),
        GateDefinition("first_outreach", "First outreach sent", SELF_REPORTED),
        GateDefinition("first_customer", "≥1 customer acquired or ≥1 pre-sale", SELF_REPORTED),
    ),
    5: (
        GateDefinition("revenue_positive", "Revenue > $0 (self-reported)", SELF_REPORTED),
        GateDefinition("growth_plan", "90-day growth plan generated", AUTO),
    ),
}


def is_skippable(phase_number: int, key: str) -> bool:
    """Whether the founder may satisfy an auto gate by explicitly opting out."""
    return any(d.key == key and d.skippable for d in GATE_DEFINITIONS.get(phase_number, ()))


@dataclass
class GateCriterion:
    key: str
    label: str
    gate_type: str
    satisfied: bool = False
    skipped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class GateSet:
    """Gate criteria of one phase, keyed by gate key in declaration order."""

    def __init__(self, criteria: list[GateCriterion] | None = None):
        self._gates: dict[str, GateCriterion] = {c.key: c for c in criteria or []}

    @classmethod
    def seed(cls, phase_number: int) -> GateSet:
        return cls([
            GateCriterion(d.key, d.label, d.gate_type, False)
            for d in GATE_DEFINITIONS.get(phase_number, ())
        ])

    @classmethod
    def from_json(cls, raw: str | None) -> GateSet:
        items = json_parse(raw, [])
        if not isinstance(items, list):
            items = []
        return cls([
            GateCriterion(
                key=str(item["key"]),
                label=str(item.get("label", item["key"])),
                gate_type=str(item.get("gate_type", SELF_REPORTED)),
                satisfied=bool(item.get("satisfied", False)),
                skipped=bool(item.get("skipped", False)),
            )
            for item in items if isinstance(item, dict) and "key" in item
        ])

    def to_json(self) -> str:
        return json.dumps(self.to_list())

    def to_list(self) -> list[dict]:
        return [g.to_dict() for g in self._gates.values()]

    def copy(self) -> GateSet:
        return GateSet([GateCriterion(**g.to_dict()) for g in self._gates.values()])

    def __contains__(self, key: str) -> bool:
        return key in self._gates

    def __iter__(self) -> Iterator[GateCriterion]:
        return iter(self._gates.values())

    def __len__(self) -> int:
        return len(self._gates)

    def is_satisfied(self, key: str) -> bool:
        gate = self._gates.get(key)
        return gate.satisfied if gate else False

    def set(self, key: str, satisfied: bool) -> None:
        """Set one gate's value. Raises KeyError for keys the phase does not declare."""
        self._gates[key].satisfied = bool(satisfied)

    def is_skipped(self, key: str) -> bool:
        gate = self._gates.get(key)
        return gate.skipped if gate else False

    def set_skipped(self, key: str, skipped: bool) -> None:
        self._gates[key].skipped = bool(skipped)

    def missing(self) -> list[GateCriterion]:
        return [g for g in self._gates.values() if not g.satisfied]

    def satisfied(self) -> list[GateCriterion]:
        return [g for g in self._gates.values() if g.satisfied]

    def all_satisfied(self) -> bool:
        return all(g.satisfied for g in self._gates.values())


# ---------------------------------------------------------------------------
# Phase content seeded into phase_config
# ---------------------------------------------------------------------------

PHASE_NAMES: dict[int, str] = {
    1: "Discovery",
    2: "Planning",
    3: "Formation",
    4: "Launch",
    5: "Scale",
}

PHASE_SEED: list[dict] = [
    {
        "phase_number": 1,
        "name": PHASE_NAMES[1],
        "description": "Validate the idea: define the problem, map existing solutions, talk to potential customers.",
        "core_deliverable": "Validated problem statement",
        "guide_content": (
            "## Phase 1: Discovery\n\n"
            "Write a specific problem statement: who has the problem, how painful it is, "
            "and how they cope today.\n\n"
            "List at least three competitors or existing solutions with what they do well, "
            "what they miss, and the gap that remains.\n\n"
            "Hold at least five customer conversations. Ask about the last time they hit the "
            "problem and write down their exact words."
        ),
        "tool_recommendations": [
            "Google Trends: search demand for the problem area",
            "Reddit / Quora: real conversations about the problem",
            "Calendly: schedule discovery calls",
        ],
    },
    {
        "phase_number": 2,
        "name": PHASE_NAMES[2],
        "description": "Write the 1-page business plan, design the offer, and set a price.",
        "core_deliverable": "1-page business plan + offer statement",
        "guide_content": (
            "## Phase 2: Planning\n\n"
            "Fill in all eight plan fields: problem, solution, target customer, offer, revenue "
            "model, distribution channel, estimated costs, and advantage.\n\n"
            "Turn the product into an offer: who it is for, what they get, and the result "
            "they can expect.\n\n"
            "Pick a pricing model and commit to a starting price, even for a free beta."
        ),
        "tool_recommendations": [
            "Lean Canvas: structured business model format",
            "Stripe or Gumroad: pricing research and payments",
            "Google Sheets: startup and monthly cost projections",
        ],
    },
    {
        "phase_number": 3,
        "name": PHASE_NAMES[3],
        "description": "Set up the legal and financial base: entity, EIN, bank account, bookkeeping.",
        "core_deliverable": "Legal entity + bookkeeping setup",
        "guide_content": (
            "## Phase 3: Formation\n\n"
            "Educational information only, not legal or financial advice.\n\n"
            "Choose an entity type (sole proprietorship, LLC, corporation) or explicitly skip "
            "the decision for now. Get an EIN, open a separate business bank account, and pick "
            "a bookkeeping method you will actually use every week."
        ),
        "tool_recommendations": [
            "IRS EIN Assistant: free online EIN application",
            "Wave: free accounting and invoicing",
            "Mercury or Relay: business banking",
        ],
    },
    {
        "phase_number": 4,
        "name": PHASE_NAMES[4],
        "description": "Activate one distribution channel, send the first outreach, win the first customer.",
        "core_deliverable": "First customer acquired",
        "guide_content": (
            "## Phase 4: Launch\n\n"
            "Choose one channel where the target customers already spend time and commit to it.\n\n"
            "Send ten personal messages to potential customers. Offer value before asking.\n\n"
            "Make the first purchase easy: a discount, a trial, or a guarantee."
        ),
        "tool_recommendations": [
            "Carrd: simple landing page",
            "Mailchimp or ConvertKit: email outreach",
            "Stripe: accept payments",
        ],
    },
    {
        "phase_number": 5,
        "name": PHASE_NAMES[5],
        "description": "Build the 90-day growth plan and the systems for repeatable revenue.",
        "core_deliverable": "90-day growth plan (loops indefinitely)",
        "guide_content": (
            "## Phase 5: Scale\n\n"
            "Document how the first customers were won, then set three 90-day goals with a "
            "metric, a current value, a target, and weekly actions.\n\n"
            "This phase has no exit gate. Each cycle raises the goals and refines the systems."
        ),
        "tool_recommendations": [
            "Zapier or Make: workflow automation",
            "Google Analytics: traffic analysis",
            "Airtable: CRM and pipeline",
        ],
    },
]
