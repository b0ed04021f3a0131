"""Pydantic request/response schemas for the founderkit API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class _ProfileFields(BaseModel):
    experience_level: int | None = Field(None, ge=1, le=10)
    business_type: str | None = None
    budget: int | None = Field(None, ge=0)
    income_goal: int | None = Field(None, ge=0)
    weekly_hours: int | None = Field(None, ge=0)

    @field_validator("business_type")
    @classmethod
    def upper_business_type(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v


class UserCreate(_ProfileFields):
    email: str


class ProfileUpdate(_ProfileFields):
    pass


class UserOut(_ProfileFields):
    id: str
    email: str
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Ventures
# ---------------------------------------------------------------------------


class EstimatedCosts(BaseModel):
    startup: float = 0
    monthly: float = 0


class VentureCreate(BaseModel):
    name: str = ""


class VentureUpdate(BaseModel):
    name: str | None = None
    problem_statement: str | None = None
    solution_statement: str | None = None
    target_customer: str | None = None
    offer_description: str | None = None
    revenue_model: str | None = None
    distribution_channel: str | None = None
    estimated_costs: EstimatedCosts | None = None
    advantage: str | None = None
    entity_type: str | None = None
    entity_state: str | None = None
    ein_obtained: bool | None = None
    bank_account_opened: bool | None = None

    # Unknown fields pass through and are rejected by the service.
    model_config = {"extra": "allow"}


class VentureOut(BaseModel):
    id: str
    user_id: str
    name: str
    problem_statement: str
    solution_statement: str
    target_customer: str
    offer_description: str
    revenue_model: str
    distribution_channel: str
    estimated_costs: dict[str, Any] | None = None
    advantage: str
    entity_type: str
    entity_state: str
    ein_obtained: bool
    bank_account_opened: bool
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


class GateCriterionOut(BaseModel):
    key: str
    label: str
    gate_type: str
    satisfied: bool
    skipped: bool = False


class PhaseOut(BaseModel):
    id: str
    venture_id: str
    phase_number: int
    status: str
    started_at: str | None = None
    completed_at: str | None = None
    gate_criteria: list[GateCriterionOut] = []
    gate_satisfied: bool


class EnrichedPhaseOut(PhaseOut):
    name: str
    description: str
    core_deliverable: str
    guide_content: str
    tool_recommendations: list[str] = []


class GateEvaluationOut(BaseModel):
    passed: bool
    status: str
    missing: list[dict[str, str]] = []
    gate_criteria: list[GateCriterionOut] = []
    cycle_complete: bool | None = None


class GateUpdate(BaseModel):
    satisfied: bool


class ForceUnlockRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


class ArtifactCreate(BaseModel):
    phase_number: int = Field(..., ge=1, le=5)
    type: str
    content: dict[str, Any] | list[Any]


class ArtifactUpdate(BaseModel):
    content: dict[str, Any] | list[Any]


class ArtifactOut(BaseModel):
    id: str
    venture_id: str
    phase_number: int
    type: str
    content: Any
    version: int
    created_at: str | None = None


class ArtifactVersionOut(BaseModel):
    id: str
    artifact_id: str
    version: int
    content: Any
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Copilot
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    phase_number: int = Field(..., ge=1, le=5)
    message: str = Field(..., min_length=1, max_length=4000)
    conversation_id: str | None = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class ChatOut(BaseModel):
    reply: str
    tokens_used: int
    remaining_today: int
    model: str
    conversation_id: str


class GenerateRequest(BaseModel):
    phase_number: int = Field(..., ge=1, le=5)
    type: str


class GenerateOut(BaseModel):
    artifact: ArtifactOut
    tokens_used: int
    remaining_today: int
    model: str


class ChatMessageOut(BaseModel):
    role: str
    content: str
    timestamp: str = ""


class ConversationOut(BaseModel):
    id: str
    phase_number: int
    messages: list[ChatMessageOut] = []
    created_at: str | None = None


class RateLimitOut(BaseModel):
    messages_used: int
    messages_limit: int
    remaining_today: int
    resets_at: str


class DashboardOut(BaseModel):
    venture: VentureOut
    current_phase: int | None = None
    phases_completed: int
    gate_progress: dict[str, Any] | None = None
    phases: list[PhaseOut] = []
    artifact_count: int
    days_active: int
    rate_limit: RateLimitOut | None = None
