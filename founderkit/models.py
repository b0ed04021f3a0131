from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class PhaseStatus(StrEnum):
    LOCKED = "LOCKED"
    ACTIVE = "ACTIVE"
    COMPLETE = "COMPLETE"


class ArtifactType(StrEnum):
    BUSINESS_PLAN = "BUSINESS_PLAN"
    OFFER_STATEMENT = "OFFER_STATEMENT"
    BRAND_BRIEF = "BRAND_BRIEF"
    FINANCIAL_SHEET = "FINANCIAL_SHEET"
    CUSTOMER_LIST = "CUSTOMER_LIST"
    GTM_PLAN = "GTM_PLAN"
    GROWTH_PLAN = "GROWTH_PLAN"
    CUSTOM = "CUSTOM"


class EntityType(StrEnum):
    NONE = "NONE"
    SOLE_PROP = "SOLE_PROP"
    LLC = "LLC"
    CORP = "CORP"


class BusinessType(StrEnum):
    ONLINE = "ONLINE"
    LOCAL = "LOCAL"
    HYBRID = "HYBRID"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    experience_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    business_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    budget: Mapped[int | None] = mapped_column(Integer, nullable=True)
    income_goal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    ventures: Mapped[list[Venture]] = relationship("Venture", back_populates="user")


class Venture(Base):
    __tablename__ = "ventures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), default="")
    problem_statement: Mapped[str] = mapped_column(Text, default="")
    solution_statement: Mapped[str] = mapped_column(Text, default="")
    target_customer: Mapped[str] = mapped_column(Text, default="")
    offer_description: Mapped[str] = mapped_column(Text, default="")
    revenue_model: Mapped[str] = mapped_column(Text, default="")
    distribution_channel: Mapped[str] = mapped_column(Text, default="")
    estimated_costs_json: Mapped[str] = mapped_column(Text, default="")  # {"startup": n, "monthly": n}
    advantage: Mapped[str] = mapped_column(Text, default="")
    entity_type: Mapped[str] = mapped_column(String(20), default=EntityType.NONE.value)
    entity_state: Mapped[str] = mapped_column(String(50), default="")
    ein_obtained: Mapped[bool] = mapped_column(Boolean, default=False)
    bank_account_opened: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    user: Mapped[User] = relationship("User", back_populates="ventures")
    phases: Mapped[list[PhaseProgress]] = relationship(
        "PhaseProgress", back_populates="venture", order_by="PhaseProgress.phase_number",
        cascade="all, delete-orphan",
    )
    artifacts: Mapped[list[Artifact]] = relationship("Artifact", back_populates="venture", cascade="all, delete-orphan")


class PhaseProgress(Base):
    __tablename__ = "phase_progress"
    __table_args__ = (UniqueConstraint("venture_id", "phase_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    venture_id: Mapped[str] = mapped_column(String(36), ForeignKey("ventures.id"), nullable=False)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(10), default=PhaseStatus.LOCKED.value)  # LOCKED | ACTIVE | COMPLETE
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    gate_criteria_json: Mapped[str] = mapped_column(Text, default="[]")
    gate_satisfied: Mapped[bool] = mapped_column(Boolean, default=False)

    venture: Mapped[Venture] = relationship("Venture", back_populates="phases")


class PhaseConfig(Base):
    __tablename__ = "phase_config"

    phase_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    core_deliverable: Mapped[str] = mapped_column(Text, default="")
    guide_content: Mapped[str] = mapped_column(Text, default="")
    tool_recommendations_json: Mapped[str] = mapped_column(Text, default="[]")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)


class Artifact(Base):
    __tablename__ = "artifacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    venture_id: Mapped[str] = mapped_column(String(36), ForeignKey("ventures.id"), nullable=False)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    content_json: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    venture: Mapped[Venture] = relationship("Venture", back_populates="artifacts")
    versions: Mapped[list[ArtifactVersion]] = relationship(
        "ArtifactVersion", back_populates="artifact", order_by="ArtifactVersion.version",
        cascade="all, delete-orphan",
    )


class ArtifactVersion(Base):
    """Append-only archive of superseded artifact content."""

    __tablename__ = "artifact_versions"
    __table_args__ = (UniqueConstraint("artifact_id", "version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    artifact_id: Mapped[str] = mapped_column(String(36), ForeignKey("artifacts.id"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    artifact: Mapped[Artifact] = relationship("Artifact", back_populates="versions")


class Conversation(Base):
    __tablename__ = "ai_conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    venture_id: Mapped[str] = mapped_column(String(36), ForeignKey("ventures.id"), nullable=False)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    messages_json: Mapped[str] = mapped_column(Text, default="[]")  # legacy blob, capped
    system_prompt_hash: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (UniqueConstraint("conversation_id", "seq"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("ai_conversations.id"), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False)  # user | assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False)


class RateLimit(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (UniqueConstraint("entity_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # UTC YYYY-MM-DD
    used: Mapped[int] = mapped_column(Integer, default=0)
