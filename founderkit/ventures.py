"""Users, ventures, phase rows and artifacts."""
from __future__ import annotations

import json
import logging
import math
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from founderkit.db import Store
from founderkit.errors import (
    ArtifactNotFound, InvalidArtifactType, UserNotFound, ValidationFailed,
    VentureLimitReached, VentureNotFound,
)
from founderkit.gates import PHASE_COUNT, GateSet
from founderkit.models import (
    Artifact, ArtifactType, ArtifactVersion, BusinessType, EntityType, PhaseProgress,
    PhaseStatus, User, Venture,
)
from founderkit.quota import QuotaLedger
from founderkit.services import (
    USER_PROFILE_FIELDS, VENTURE_TEXT_FIELDS, VENTURE_UPDATABLE_FIELDS, apply_updates,
    artifact_dict, artifact_version_dict, phase_dict, user_dict, venture_dict,
)

log = logging.getLogger(__name__)

ARTIFACT_UPDATE_ATTEMPTS = 3


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def validate_phase_number(phase_number: int) -> None:
    if not 1 <= phase_number <= PHASE_COUNT:
        raise ValidationFailed(f"Phase number must be between 1 and {PHASE_COUNT}, got {phase_number}")


def load_venture(session: Session, venture_id: str) -> Venture:
    venture = session.get(Venture, venture_id)
    if venture is None:
        raise VentureNotFound(venture_id)
    return venture


def load_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise UserNotFound(user_id)
    return user


def load_artifacts(
    session: Session,
    venture_id: str,
    phase_number: int | None = None,
    artifact_type: str | None = None,
) -> list[Artifact]:
    stmt = select(Artifact).where(Artifact.venture_id == venture_id)
    if phase_number is not None:
        stmt = stmt.where(Artifact.phase_number == phase_number)
    if artifact_type is not None:
        stmt = stmt.where(Artifact.type == artifact_type)
    stmt = stmt.order_by(Artifact.phase_number, Artifact.created_at)
    return list(session.execute(stmt).scalars().all())


class VentureService:
    def __init__(self, store: Store, quota: QuotaLedger | None = None, max_ventures: int = 10):
        self.store = store
        self.quota = quota
        self.max_ventures = max_ventures

    # -- Users ------------------------------------------------------------

    def create_user(self, email: str, **profile: Any) -> dict:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationFailed(f"Invalid email address: {email!r}")
        with self.store.session() as session:
            if session.execute(select(User.id).where(User.email == email)).scalar_one_or_none():
                raise ValidationFailed(f"User with email {email} already exists")
            user = User(email=email)
            self._apply_profile(user, profile)
            session.add(user)
            session.commit()
            log.info("Created user %s", user.id)
            return user_dict(user)

    def get_user(self, user_id: str) -> dict:
        with self.store.session() as session:
            return user_dict(load_user(session, user_id))

    def update_profile(self, user_id: str, **profile: Any) -> dict:
        with self.store.session() as session:
            user = load_user(session, user_id)
            self._apply_profile(user, profile)
            session.commit()
            return user_dict(user)

    @staticmethod
    def _apply_profile(user: User, profile: dict[str, Any]) -> None:
        unknown = set(profile) - set(USER_PROFILE_FIELDS)
        if unknown:
            raise ValidationFailed(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        level = profile.get("experience_level")
        if level is not None and not 1 <= int(level) <= 10:
            raise ValidationFailed("experience_level must be between 1 and 10")
        business_type = profile.get("business_type")
        if business_type is not None and business_type not in BusinessType.__members__:
            raise ValidationFailed(
                f"business_type must be one of: {', '.join(BusinessType.__members__)}"
            )
        for key in ("budget", "income_goal", "weekly_hours"):
            val = profile.get(key)
            if val is not None and int(val) < 0:
                raise ValidationFailed(f"{key} must not be negative")
        apply_updates(user, profile, USER_PROFILE_FIELDS)

    # -- Ventures ---------------------------------------------------------

    def create_venture(self, user_id: str, name: str = "") -> dict:
        """Create a venture with its five phase rows; phase 1 starts active."""
        with self.store.session() as session:
            load_user(session, user_id)
            count = session.execute(
                select(func.count(Venture.id)).where(Venture.user_id == user_id)
            ).scalar() or 0
            if count >= self.max_ventures:
                raise VentureLimitReached(self.max_ventures)

            venture = Venture(user_id=user_id, name=(name or "").strip())
            session.add(venture)
            session.flush()
            now = datetime.now(UTC)
            for number in range(1, PHASE_COUNT + 1):
                session.add(PhaseProgress(
                    venture_id=venture.id,
                    phase_number=number,
                    status=PhaseStatus.ACTIVE if number == 1 else PhaseStatus.LOCKED,
                    started_at=now if number == 1 else None,
                    gate_criteria_json=GateSet.seed(number).to_json(),
                    gate_satisfied=False,
                ))
            session.commit()
            log.info("Created venture %s for user %s", venture.id, user_id)
            return venture_dict(venture)

    def get_venture(self, venture_id: str) -> dict:
        with self.store.session() as session:
            return venture_dict(load_venture(session, venture_id))

    def venture_owner(self, venture_id: str) -> str:
        with self.store.session() as session:
            owner = session.execute(
                select(Venture.user_id).where(Venture.id == venture_id)
            ).scalar_one_or_none()
            if owner is None:
                raise VentureNotFound(venture_id)
            return owner

    def list_ventures(self, user_id: str) -> list[dict]:
        with self.store.session() as session:
            load_user(session, user_id)
            ventures = session.execute(
                select(Venture).where(Venture.user_id == user_id).order_by(Venture.created_at.desc())
            ).scalars().all()
            return [venture_dict(v) for v in ventures]

    def update_venture(self, venture_id: str, updates: dict[str, Any]) -> dict:
        """Partial update through the field allowlist. ``None`` values are ignored."""
        unknown = set(updates) - set(VENTURE_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationFailed(f"Unknown venture fields: {', '.join(sorted(unknown))}")
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            text_updates = {k: v for k, v in updates.items() if k in VENTURE_TEXT_FIELDS}
            for key, val in text_updates.items():
                if val is not None and not isinstance(val, str):
                    raise ValidationFailed(f"{key} must be a string")
            apply_updates(venture, text_updates, VENTURE_TEXT_FIELDS)

            costs = updates.get("estimated_costs")
            if costs is not None:
                if not isinstance(costs, dict):
                    raise ValidationFailed("estimated_costs must be an object with startup and monthly")
                venture.estimated_costs_json = json.dumps(
                    {"startup": costs.get("startup", 0), "monthly": costs.get("monthly", 0)}
                )
            entity_type = updates.get("entity_type")
            if entity_type is not None:
                if entity_type not in EntityType.__members__:
                    raise ValidationFailed(
                        f"entity_type must be one of: {', '.join(EntityType.__members__)}"
                    )
                venture.entity_type = entity_type
            if updates.get("entity_state") is not None:
                venture.entity_state = str(updates["entity_state"])
            for flag in ("ein_obtained", "bank_account_opened"):
                if updates.get(flag) is not None:
                    setattr(venture, flag, bool(updates[flag]))
            session.commit()
            return venture_dict(venture)

    # -- Phases -----------------------------------------------------------

    def get_phases(self, venture_id: str) -> list[dict]:
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            return [phase_dict(p) for p in venture.phases]

    # -- Artifacts --------------------------------------------------------

    def list_artifacts(
        self, venture_id: str, phase_number: int | None = None, artifact_type: str | None = None,
    ) -> list[dict]:
        with self.store.session() as session:
            load_venture(session, venture_id)
            return [artifact_dict(a) for a in load_artifacts(session, venture_id, phase_number, artifact_type)]

    def create_artifact(
        self, venture_id: str, phase_number: int, artifact_type: str, content: Any,
    ) -> dict:
        if artifact_type not in ArtifactType.__members__:
            raise InvalidArtifactType(artifact_type, list(ArtifactType.__members__))
        validate_phase_number(phase_number)
        if not isinstance(content, (dict, list)):
            raise ValidationFailed("Artifact content must be a JSON object or list")
        with self.store.session() as session:
            load_venture(session, venture_id)
            artifact = Artifact(
                venture_id=venture_id,
                phase_number=phase_number,
                type=artifact_type,
                content_json=json.dumps(content),
                version=1,
            )
            session.add(artifact)
            session.commit()
            log.info("Created %s artifact %s for venture %s", artifact_type, artifact.id, venture_id)
            return artifact_dict(artifact)

    def update_artifact(self, venture_id: str, artifact_id: str, content: Any) -> dict:
        """Replace artifact content, archiving the previous content as a version."""
        if not isinstance(content, (dict, list)):
            raise ValidationFailed("Artifact content must be a JSON object or list")
        new_json = json.dumps(content)
        for _ in range(ARTIFACT_UPDATE_ATTEMPTS):
            with self.store.session() as session:
                artifact = session.execute(
                    select(Artifact).where(Artifact.id == artifact_id, Artifact.venture_id == venture_id)
                ).scalar_one_or_none()
                if artifact is None:
                    raise ArtifactNotFound(artifact_id)
                old_version, old_json = artifact.version, artifact.content_json

                changed = session.execute(
                    update(Artifact)
                    .where(Artifact.id == artifact_id, Artifact.version == old_version)
                    .values(content_json=new_json, version=old_version + 1)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if not changed:
                    session.rollback()
                    log.info("Artifact %s changed underneath update, retrying", artifact_id)
                    continue
                session.add(ArtifactVersion(
                    artifact_id=artifact_id, version=old_version, content_json=old_json,
                ))
                session.commit()
                session.refresh(artifact)
                return artifact_dict(artifact)
        raise ValidationFailed(f"Artifact {artifact_id} is being modified concurrently, try again")

    def list_artifact_versions(self, venture_id: str, artifact_id: str) -> list[dict]:
        with self.store.session() as session:
            artifact = session.execute(
                select(Artifact).where(Artifact.id == artifact_id, Artifact.venture_id == venture_id)
            ).scalar_one_or_none()
            if artifact is None:
                raise ArtifactNotFound(artifact_id)
            return [artifact_version_dict(v) for v in artifact.versions]

    # -- Dashboard --------------------------------------------------------

    def get_dashboard(self, venture_id: str) -> dict:
        with self.store.session() as session:
            venture = load_venture(session, venture_id)
            phases = list(venture.phases)
            artifact_count = session.execute(
                select(func.count(Artifact.id)).where(Artifact.venture_id == venture_id)
            ).scalar() or 0

            active = [p for p in phases if p.status == PhaseStatus.ACTIVE]
            current = min(active, key=lambda p: p.phase_number) if active else None
            gate_progress = None
            if current is not None:
                gates = GateSet.from_json(current.gate_criteria_json)
                gate_progress = {
                    "satisfied": len(gates.satisfied()),
                    "total": len(gates),
                    "missing": [g.label for g in gates.missing()],
                }
            elapsed = datetime.now(UTC) - _as_utc(venture.created_at)
            days_active = max(1, math.ceil(elapsed.total_seconds() / 86400))

            result = {
                "venture": venture_dict(venture),
                "current_phase": current.phase_number if current else None,
                "phases_completed": sum(1 for p in phases if p.status == PhaseStatus.COMPLETE),
                "gate_progress": gate_progress,
                "phases": [phase_dict(p) for p in phases],
                "artifact_count": artifact_count,
                "days_active": days_active,
            }
        if self.quota is not None:
            result["rate_limit"] = self.quota.status(venture_id).to_dict()
        return result
