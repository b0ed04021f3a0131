"""Typed business failures raised by the founderkit services.

Each error carries a stable ``code`` and the HTTP ``status`` the API layer
maps it to.  Expected outcomes (not found, locked phase, exhausted quota)
are raised as these types so callers can tell them apart; anything else is
a bug and propagates untouched.
"""
from __future__ import annotations

from datetime import datetime


class FounderKitError(Exception):
    code = "INTERNAL"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFound(FounderKitError):
    code = "NOT_FOUND"
    status = 404


class VentureNotFound(NotFound):
    def __init__(self, venture_id: str):
        super().__init__(f"Venture {venture_id} not found")


class UserNotFound(NotFound):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")


class PhaseNotFound(NotFound):
    def __init__(self, venture_id: str, phase_number: int):
        super().__init__(f"Phase {phase_number} not found for venture {venture_id}")


class GateNotFound(NotFound):
    def __init__(self, key: str, phase_number: int):
        super().__init__(f"Gate '{key}' not found in phase {phase_number}")


class ArtifactNotFound(NotFound):
    def __init__(self, artifact_id: str):
        super().__init__(f"Artifact {artifact_id} not found")


class ConversationNotFound(NotFound):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")


# ---------------------------------------------------------------------------
# Business rule violations
# ---------------------------------------------------------------------------


class PhaseLocked(FounderKitError):
    code = "PHASE_LOCKED"
    status = 409

    def __init__(self, phase_number: int):
        super().__init__(f"Cannot evaluate gate for locked phase {phase_number}")
        self.phase_number = phase_number


class QuotaExceeded(FounderKitError):
    code = "RATE_LIMITED"
    status = 429

    def __init__(self, entity_id: str, limit: int, resets_at: datetime):
        super().__init__(f"Daily limit of {limit} messages reached, resets at {resets_at.isoformat()}")
        self.entity_id = entity_id
        self.limit = limit
        self.resets_at = resets_at

    def to_dict(self) -> dict:
        return {**super().to_dict(), "resets_at": self.resets_at.isoformat()}


class InvalidArtifactType(FounderKitError):
    code = "INVALID_ARTIFACT_TYPE"
    status = 400

    def __init__(self, artifact_type: str, allowed: list[str] | tuple[str, ...]):
        super().__init__(f"Invalid artifact type {artifact_type!r}. Must be one of: {', '.join(allowed)}")
        self.artifact_type = artifact_type


class ValidationFailed(FounderKitError):
    code = "VALIDATION_ERROR"
    status = 400


class VentureLimitReached(FounderKitError):
    code = "VENTURE_LIMIT"
    status = 409

    def __init__(self, limit: int):
        super().__init__(f"Maximum {limit} ventures per user")


# ---------------------------------------------------------------------------
# LLM backend
# ---------------------------------------------------------------------------


class LlmUnavailable(FounderKitError):
    code = "LLM_UNAVAILABLE"
    status = 503


class LlmAuthError(FounderKitError):
    code = "LLM_AUTH_ERROR"
    status = 502


class LlmRequestRejected(FounderKitError):
    code = "LLM_BAD_REQUEST"
    status = 502
