from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from founderkit.config import get_settings
from founderkit.context import AppContext, build_context
from founderkit.errors import FounderKitError, QuotaExceeded
from founderkit.schemas import (
    ArtifactCreate,
    ArtifactOut,
    ArtifactUpdate,
    ArtifactVersionOut,
    ChatOut,
    ChatRequest,
    ConversationOut,
    DashboardOut,
    EnrichedPhaseOut,
    ForceUnlockRequest,
    GateCriterionOut,
    GateEvaluationOut,
    GateUpdate,
    GenerateOut,
    GenerateRequest,
    PhaseOut,
    ProfileUpdate,
    RateLimitOut,
    UserCreate,
    UserOut,
    VentureCreate,
    VentureOut,
    VentureUpdate,
)

log = logging.getLogger(__name__)


def create_app(ctx: AppContext | None = None) -> FastAPI:
    """Build the API. Without *ctx* the services are wired from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.ctx is None:
            app.state.ctx = build_context()
        yield

    app = FastAPI(
        title="founderkit",
        version="0.1.0",
        description=(
            "Venture workflow API: five gated phases, an AI copilot, and versioned artifacts. "
            "Callers identify themselves with the X-User-Id header."
        ),
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Users", "description": "Founder accounts and profiles."},
            {"name": "Ventures", "description": "Create, browse, and update ventures."},
            {"name": "Phases", "description": "Gate evaluation and phase progress."},
            {"name": "Artifacts", "description": "Versioned venture deliverables."},
            {"name": "Copilot", "description": "Chat and artifact generation. Debits the daily quota."},
        ],
    )
    app.state.ctx = ctx

    @app.exception_handler(FounderKitError)
    async def founderkit_error_handler(request: Request, exc: FounderKitError):
        headers = None
        if isinstance(exc, QuotaExceeded):
            headers = {"X-RateLimit-Reset": exc.resets_at.isoformat()}
        if exc.status >= 500:
            log.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status, content={"error": exc.to_dict()}, headers=headers)

    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def current_user(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    return x_user_id


def owned_venture(
    venture_id: str,
    user_id: str = Depends(current_user),
    ctx: AppContext = Depends(get_ctx),
) -> str:
    if ctx.ventures.venture_owner(venture_id) != user_id:
        raise HTTPException(403, "Venture belongs to another user")
    return venture_id


def _register_routes(app: FastAPI) -> None:

    # -----------------------------------------------------------------------
    # Routes: Users
    # -----------------------------------------------------------------------

    @app.post("/api/users", response_model=UserOut, status_code=201,
              tags=["Users"], summary="Create a founder account")
    async def create_user(body: UserCreate, ctx: AppContext = Depends(get_ctx)):
        data = body.model_dump(exclude_none=True)
        email = data.pop("email")
        return ctx.ventures.create_user(email, **data)

    @app.get("/api/users/me", response_model=UserOut, tags=["Users"], summary="Current user")
    async def get_me(user_id: str = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.get_user(user_id)

    @app.put("/api/users/me/profile", response_model=UserOut,
             tags=["Users"], summary="Update the onboarding profile")
    async def update_profile(body: ProfileUpdate, user_id: str = Depends(current_user),
                             ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.update_profile(user_id, **body.model_dump(exclude_none=True))

    # -----------------------------------------------------------------------
    # Routes: Ventures
    # -----------------------------------------------------------------------

    @app.get("/api/ventures", response_model=list[VentureOut],
             tags=["Ventures"], summary="List the caller's ventures")
    async def list_ventures(user_id: str = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.list_ventures(user_id)

    @app.post("/api/ventures", response_model=VentureOut, status_code=201,
              tags=["Ventures"], summary="Create a venture with its five phases")
    async def create_venture(body: VentureCreate, user_id: str = Depends(current_user),
                             ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.create_venture(user_id, body.name)

    @app.get("/api/ventures/{venture_id}", response_model=VentureOut,
             tags=["Ventures"], summary="Get a venture")
    async def get_venture(venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.get_venture(venture_id)

    @app.put("/api/ventures/{venture_id}", response_model=VentureOut,
             tags=["Ventures"], summary="Partially update venture fields")
    async def update_venture(body: VentureUpdate, venture_id: str = Depends(owned_venture),
                             ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.update_venture(venture_id, body.model_dump(exclude_unset=True))

    @app.get("/api/ventures/{venture_id}/dashboard", response_model=DashboardOut,
             tags=["Ventures"], summary="Progress summary for a venture")
    async def get_dashboard(venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.get_dashboard(venture_id)

    # -----------------------------------------------------------------------
    # Routes: Phases
    # -----------------------------------------------------------------------

    @app.get("/api/ventures/{venture_id}/phases", response_model=list[EnrichedPhaseOut],
             tags=["Phases"], summary="Phases with guide content")
    async def get_phases(venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.phases.get_enriched_phases(venture_id)

    @app.post("/api/ventures/{venture_id}/phases/{phase_number}/evaluate",
              response_model=GateEvaluationOut, response_model_exclude_none=True,
              tags=["Phases"], summary="Re-evaluate a phase's gates and advance if they pass")
    async def evaluate_gate(phase_number: int, venture_id: str = Depends(owned_venture),
                            ctx: AppContext = Depends(get_ctx)):
        return ctx.phases.evaluate_gate(venture_id, phase_number).to_dict()

    @app.put("/api/ventures/{venture_id}/phases/{phase_number}/gates/{key}",
             response_model=list[GateCriterionOut],
             tags=["Phases"], summary="Record a self-reported gate")
    async def update_gate(phase_number: int, key: str, body: GateUpdate,
                          venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.phases.update_gate_criterion(venture_id, phase_number, key, body.satisfied)

    @app.post("/api/ventures/{venture_id}/phases/{phase_number}/force-unlock", response_model=PhaseOut,
              tags=["Phases"], summary="Unlock a locked phase without passing the previous gate")
    async def force_unlock(phase_number: int, body: ForceUnlockRequest,
                           venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.phases.force_unlock(venture_id, phase_number, body.reason)

    # -----------------------------------------------------------------------
    # Routes: Artifacts
    # -----------------------------------------------------------------------

    @app.get("/api/ventures/{venture_id}/artifacts", response_model=list[ArtifactOut],
             tags=["Artifacts"], summary="List artifacts, optionally by phase or type")
    async def list_artifacts(
        phase: int | None = Query(None, ge=1, le=5),
        artifact_type: str | None = Query(None, alias="type", description="Artifact type, e.g. BUSINESS_PLAN"),
        venture_id: str = Depends(owned_venture),
        ctx: AppContext = Depends(get_ctx),
    ):
        return ctx.ventures.list_artifacts(venture_id, phase, artifact_type)

    @app.post("/api/ventures/{venture_id}/artifacts", response_model=ArtifactOut, status_code=201,
              tags=["Artifacts"], summary="Create an artifact")
    async def create_artifact(body: ArtifactCreate, venture_id: str = Depends(owned_venture),
                              ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.create_artifact(venture_id, body.phase_number, body.type, body.content)

    @app.put("/api/ventures/{venture_id}/artifacts/{artifact_id}", response_model=ArtifactOut,
             tags=["Artifacts"], summary="Replace artifact content (archives the previous version)")
    async def update_artifact(artifact_id: str, body: ArtifactUpdate,
                              venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.update_artifact(venture_id, artifact_id, body.content)

    @app.get("/api/ventures/{venture_id}/artifacts/{artifact_id}/versions",
             response_model=list[ArtifactVersionOut],
             tags=["Artifacts"], summary="Archived versions of an artifact")
    async def list_artifact_versions(artifact_id: str, venture_id: str = Depends(owned_venture),
                                     ctx: AppContext = Depends(get_ctx)):
        return ctx.ventures.list_artifact_versions(venture_id, artifact_id)

    # -----------------------------------------------------------------------
    # Routes: Copilot
    # -----------------------------------------------------------------------

    @app.post("/api/ventures/{venture_id}/chat", response_model=ChatOut,
              tags=["Copilot"], summary="Chat with the copilot (1 unit)")
    async def chat(body: ChatRequest, venture_id: str = Depends(owned_venture),
                   ctx: AppContext = Depends(get_ctx)):
        return await ctx.copilot.chat(venture_id, body.phase_number, body.message, body.conversation_id)

    @app.post("/api/ventures/{venture_id}/generate", response_model=GenerateOut, status_code=201,
              tags=["Copilot"], summary="Generate an artifact (3 units)")
    async def generate(body: GenerateRequest, venture_id: str = Depends(owned_venture),
                       ctx: AppContext = Depends(get_ctx)):
        return await ctx.copilot.generate_artifact(venture_id, body.phase_number, body.type)

    @app.get("/api/ventures/{venture_id}/chat/history", response_model=list[ConversationOut],
             tags=["Copilot"], summary="Conversations, newest first")
    async def chat_history(phase: int | None = Query(None, ge=1, le=5),
                           venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.copilot.get_chat_history(venture_id, phase)

    @app.get("/api/ventures/{venture_id}/rate-limit", response_model=RateLimitOut,
             tags=["Copilot"], summary="Today's quota usage")
    async def rate_limit(venture_id: str = Depends(owned_venture), ctx: AppContext = Depends(get_ctx)):
        return ctx.copilot.get_rate_limit(venture_id)

    @app.get("/api/health", summary="Liveness and LLM mode")
    async def health(ctx: AppContext = Depends(get_ctx)):
        return {"ok": True, "llm_mode": "mock" if ctx.llm.mock else "live"}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("founderkit.app:create_app", factory=True, host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
