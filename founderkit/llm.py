"""LLM gateway: one async ``complete()`` over Anthropic or OpenAI, with a mock mode.

Requests name a *tier* instead of a model:

- ``chat`` routes to the fast, cheap model
- ``generation`` routes to the higher quality model used for artifacts

Without a credential the gateway answers deterministically so the whole
service runs offline.  Live calls are retried on transient failures with an
exponential backoff and a fixed per-attempt timeout; authentication and
bad-request failures surface immediately as ``LlmAuthError`` and
``LlmRequestRejected``.  The SDKs' own retries are disabled; ``RetryPolicy``
owns every attempt.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import anthropic
import httpx
import openai

from founderkit.config import Settings, get_settings
from founderkit.errors import LlmAuthError, LlmRequestRejected, LlmUnavailable
from founderkit.prompts import JSON_ONLY_INSTRUCTION, estimate_tokens

log = logging.getLogger(__name__)

CHAT = "chat"
GENERATION = "generation"
TIERS = (CHAT, GENERATION)

DEFAULT_MODELS: dict[str, dict[str, str]] = {
    "anthropic": {CHAT: "claude-haiku-4-5-20251001", GENERATION: "claude-sonnet-4-5-20250929"},
    "openai": {CHAT: "gpt-4o-mini", GENERATION: "gpt-4o"},
}

_AUTH_ERRORS = (
    anthropic.AuthenticationError,
    anthropic.PermissionDeniedError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
)
_BAD_REQUEST_ERRORS = (anthropic.BadRequestError, openai.BadRequestError)
_NON_RETRYABLE = _AUTH_ERRORS + _BAD_REQUEST_ERRORS


def _default_is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, _NON_RETRYABLE)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    is_retryable: Callable[[BaseException], bool] = _default_is_retryable

    def delay(self, attempt: int) -> float:
        """Backoff before retrying after failed *attempt* (0-based)."""
        return self.base_delay * (self.factor ** attempt)


@dataclass
class CompletionRequest:
    system_prompt: str
    messages: list[dict] = field(default_factory=list)
    tier: str = CHAT
    max_tokens: int = 1024


@dataclass
class CompletionResult:
    content: str
    tokens_used: int
    model: str
    mock: bool = False


class LLMGateway:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str = "anthropic",
        api_key: str | None = None,
        base_url: str | None = None,
        chat_model: str = "",
        generation_model: str = "",
        timeout: float = 30.0,
        retry: RetryPolicy | None = None,
        client: Any = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self._api_key = api_key
        self._base_url = base_url
        self._http_client = http_client
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        family = "anthropic" if provider == "anthropic" else "openai"
        self.models = {
            CHAT: chat_model or DEFAULT_MODELS[family][CHAT],
            GENERATION: generation_model or DEFAULT_MODELS[family][GENERATION],
        }
        self._client: Any = client
        if self._client is None and api_key:
            self._init_client()
        if self.mock:
            log.info("No LLM credential configured, using mock mode")
        else:
            log.info("LLM gateway live with provider %s", provider)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> LLMGateway:
        s = settings or get_settings()
        return cls(
            provider=s.llm_provider,
            api_key=s.llm_api_key,
            base_url=s.openai_base_url,
            chat_model=s.llm_chat_model,
            generation_model=s.llm_generation_model,
            timeout=s.llm_timeout_seconds,
            retry=RetryPolicy(max_attempts=s.llm_max_retries + 1, base_delay=s.llm_backoff_seconds),
            **kwargs,
        )

    def _init_client(self) -> None:
        kwargs: dict[str, Any] = {"api_key": self._api_key, "max_retries": 0}
        if self._http_client is not None:
            kwargs["http_client"] = self._http_client
        if self.provider == "anthropic":
            self._client = anthropic.AsyncAnthropic(**kwargs)
        elif self.provider in ("openai", "openai_compatible"):
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    @property
    def mock(self) -> bool:
        return self._client is None

    def model_for(self, tier: str) -> str:
        if tier not in TIERS:
            raise ValueError(f"Unknown model tier: {tier!r}")
        return self.models[tier]

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        model = self.model_for(request.tier)
        if self.mock:
            return _mock_complete(request)

        last_exc: BaseException | None = None
        for attempt in range(self.retry.max_attempts):
            try:
                content, tokens = await asyncio.wait_for(
                    self._call(model, request), timeout=self.timeout,
                )
                return CompletionResult(content=content, tokens_used=tokens, model=model)
            except Exception as exc:
                if not self.retry.is_retryable(exc):
                    if isinstance(exc, _AUTH_ERRORS):
                        raise LlmAuthError(f"LLM credential rejected: {exc}") from exc
                    raise LlmRequestRejected(f"LLM request rejected: {exc}") from exc
                last_exc = exc
                if attempt + 1 < self.retry.max_attempts:
                    delay = self.retry.delay(attempt)
                    log.warning(
                        "LLM call failed (attempt %d/%d), retrying in %.1fs: %s",
                        attempt + 1, self.retry.max_attempts, delay, exc,
                    )
                    await self._sleep(delay)
        raise LlmUnavailable(f"LLM unavailable after {self.retry.max_attempts} attempts: {last_exc}")

    async def _call(self, model: str, request: CompletionRequest) -> tuple[str, int]:
        if self.provider == "anthropic":
            response = await self._client.messages.create(
                model=model,
                max_tokens=request.max_tokens,
                system=request.system_prompt,
                messages=[{"role": m["role"], "content": m["content"]} for m in request.messages],
            )
            text = "".join(
                block.text for block in response.content if getattr(block, "type", "text") == "text"
            )
            usage = response.usage
            return text, (usage.input_tokens or 0) + (usage.output_tokens or 0)

        response = await self._client.chat.completions.create(
            model=model,
            max_tokens=request.max_tokens,
            messages=[{"role": "system", "content": request.system_prompt}]
            + [{"role": m["role"], "content": m["content"]} for m in request.messages],
        )
        text = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0
        return text, tokens


# ---------------------------------------------------------------------------
# Mock mode
# ---------------------------------------------------------------------------

_PHASE_RE = re.compile(r"Phase (\d): (\w+)")
_REMAINING_GATE_RE = re.compile(r"☐ (.+)")


def _mock_complete(request: CompletionRequest) -> CompletionResult:
    if JSON_ONLY_INSTRUCTION in request.system_prompt:
        content = _mock_artifact(request.system_prompt)
    else:
        content = _mock_chat(request.messages, request.system_prompt)
    tokens = estimate_tokens(content) + estimate_tokens(request.system_prompt)
    return CompletionResult(content=content, tokens_used=tokens, model=f"mock-{request.tier}", mock=True)


def _mock_chat(messages: list[dict], system_prompt: str) -> str:
    m = _PHASE_RE.search(system_prompt)
    phase_num, phase_name = (m.group(1), m.group(2)) if m else ("?", "your current phase")
    remaining = [g.strip() for g in _REMAINING_GATE_RE.findall(system_prompt)]
    last = messages[-1]["content"] if messages else ""
    if remaining:
        return (
            f"You're in Phase {phase_num} ({phase_name}). Based on your question about "
            f"\"{last[:50]}\", I'd recommend focusing on: \"{remaining[0]}\". This is your most "
            "impactful next step. Would you like specific guidance on how to approach it?"
        )
    return (
        f"Great progress in Phase {phase_num} ({phase_name})! All your gates look satisfied. "
        "You're ready to move forward. What would you like to work on next?"
    )


_MOCK_ARTIFACTS: list[tuple[str, dict]] = [
    ("1-page business plan", {
        "problem": "Small business owners spend 5+ hours a week on manual bookkeeping.",
        "solution": "Bookkeeping that categorizes transactions and prepares reports automatically.",
        "target_customer": "Freelancers and businesses under 10 employees still on spreadsheets.",
        "value_proposition": "Save 5 hours a week with tax-ready records at a fraction of accountant cost.",
        "revenue_model": "Subscription: $29/mo standard, $79/mo with accountant review.",
        "distribution_channels": ["Content marketing", "Freelancer communities", "Partnerships"],
        "cost_structure": {"startup": 500, "monthly_hosting": 50, "monthly_marketing": 200},
        "competitive_advantage": "Automation plus human review at a price non-accountants can afford.",
        "key_metrics": ["MRR", "CAC", "Hours saved per user", "Churn rate"],
        "next_steps": ["Launch landing page", "Run 5 customer interviews", "Build categorization MVP"],
    }),
    ("offer statement as a JSON object", {
        "headline": "Stop Drowning in Receipts. Start Running Your Business.",
        "for_who": "Freelancers and small business owners who dread bookkeeping.",
        "problem": "Manual bookkeeping eats hours every week and misses deductions.",
        "solution": "Automatic categorization, expense tracking and tax-ready reports.",
        "transformation": "Reclaim 5 hours a week and never miss a deduction.",
        "price_point": "$29/mo standard, $79/mo with quarterly review.",
        "guarantee": "30-day free trial, cancel anytime.",
        "social_proof_strategy": "Give 5-10 beta users free access in exchange for testimonials.",
    }),
    ("go-to-market plan", {
        "primary_channel": "Content marketing around freelance bookkeeping keywords.",
        "first_10_customers": "Personal outreach to 50 freelancers with a free 60-day beta.",
        "messaging": {"freelancers": "Stop losing money to bad bookkeeping.", "small_biz": "Books done automatically."},
        "launch_timeline": {"week_1": "Landing page live", "week_2": "10 outreach messages", "week_3": "Onboard beta users", "week_4": "Iterate and widen launch"},
        "budget_allocation": {"landing_page": 100, "content": 50, "paid_social": 200, "reserve": 100},
        "metrics": ["Email list growth", "Beta activation rate", "Weekly active users"],
        "contingency": "If content stalls after 4 weeks, switch to direct community outreach.",
    }),
    ("90-day growth plan", {
        "current_state": "Early stage with first paying customers.",
        "goals": [
            {"metric": "MRR", "current": 290, "target": 2000, "weekly_actions": ["2 content pieces", "10 outreach emails"]},
            {"metric": "Active users", "current": 10, "target": 75, "weekly_actions": ["Onboard 5 trials", "Improve onboarding"]},
            {"metric": "Churn %", "current": 15, "target": 5, "weekly_actions": ["2 churn interviews"]},
        ],
        "systems_to_build": ["Automated onboarding", "Weekly KPI dashboard", "Monthly feedback loop"],
        "ai_integrations": ["Draft posts from customer questions", "Support assistant", "Smarter categorization"],
        "weekly_review_checklist": ["MRR", "Signups vs churn", "Feedback", "Content calendar", "Ad ROI"],
        "monthly_milestones": {"month_1": "50 users", "month_2": "75 users", "month_3": "100 users"},
        "risks": [
            {"risk": "Slow content traction", "mitigation": "Small paid test"},
            {"risk": "High churn", "mitigation": "Weekly user interviews"},
            {"risk": "Rising AI cost", "mitigation": "Cache common queries"},
        ],
    }),
]

_MOCK_GENERIC_ARTIFACT = {
    "title": "Generated Artifact",
    "summary": "Artifact based on your venture details.",
    "sections": [
        {"heading": "Overview", "content": "A structured deliverable for your current phase."},
        {"heading": "Key Actions", "content": "Focus on the 3 most impactful steps."},
    ],
}


def _mock_artifact(system_prompt: str) -> str:
    for marker, payload in _MOCK_ARTIFACTS:
        if marker in system_prompt:
            return json.dumps(payload)
    return json.dumps(_MOCK_GENERIC_ARTIFACT)
