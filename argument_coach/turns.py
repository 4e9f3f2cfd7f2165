"""
Coaching Turn Orchestration

One turn, in order: load the owned session and draft, consume quota, check
the rate limit, record the user's message, then stream the provider's reply
through the protocol handler. Only the terminal frame coerces and persists
the assistant message.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

from argument_coach import persistence
from argument_coach.agents.coach.agent import CoachPrompt, CoachProvider
from argument_coach.agents.coach.prompts import build_system_prompt
from argument_coach.coercion import CoercionContext, resolve_candidate
from argument_coach.errors import QuotaExceeded, RateLimited
from argument_coach.heuristics import (
    DEFAULT_LOCALE,
    is_explicit_rewrite_request,
    normalize_locale,
    validate_step,
)
from argument_coach.quota import (
    QuotaLedger,
    QuotaResult,
    RateLimiter,
    RateLimitResult,
    isoformat_utc,
)
from argument_coach.steps import Step, fields_by_step
from argument_coach.streaming import CoachStreamHandler

logger = logging.getLogger(__name__)

MAX_USER_INPUT_LENGTH = 5000
FILTERED = "[FILTERED]"

_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore (previous|all|above) instructions",
        r"you are now",
        r"new instructions:",
        r"system:",
        r"\[SYSTEM\]",
        r"\[INST\]",
        r"<\|im_start\|>",
        r"<\|im_end\|>",
    )
]


def sanitize_user_input(text: str) -> str:
    """Neutralize prompt-injection markers and cap the length."""
    sanitized = text or ""
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub(FILTERED, sanitized)
    return sanitized[:MAX_USER_INPUT_LENGTH]


@dataclass
class PreparedTurn:
    session_id: str
    step: Step
    context: CoercionContext
    prompt: CoachPrompt
    quota: QuotaResult
    rate: RateLimitResult

    def headers(self) -> Dict[str, str]:
        return {**self.quota.headers(), **self.rate.headers()}


class CoachTurn:
    """Runs coaching turns against a quota ledger, a rate limiter and a model provider."""

    def __init__(self, ledger: QuotaLedger, rate_limiter: RateLimiter, provider: CoachProvider):
        self.ledger = ledger
        self.rate_limiter = rate_limiter
        self.provider = provider

    async def prepare(
        self,
        user_id: str,
        session_id: str,
        message: str,
        role: Optional[str] = None,
        locale: str = DEFAULT_LOCALE,
        now: Optional[datetime] = None,
    ) -> PreparedTurn:
        """
        Everything up to the provider call. Raises NotFound, InvalidStepTransition,
        QuotaExceeded or RateLimited before any streaming starts.
        """
        locale = normalize_locale(locale)
        session, draft = await persistence.get_active_session_and_draft(user_id, session_id)

        quota = await self.ledger.consume(user_id, role, now)
        if not quota.allowed:
            raise QuotaExceeded(
                "Monthly coach quota reached",
                details={"used": quota.used, "limit": quota.limit, "resetAt": isoformat_utc(quota.reset_at)},
                headers=quota.headers(),
            )

        rate = await self.rate_limiter.check(user_id, now)
        if not rate.allowed:
            raise RateLimited(
                "Too many requests. Please wait before sending another message.",
                details={"retryAfter": rate.retry_after},
                headers={**quota.headers(), **rate.headers()},
            )

        step = Step(session.current_step)
        fields = fields_by_step(draft)
        draft_value = fields[step]

        # Computed before this message is stored
        had_user_message = await persistence.has_user_message_for_step(session_id, step)
        history = await persistence.get_recent_messages(session_id)

        context = CoercionContext(
            session_current_step=step,
            draft_field_value=draft_value,
            locale=locale,
            is_first_attempt_for_step=not draft_value.strip() and not had_user_message,
            is_explicit_rewrite_request=is_explicit_rewrite_request(message, locale),
            user_text_passes_heuristics=validate_step(step, message, locale),
        )

        await persistence.save_message(session_id, "user", message, step)

        prompt = CoachPrompt(
            system_prompt=build_system_prompt(step, fields, locale),
            user_message=sanitize_user_input(message),
            history=[(m.role, m.content) for m in history],
        )
        logger.info(
            "Turn for session %s at %s (first attempt: %s, rewrite: %s)",
            session_id, step.value, context.is_first_attempt_for_step,
            context.is_explicit_rewrite_request,
        )
        return PreparedTurn(
            session_id=session_id,
            step=step,
            context=context,
            prompt=prompt,
            quota=quota,
            rate=rate,
        )

    async def _finalize(self, turn: PreparedTurn, raw_text: str) -> Dict[str, Any]:
        result = resolve_candidate(raw_text, turn.context)
        message = await persistence.save_message(
            turn.session_id, "assistant", result.assistant_text, turn.step
        )
        result.assistant_message_id = message.id
        return result.to_wire()

    def stream(self, turn: PreparedTurn) -> AsyncIterator[str]:
        """NDJSON lines for the turn: display partials, then one terminal line."""

        async def finalize(raw_text: str) -> Dict[str, Any]:
            return await self._finalize(turn, raw_text)

        async def discard(payload: Dict[str, Any]) -> None:
            # The client never saw this reply
            await persistence.delete_message(payload["assistantMessageId"])

        handler = CoachStreamHandler(self.provider.stream(turn.prompt), finalize, discard)
        return handler.lines()
