"""
Shared FastAPI dependencies: caller identity, locale and the coach services
stored on `app.state` at startup.
"""

from typing import Optional

from fastapi import Header, Request

from argument_coach.errors import RateLimited
from argument_coach.heuristics import normalize_locale
from argument_coach.quota import QuotaLedger, RateLimiter, RateLimitResult
from argument_coach.turns import CoachTurn


# --- Temporary: identity from headers (authentication lives in front of this service) ---

def get_current_user_id(user_id: str = Header(..., alias="user-id", description="Authenticated user id")) -> str:
    """Returns the user ID passed in the header."""
    return user_id


def get_current_user_role(user_role: Optional[str] = Header(None, alias="user-role")) -> Optional[str]:
    return user_role


def get_locale(accept_language: Optional[str] = Header(None, alias="accept-language")) -> str:
    return normalize_locale(accept_language)


def get_coach_turn(request: Request) -> CoachTurn:
    return request.app.state.coach_turn


def get_quota_ledger(request: Request) -> QuotaLedger:
    return request.app.state.quota_ledger


def get_rate_limiters(request: Request) -> dict:
    return request.app.state.rate_limiters


async def enforce_rate_limit(limiter: RateLimiter, user_id: str) -> RateLimitResult:
    """Check a limiter and raise RateLimited (with headers) when denied."""
    result = await limiter.check(user_id)
    if not result.allowed:
        raise RateLimited(
            "Too many requests. Please wait before trying again.",
            details={"retryAfter": result.retry_after},
            headers=result.headers(),
        )
    return result
