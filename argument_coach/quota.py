"""
Quota Ledger and Rate Limiter

Monthly per-user quota (UTC calendar months, hard cap, privileged roles exempt)
and a fixed-window rate limiter, both on top of a CounterStore.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

from argument_coach.counters import CounterStore, InMemoryCounterStore

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_QUOTA = 200


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def utc_month_key(now: Optional[datetime] = None) -> str:
    """"YYYY-MM" for the UTC month containing `now`."""
    now = _as_utc(now)
    return f"{now.year:04d}-{now.month:02d}"


def utc_month_reset_at(now: Optional[datetime] = None) -> datetime:
    """First instant (00:00 UTC on the 1st) of the month after `now`."""
    now = _as_utc(now)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def isoformat_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class QuotaResult:
    allowed: bool
    used: int
    limit: Optional[int]  # None means unlimited
    remaining: Optional[int]  # None means unlimited
    reset_at: datetime
    is_unlimited: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "resetAt": isoformat_utc(self.reset_at),
            "isUnlimited": self.is_unlimited,
        }

    def headers(self) -> Dict[str, str]:
        return {
            "X-Coach-Quota-Limit": "unlimited" if self.is_unlimited else str(self.limit),
            "X-Coach-Quota-Remaining": "unlimited" if self.is_unlimited else str(self.remaining),
            "X-Coach-Quota-Used": str(self.used),
            "X-Coach-Quota-Reset": isoformat_utc(self.reset_at),
        }


class QuotaLedger:
    """
    Per-user, per-UTC-month usage cap.

    `consume` is a single atomic increment-if-below on the counter store, so
    N concurrent callers against a limit L yield exactly min(N, L) allowances.
    """

    def __init__(
        self,
        store: CounterStore,
        monthly_limit: int = DEFAULT_MONTHLY_QUOTA,
        unlimited_roles: Iterable[str] = ("administrator",),
    ):
        self.store = store
        self.monthly_limit = monthly_limit
        self.unlimited_roles = {role.lower() for role in unlimited_roles}

    def limit_for_role(self, role: Optional[str]) -> Optional[int]:
        """None for privileged roles, the monthly cap for everyone else."""
        if role and role.lower() in self.unlimited_roles:
            return None
        return self.monthly_limit

    @staticmethod
    def _unlimited(reset_at: datetime) -> QuotaResult:
        return QuotaResult(
            allowed=True, used=0, limit=None, remaining=None, reset_at=reset_at, is_unlimited=True
        )

    async def consume(self, user_id: str, role: Optional[str] = None, now: Optional[datetime] = None) -> QuotaResult:
        """Atomically spend one unit of this month's quota."""
        reset_at = utc_month_reset_at(now)
        limit = self.limit_for_role(role)
        if limit is None:
            return self._unlimited(reset_at)

        counter = await self.store.increment_if_below(user_id, utc_month_key(now), limit)
        if not counter.allowed:
            logger.warning("Monthly quota exhausted for user %s (%d/%d)", user_id, counter.used, limit)

        return QuotaResult(
            allowed=counter.allowed,
            used=counter.used,
            limit=limit,
            remaining=max(0, limit - counter.used),
            reset_at=reset_at,
            is_unlimited=False,
        )

    async def status(self, user_id: str, role: Optional[str] = None, now: Optional[datetime] = None) -> QuotaResult:
        """Read-only view of this month's usage."""
        reset_at = utc_month_reset_at(now)
        limit = self.limit_for_role(role)
        if limit is None:
            return self._unlimited(reset_at)

        used = await self.store.current(user_id, utc_month_key(now))
        remaining = max(0, limit - used)
        return QuotaResult(
            allowed=remaining > 0,
            used=used,
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            is_unlimited=False,
        )


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": isoformat_utc(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """
    Fixed-window limiter: at most `max_requests` per `window_seconds` per user.

    Windows are aligned to the epoch; each window is its own counter keyed
    "rate:<scope>:<window-index>".
    """

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        max_requests: int = 20,
        window_seconds: int = 60,
        scope: str = "coach",
    ):
        self.store = store or InMemoryCounterStore()
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.scope = scope
        self._last_window: Optional[int] = None

    def _window_index(self, now: datetime) -> int:
        return math.floor(now.timestamp() / self.window_seconds)

    def _period_key(self, window: int) -> str:
        return f"rate:{self.scope}:{window}"

    async def check(self, user_id: str, now: Optional[datetime] = None) -> RateLimitResult:
        now = _as_utc(now)
        window = self._window_index(now)
        reset_at = datetime.fromtimestamp((window + 1) * self.window_seconds, tz=timezone.utc)

        await self._prune_old_windows(window)

        counter = await self.store.increment_if_below(user_id, self._period_key(window), self.max_requests)
        remaining = max(0, self.max_requests - counter.used)

        if not counter.allowed:
            retry_after = max(1, math.ceil((reset_at - now) / timedelta(seconds=1)))
            logger.warning("Rate limit hit for user %s (%s), retry in %ss", user_id, self.scope, retry_after)
            return RateLimitResult(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=retry_after,
            )

        return RateLimitResult(
            allowed=True, limit=self.max_requests, remaining=remaining, reset_at=reset_at
        )

    async def _prune_old_windows(self, window: int) -> None:
        # Once per window per process
        if window == self._last_window:
            return
        self._last_window = window
        await self.store.prune(f"rate:{self.scope}:", self._period_key(window))
