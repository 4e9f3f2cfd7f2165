"""
Counter Stores

An injectable "increment if below limit" primitive shared by the monthly
quota ledger and the short-window rate limiter.

- InMemoryCounterStore: a dict behind an asyncio.Lock, atomic within one
  event loop. Fine for a single process and for tests.
- SqlCounterStore: one row per (user_id, period_key) in `usage_counters`,
  incremented with a single conditional UPDATE so concurrent callers across
  processes can never push `used` past the limit.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from sqlalchemy import delete, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from argument_coach import database
from argument_coach.models import UsageCounter, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterResult:
    allowed: bool
    used: int


class CounterStore(Protocol):
    async def increment_if_below(self, user_id: str, period_key: str, limit: int) -> CounterResult:
        ...

    async def current(self, user_id: str, period_key: str) -> int:
        ...

    async def prune(self, prefix: str, keep_key: str) -> int:
        ...


class InMemoryCounterStore:
    """Process-local counters. Atomic for callers sharing one event loop."""

    def __init__(self):
        self._counts: Dict[Tuple[str, str], int] = {}
        self._lock = asyncio.Lock()

    async def increment_if_below(self, user_id: str, period_key: str, limit: int) -> CounterResult:
        async with self._lock:
            key = (user_id, period_key)
            used = self._counts.get(key, 0)
            if used >= limit:
                return CounterResult(allowed=False, used=used)
            self._counts[key] = used + 1
            return CounterResult(allowed=True, used=used + 1)

    async def current(self, user_id: str, period_key: str) -> int:
        async with self._lock:
            return self._counts.get((user_id, period_key), 0)

    async def prune(self, prefix: str, keep_key: str) -> int:
        """Drop every counter under `prefix` except `keep_key`. Returns the count removed."""
        async with self._lock:
            stale = [
                key for key in self._counts
                if key[1].startswith(prefix) and key[1] != keep_key
            ]
            for key in stale:
                del self._counts[key]
            return len(stale)


class SqlCounterStore:
    """Counters in the `usage_counters` table."""

    def __init__(self, session_maker: Optional[sessionmaker] = None):
        self._session_maker = session_maker

    def _sessions(self) -> sessionmaker:
        return self._session_maker or database.get_session_maker()

    @staticmethod
    def _insert_ignore(dialect_name: str, user_id: str, period_key: str):
        now = utc_now()
        values = dict(user_id=user_id, period_key=period_key, used=0, created_at=now, updated_at=now)
        if dialect_name == "postgresql":
            stmt = pg_insert(UsageCounter).values(**values)
        elif dialect_name == "sqlite":
            stmt = sqlite_insert(UsageCounter).values(**values)
        else:
            raise RuntimeError(f"Unsupported database dialect for counters: {dialect_name}")
        return stmt.on_conflict_do_nothing(index_elements=["user_id", "period_key"])

    async def increment_if_below(self, user_id: str, period_key: str, limit: int) -> CounterResult:
        async with self._sessions()() as db:
            dialect_name = db.get_bind().dialect.name

            # Lazily create the record, then one conditional increment
            await db.execute(self._insert_ignore(dialect_name, user_id, period_key))
            result = await db.execute(
                update(UsageCounter)
                .where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.period_key == period_key,
                    UsageCounter.used < limit,
                )
                .values(used=UsageCounter.used + 1, updated_at=utc_now())
            )
            allowed = result.rowcount == 1

            row = await db.execute(
                select(UsageCounter.used).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.period_key == period_key,
                )
            )
            used = row.scalar_one()
            await db.commit()

        if not allowed:
            logger.info("Counter %s/%s at limit %d", user_id, period_key, limit)
        return CounterResult(allowed=allowed, used=used)

    async def current(self, user_id: str, period_key: str) -> int:
        async with self._sessions()() as db:
            row = await db.execute(
                select(UsageCounter.used).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.period_key == period_key,
                )
            )
            return row.scalar_one_or_none() or 0

    async def prune(self, prefix: str, keep_key: str) -> int:
        """Delete rows for every user under `prefix` except `keep_key`."""
        async with self._sessions()() as db:
            result = await db.execute(
                delete(UsageCounter).where(
                    UsageCounter.period_key.startswith(prefix, autoescape=True),
                    UsageCounter.period_key != keep_key,
                )
            )
            await db.commit()
        if result.rowcount:
            logger.debug("Pruned %d counters under %s", result.rowcount, prefix)
        return result.rowcount
