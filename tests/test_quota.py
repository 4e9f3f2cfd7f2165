"""
Tests for the counter stores, the monthly quota ledger and the rate limiter.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from argument_coach.counters import InMemoryCounterStore, SqlCounterStore
from argument_coach.quota import (
    QuotaLedger,
    RateLimiter,
    isoformat_utc,
    utc_month_key,
    utc_month_reset_at,
)

MID_MARCH = datetime(2025, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


class TestMonthBoundaries:
    def test_month_key(self):
        assert utc_month_key(MID_MARCH) == "2025-03"

    def test_month_key_uses_utc(self):
        # 23:30 on March 31st in New York is already April in UTC
        new_york = timezone(timedelta(hours=-4))
        assert utc_month_key(datetime(2025, 3, 31, 23, 30, tzinfo=new_york)) == "2025-04"

    def test_naive_datetimes_are_utc(self):
        assert utc_month_key(datetime(2025, 1, 31, 23, 59)) == "2025-01"

    def test_reset_is_first_of_next_month(self):
        assert utc_month_reset_at(MID_MARCH) == datetime(2025, 4, 1, tzinfo=timezone.utc)

    def test_december_rolls_into_next_year(self):
        december = datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc)
        assert utc_month_reset_at(december) == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert isoformat_utc(utc_month_reset_at(december)) == "2026-01-01T00:00:00Z"


class TestQuotaLedger:
    async def test_concurrent_consumes_never_exceed_the_limit(self):
        ledger = QuotaLedger(InMemoryCounterStore(), monthly_limit=200)
        results = await asyncio.gather(
            *(ledger.consume("user-1", now=MID_MARCH) for _ in range(205))
        )

        assert sum(r.allowed for r in results) == 200
        assert sum(not r.allowed for r in results) == 5
        status = await ledger.status("user-1", now=MID_MARCH)
        assert status.used == 200
        assert status.remaining == 0

    async def test_denied_result_reports_usage_and_reset(self):
        ledger = QuotaLedger(InMemoryCounterStore(), monthly_limit=1)
        assert (await ledger.consume("user-1", now=MID_MARCH)).allowed
        denied = await ledger.consume("user-1", now=MID_MARCH)

        assert not denied.allowed
        assert denied.used == 1
        assert denied.remaining == 0
        assert denied.headers()["X-Coach-Quota-Reset"] == "2025-04-01T00:00:00Z"
        assert denied.to_dict()["resetAt"] == "2025-04-01T00:00:00Z"

    async def test_new_month_starts_fresh(self):
        ledger = QuotaLedger(InMemoryCounterStore(), monthly_limit=1)
        assert (await ledger.consume("user-1", now=MID_MARCH)).allowed
        assert not (await ledger.consume("user-1", now=MID_MARCH)).allowed
        april = await ledger.consume("user-1", now=datetime(2025, 4, 1, tzinfo=timezone.utc))
        assert april.allowed
        assert april.used == 1

    async def test_users_are_counted_separately(self):
        ledger = QuotaLedger(InMemoryCounterStore(), monthly_limit=1)
        assert (await ledger.consume("user-1", now=MID_MARCH)).allowed
        assert (await ledger.consume("user-2", now=MID_MARCH)).allowed

    async def test_privileged_roles_are_unlimited(self):
        store = InMemoryCounterStore()
        ledger = QuotaLedger(store, monthly_limit=0, unlimited_roles=["administrator"])
        result = await ledger.consume("admin", role="Administrator", now=MID_MARCH)

        assert result.allowed and result.is_unlimited
        assert result.headers()["X-Coach-Quota-Limit"] == "unlimited"
        assert await store.current("admin", "2025-03") == 0

    async def test_status_does_not_consume(self):
        ledger = QuotaLedger(InMemoryCounterStore(), monthly_limit=5)
        await ledger.consume("user-1", now=MID_MARCH)
        first = await ledger.status("user-1", now=MID_MARCH)
        second = await ledger.status("user-1", now=MID_MARCH)
        assert first.used == second.used == 1
        assert second.remaining == 4


class TestSqlCounterStore:
    async def test_increment_stops_at_limit(self, db):
        store = SqlCounterStore()
        outcomes = [await store.increment_if_below("user-1", "2025-03", 3) for _ in range(5)]

        assert [o.allowed for o in outcomes] == [True, True, True, False, False]
        assert [o.used for o in outcomes] == [1, 2, 3, 3, 3]
        assert await store.current("user-1", "2025-03") == 3

    async def test_missing_record_reads_as_zero(self, db):
        assert await SqlCounterStore().current("nobody", "2025-03") == 0

    async def test_concurrent_consumes_never_exceed_the_limit(self, db):
        ledger = QuotaLedger(SqlCounterStore(), monthly_limit=200)
        results = await asyncio.gather(
            *(ledger.consume("user-1", now=MID_MARCH) for _ in range(205))
        )

        assert sum(r.allowed for r in results) == 200
        assert sum(not r.allowed for r in results) == 5
        assert (await ledger.status("user-1", now=MID_MARCH)).used == 200

    async def test_prune_keeps_the_current_window_and_other_periods(self, db):
        store = SqlCounterStore()
        await store.increment_if_below("user-1", "rate:coach:1", 5)
        await store.increment_if_below("user-2", "rate:coach:1", 5)
        await store.increment_if_below("user-1", "rate:coach:2", 5)
        await store.increment_if_below("user-1", "rate:finalize:1", 5)
        await store.increment_if_below("user-1", "2025-03", 5)

        assert await store.prune("rate:coach:", "rate:coach:2") == 2

        assert await store.current("user-1", "rate:coach:1") == 0
        assert await store.current("user-1", "rate:coach:2") == 1
        assert await store.current("user-1", "rate:finalize:1") == 1
        assert await store.current("user-1", "2025-03") == 1

    async def test_rate_limiter_on_sql_store(self, db):
        store = SqlCounterStore()
        limiter = RateLimiter(store, max_requests=1, window_seconds=60)
        start = datetime(2025, 3, 14, 15, 9, 0, tzinfo=timezone.utc)

        assert (await limiter.check("user-1", start)).allowed
        assert not (await limiter.check("user-1", start + timedelta(seconds=30))).allowed
        assert (await limiter.check("user-1", start + timedelta(seconds=60))).allowed

        old_key = f"rate:coach:{int(start.timestamp()) // 60}"
        assert await store.current("user-1", old_key) == 0

    async def test_ledger_on_sql_store(self, db):
        ledger = QuotaLedger(SqlCounterStore(db), monthly_limit=2)
        allowed = [(await ledger.consume("user-1", now=MID_MARCH)).allowed for _ in range(3)]
        assert allowed == [True, True, False]
        assert (await ledger.status("user-1", now=MID_MARCH)).used == 2


class TestRateLimiter:
    async def test_window_limit_and_retry_after(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        start = datetime(2025, 3, 14, 15, 9, 0, tzinfo=timezone.utc)

        first = await limiter.check("user-1", start)
        second = await limiter.check("user-1", start + timedelta(seconds=10))
        third = await limiter.check("user-1", start + timedelta(seconds=20))

        assert first.allowed and first.remaining == 1
        assert second.allowed and second.remaining == 0
        assert not third.allowed
        assert third.retry_after == 40
        assert third.headers()["Retry-After"] == "40"

    async def test_next_window_resets(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        start = datetime(2025, 3, 14, 15, 9, 0, tzinfo=timezone.utc)
        assert (await limiter.check("user-1", start)).allowed
        assert not (await limiter.check("user-1", start + timedelta(seconds=30))).allowed
        assert (await limiter.check("user-1", start + timedelta(seconds=60))).allowed

    async def test_old_windows_are_pruned(self):
        store = InMemoryCounterStore()
        limiter = RateLimiter(store, max_requests=5, window_seconds=60)
        start = datetime(2025, 3, 14, 15, 9, 0, tzinfo=timezone.utc)
        await limiter.check("user-1", start)
        await limiter.check("user-1", start + timedelta(minutes=5))

        old_key = f"rate:coach:{int(start.timestamp()) // 60}"
        assert await store.current("user-1", old_key) == 0

    async def test_scopes_do_not_share_counters(self):
        store = InMemoryCounterStore()
        coach = RateLimiter(store, max_requests=1, window_seconds=60)
        finalize = RateLimiter(store, max_requests=1, window_seconds=60, scope="finalize")
        assert (await coach.check("user-1", MID_MARCH)).allowed
        assert (await finalize.check("user-1", MID_MARCH)).allowed

    async def test_rate_limiter_does_not_touch_monthly_quota(self):
        store = InMemoryCounterStore()
        ledger = QuotaLedger(store, monthly_limit=10)
        limiter = RateLimiter(store, max_requests=10, window_seconds=60)
        await limiter.check("user-1", MID_MARCH)
        assert (await ledger.status("user-1", now=MID_MARCH)).used == 0


@pytest.mark.parametrize("limit, calls", [(1, 3), (10, 25)])
async def test_in_memory_store_concurrency(limit, calls):
    store = InMemoryCounterStore()
    outcomes = await asyncio.gather(
        *(store.increment_if_below("user-1", "p", limit) for _ in range(calls))
    )
    assert sum(o.allowed for o in outcomes) == limit
    assert await store.current("user-1", "p") == limit
