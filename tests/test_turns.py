"""
Tests for coaching turn preparation.
"""

import pytest

from argument_coach import drafts, persistence
from argument_coach.counters import InMemoryCounterStore
from argument_coach.errors import InvalidStepTransition, NotFound
from argument_coach.quota import QuotaLedger, RateLimiter
from argument_coach.steps import Step
from argument_coach.turns import CoachTurn


@pytest.fixture
def ledger():
    return QuotaLedger(InMemoryCounterStore(), monthly_limit=5)


@pytest.fixture
def coach_turn(ledger, provider):
    return CoachTurn(ledger, RateLimiter(max_requests=5, window_seconds=60), provider)


async def test_turn_on_a_completed_session_is_an_invalid_transition(db, ledger, coach_turn):
    session, _, _ = await persistence.create_session("user-1")
    await drafts.save_field("user-1", session.id, Step.CLAIM, "Cities should fund bike lanes.", 0)
    await persistence.finalize_session("user-1", session.id)

    with pytest.raises(InvalidStepTransition):
        await coach_turn.prepare("user-1", session.id, "One more thing")

    # Rejected before any quota is spent
    assert (await ledger.status("user-1")).used == 0


async def test_turn_on_an_unknown_session_is_not_found(db, coach_turn):
    with pytest.raises(NotFound):
        await coach_turn.prepare("user-1", "SES_missing", "Hello")


async def test_prepare_stores_the_user_message(db, coach_turn):
    session, _, _ = await persistence.create_session("user-1")
    turn = await coach_turn.prepare("user-1", session.id, "Bike lanes make streets safer for everyone.")

    assert turn.step is Step.CLAIM
    assert turn.context.is_first_attempt_for_step
    assert await persistence.has_user_message_for_step(session.id, Step.CLAIM)
    assert "X-Coach-Quota-Used" in turn.headers()
