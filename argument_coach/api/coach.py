"""
Coach REST API

The streamed coaching turn and the quota status endpoint.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from argument_coach.api.deps import (
    get_coach_turn,
    get_current_user_id,
    get_current_user_role,
    get_locale,
    get_quota_ledger,
)
from argument_coach.api.schemas import CoachTurnRequest, QuotaStatusResponse
from argument_coach.quota import QuotaLedger
from argument_coach.streaming import NDJSON_MEDIA_TYPE
from argument_coach.turns import CoachTurn

router = APIRouter(prefix="/api/coach", tags=["coach"])


@router.post("")
async def coach_turn(
    body: CoachTurnRequest,
    user_id: str = Depends(get_current_user_id),
    role: Optional[str] = Depends(get_current_user_role),
    locale: str = Depends(get_locale),
    coach: CoachTurn = Depends(get_coach_turn),
):
    """
    Run one coaching turn.

    Responds with newline-delimited JSON: display-only partial lines, then one
    terminal line with the coerced result and `assistantMessageId`, or
    `{"error": code}`. Quota and rate-limit headers are always set.
    """
    turn = await coach.prepare(
        user_id=user_id,
        session_id=body.session_id,
        message=body.message,
        role=role,
        locale=locale,
    )
    headers = {**turn.headers(), "Cache-Control": "no-cache, no-transform"}
    return StreamingResponse(
        coach.stream(turn),
        media_type=f"{NDJSON_MEDIA_TYPE}; charset=utf-8",
        headers=headers,
    )


@router.get("/quota", response_model=QuotaStatusResponse)
async def quota_status(
    user_id: str = Depends(get_current_user_id),
    role: Optional[str] = Depends(get_current_user_role),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    """Current monthly usage. Does not consume quota."""
    status = await ledger.status(user_id, role)
    return QuotaStatusResponse(
        used=status.used,
        limit=status.limit,
        remaining=status.remaining,
        reset_at=status.reset_at,
        is_unlimited=status.is_unlimited,
    )
