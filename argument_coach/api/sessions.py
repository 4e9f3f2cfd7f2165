"""
Coach Sessions REST API

Session lifecycle, versioned draft saves, step advancement and navigation,
and finalization. All endpoints filter by the caller's user id.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Response

from argument_coach import drafts, persistence
from argument_coach.api.deps import (
    enforce_rate_limit,
    get_current_user_id,
    get_locale,
    get_rate_limiters,
)
from argument_coach.api.schemas import (
    AdvanceRequest,
    DraftProgressResponse,
    DraftResponse,
    DraftSaveResponse,
    EditorSaveRequest,
    FieldSaveRequest,
    FinalizeResponse,
    MessageResponse,
    NavigateRequest,
    SessionCreate,
    SessionDetailResponse,
    SessionOverviewResponse,
    SessionResponse,
    StepChangeResponse,
)
from argument_coach.heuristics import (
    first_incomplete_step,
    is_argument_complete,
    step_completion_status,
)
from argument_coach.models import ArgumentDraft
from argument_coach.persistence import StepChange
from argument_coach.steps import fields_by_step

router = APIRouter(prefix="/api/coach/sessions", tags=["sessions"])


def _draft_progress(draft: Optional[ArgumentDraft], locale: str) -> Optional[DraftProgressResponse]:
    if draft is None:
        return None
    fields = fields_by_step(draft)
    return DraftProgressResponse(
        step_status=step_completion_status(fields, locale),
        first_incomplete_step=first_incomplete_step(fields, locale),
        argument_complete=is_argument_complete(fields, locale),
    )


def _step_change_response(change: StepChange) -> StepChangeResponse:
    return StepChangeResponse(
        session_id=change.session_id,
        current_step=change.current_step,
        status=change.status,
        argument_id=change.argument_id,
    )


@router.post("", response_model=SessionDetailResponse, status_code=201)
async def create_session(
    body: SessionCreate,
    user_id: str = Depends(get_current_user_id),
    locale: str = Depends(get_locale),
    rate_limiters: dict = Depends(get_rate_limiters),
):
    """Start a session at the first step with an empty draft and a welcome message."""
    await enforce_rate_limit(rate_limiters["session_create"], user_id)
    session, draft, welcome = await persistence.create_session(user_id, locale, name=body.name)
    return SessionDetailResponse(
        session=SessionResponse.model_validate(session),
        messages=[MessageResponse.model_validate(welcome)],
        draft=DraftResponse.model_validate(draft),
        progress=_draft_progress(draft, locale),
    )


@router.get("", response_model=List[SessionOverviewResponse])
async def list_sessions(user_id: str = Depends(get_current_user_id)):
    """Active sessions for the current user, most recently updated first."""
    overviews = await persistence.list_sessions(user_id)
    return [
        SessionOverviewResponse(
            **SessionResponse.model_validate(item.session).model_dump(),
            draft_name=item.draft_name,
        )
        for item in overviews
    ]


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session_by_id(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    locale: str = Depends(get_locale),
):
    """A session with its ordered messages and current draft."""
    session, messages, draft = await persistence.get_session_detail(user_id, session_id)
    return SessionDetailResponse(
        session=SessionResponse.model_validate(session),
        messages=[MessageResponse.model_validate(m) for m in messages],
        draft=DraftResponse.model_validate(draft) if draft is not None else None,
        progress=_draft_progress(draft, locale),
    )


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, user_id: str = Depends(get_current_user_id)):
    """Delete a session and its messages and draft."""
    await persistence.delete_session(user_id, session_id)
    return Response(status_code=204)


# --- Draft saves ---

@router.put("/{session_id}/draft/fields", response_model=DraftSaveResponse)
async def save_draft_field(
    session_id: str,
    body: FieldSaveRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Persist one accepted field edit. 409 when `expectedVersion` is stale."""
    saved = await drafts.save_field(
        user_id, session_id, body.field, body.value, body.expected_version
    )
    return DraftSaveResponse(session_id=saved.session_id, version=saved.version)


@router.put("/{session_id}/draft", response_model=DraftSaveResponse)
async def save_draft(
    session_id: str,
    body: EditorSaveRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Full editor save of the name and any of the seven parts."""
    saved = await drafts.save_from_editor(
        user_id,
        session_id,
        body.name,
        {step.value: text for step, text in body.parts.items()},
        body.version,
    )
    return DraftSaveResponse(session_id=saved.session_id, version=saved.version)


# --- Step changes ---

@router.post("/{session_id}/advance", response_model=StepChangeResponse)
async def advance_session(
    session_id: str,
    body: AdvanceRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Move to the next step after a save. Finalizes on the last step."""
    change = await persistence.advance_session(user_id, session_id, body.from_step)
    return _step_change_response(change)


@router.post("/{session_id}/navigate", response_model=StepChangeResponse)
async def navigate_session(
    session_id: str,
    body: NavigateRequest,
    user_id: str = Depends(get_current_user_id),
    locale: str = Depends(get_locale),
):
    """Reopen the live step or an earlier one."""
    change = await persistence.navigate_session(user_id, session_id, body.step, locale)
    return _step_change_response(change)


@router.post("/{session_id}/finalize", response_model=FinalizeResponse)
async def finalize_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    locale: str = Depends(get_locale),
    rate_limiters: dict = Depends(get_rate_limiters),
):
    """Save the draft as a permanent argument. Repeat calls return the same id."""
    await enforce_rate_limit(rate_limiters["finalize"], user_id)
    argument_id = await persistence.finalize_session(user_id, session_id, locale)
    return FinalizeResponse(session_id=session_id, argument_id=argument_id)
