"""
Database Persistence Layer

Async helpers for coaching sessions:
- Session lifecycle (create, load, list, delete)
- Append-only chat messages
- Step advancement and navigation
- Finalization into a permanent argument
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from argument_coach import database
from argument_coach.agents.coach.prompts import default_argument_name, welcome_message
from argument_coach.errors import InvalidStepTransition, NotFound
from argument_coach.heuristics import DEFAULT_LOCALE, step_completion_status
from argument_coach.models import (
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    Argument,
    ArgumentDraft,
    CoachMessage,
    CoachSession,
    utc_now,
)
from argument_coach.steps import (
    FIRST_STEP,
    STEP_FIELD_NAMES,
    Step,
    field_name,
    fields_by_step,
    is_terminal,
    next_step,
    resolve_navigation,
)

logger = logging.getLogger(__name__)

RECENT_SESSIONS_LIMIT = 10
HISTORY_LIMIT = 10


@dataclass
class SessionOverview:
    session: CoachSession
    draft_name: str


@dataclass
class StepChange:
    session_id: str
    current_step: Step
    status: str
    argument_id: Optional[str] = None


# --- Lookups ----------------------------------------------------------------

async def _owned_session(db: AsyncSession, user_id: str, session_id: str) -> CoachSession:
    result = await db.execute(
        select(CoachSession).where(CoachSession.id == session_id, CoachSession.user_id == user_id)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFound("Session not found")
    return session


async def _owned_draft(db: AsyncSession, user_id: str, session_id: str) -> ArgumentDraft:
    result = await db.execute(
        select(ArgumentDraft).where(
            ArgumentDraft.session_id == session_id, ArgumentDraft.user_id == user_id
        )
    )
    draft = result.scalar_one_or_none()
    if draft is None:
        raise NotFound("Draft not found")
    return draft


async def get_session(user_id: str, session_id: str) -> CoachSession:
    async with database.get_session_maker()() as db:
        return await _owned_session(db, user_id, session_id)


async def get_active_session_and_draft(
    user_id: str, session_id: str
) -> Tuple[CoachSession, ArgumentDraft]:
    """
    Load an active session and its draft, both owned by `user_id`.

    A completed session has no draft, so it is rejected before the draft
    lookup with InvalidStepTransition.
    """
    async with database.get_session_maker()() as db:
        session = await _owned_session(db, user_id, session_id)
        if session.status != SESSION_ACTIVE:
            raise InvalidStepTransition("Session is already completed")
        draft = await _owned_draft(db, user_id, session_id)
        return session, draft


async def get_session_detail(
    user_id: str, session_id: str
) -> Tuple[CoachSession, List[CoachMessage], Optional[ArgumentDraft]]:
    """Session, its full message log in order, and the draft (None once finalized)."""
    async with database.get_session_maker()() as db:
        session = await _owned_session(db, user_id, session_id)
        messages = await db.execute(
            select(CoachMessage)
            .where(CoachMessage.session_id == session_id)
            .order_by(CoachMessage.created_at)
        )
        draft = await db.execute(
            select(ArgumentDraft).where(ArgumentDraft.session_id == session_id)
        )
        return session, list(messages.scalars().all()), draft.scalar_one_or_none()


async def list_sessions(user_id: str, limit: int = RECENT_SESSIONS_LIMIT) -> List[SessionOverview]:
    """Active sessions, most recently updated first, with their draft names."""
    async with database.get_session_maker()() as db:
        result = await db.execute(
            select(CoachSession)
            .where(CoachSession.user_id == user_id, CoachSession.status == SESSION_ACTIVE)
            .order_by(CoachSession.updated_at.desc())
            .limit(limit)
        )
        sessions = list(result.scalars().all())
        if not sessions:
            return []

        drafts = await db.execute(
            select(ArgumentDraft.session_id, ArgumentDraft.name).where(
                ArgumentDraft.session_id.in_([s.id for s in sessions])
            )
        )
        names: Dict[str, str] = {row.session_id: row.name for row in drafts}
        return [SessionOverview(session=s, draft_name=names.get(s.id, "")) for s in sessions]


# --- Session lifecycle ------------------------------------------------------

async def create_session(
    user_id: str, locale: str = DEFAULT_LOCALE, name: Optional[str] = None
) -> Tuple[CoachSession, ArgumentDraft, CoachMessage]:
    """New session at the first step, with an empty draft and a welcome message."""
    async with database.get_session_maker()() as db:
        session = CoachSession(user_id=user_id, current_step=FIRST_STEP.value)
        db.add(session)
        await db.flush()

        draft = ArgumentDraft(
            session_id=session.id, user_id=user_id, name=(name or "").strip(), version=0
        )
        welcome = CoachMessage(
            session_id=session.id,
            role="assistant",
            content=welcome_message(locale),
            step=FIRST_STEP.value,
        )
        db.add(draft)
        db.add(welcome)
        await db.commit()

    logger.info("Created session %s for user %s", session.id, user_id)
    return session, draft, welcome


async def delete_session(user_id: str, session_id: str) -> None:
    """Delete a session with its messages and draft. Finalized arguments are kept."""
    async with database.get_session_maker()() as db:
        await _owned_session(db, user_id, session_id)
        await db.execute(delete(CoachMessage).where(CoachMessage.session_id == session_id))
        await db.execute(delete(ArgumentDraft).where(ArgumentDraft.session_id == session_id))
        await db.execute(delete(CoachSession).where(CoachSession.id == session_id))
        await db.commit()
    logger.info("Deleted session %s", session_id)


# --- Messages ---------------------------------------------------------------

async def save_message(session_id: str, role: str, content: str, step: Step) -> CoachMessage:
    """Append a message and touch the session's updated_at. Returns the message."""
    async with database.get_session_maker()() as db:
        message = CoachMessage(session_id=session_id, role=role, content=content, step=Step(step).value)
        db.add(message)
        await db.execute(
            update(CoachSession)
            .where(CoachSession.id == session_id)
            .values(updated_at=utc_now())
        )
        await db.commit()
        return message


async def delete_message(message_id: str) -> None:
    async with database.get_session_maker()() as db:
        await db.execute(delete(CoachMessage).where(CoachMessage.id == message_id))
        await db.commit()


async def get_recent_messages(session_id: str, limit: int = HISTORY_LIMIT) -> List[CoachMessage]:
    """The last `limit` messages, oldest first."""
    async with database.get_session_maker()() as db:
        result = await db.execute(
            select(CoachMessage)
            .where(CoachMessage.session_id == session_id)
            .order_by(CoachMessage.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))


async def has_user_message_for_step(session_id: str, step: Step) -> bool:
    async with database.get_session_maker()() as db:
        result = await db.execute(
            select(func.count())
            .select_from(CoachMessage)
            .where(
                CoachMessage.session_id == session_id,
                CoachMessage.role == "user",
                CoachMessage.step == Step(step).value,
            )
        )
        return result.scalar_one() > 0


# --- Step changes -----------------------------------------------------------

async def advance_session(user_id: str, session_id: str, from_step: Step) -> StepChange:
    """
    Move the live step forward by one after a save.

    The live step's field must be non-blank. The write only applies while the
    session is still at `from_step`, so two concurrent advances cannot skip a
    step. On the terminal step the session is finalized instead.
    """
    from_step = Step(from_step)
    async with database.get_session_maker()() as db:
        session = await _owned_session(db, user_id, session_id)
        if session.status != SESSION_ACTIVE:
            raise InvalidStepTransition("Session is already completed")
        if session.current_step != from_step.value:
            raise InvalidStepTransition(
                f"Session is at '{session.current_step}', not '{from_step.value}'"
            )

        draft = await _owned_draft(db, user_id, session_id)
        if not (getattr(draft, field_name(from_step)) or "").strip():
            raise InvalidStepTransition(f"Save the {from_step.value} before moving on")

        if is_terminal(from_step):
            terminal = True
        else:
            terminal = False
            target = next_step(from_step)
            result = await db.execute(
                update(CoachSession)
                .where(
                    CoachSession.id == session_id,
                    CoachSession.current_step == from_step.value,
                    CoachSession.status == SESSION_ACTIVE,
                )
                .values(current_step=target.value, updated_at=utc_now())
            )
            if result.rowcount != 1:
                await db.rollback()
                raise InvalidStepTransition("Session step changed concurrently")
            await db.commit()

    if terminal:
        argument_id = await finalize_session(user_id, session_id)
        return StepChange(session_id, from_step, SESSION_COMPLETED, argument_id)

    logger.info("Session %s advanced %s -> %s", session_id, from_step.value, target.value)
    return StepChange(session_id, target, SESSION_ACTIVE)


async def navigate_session(
    user_id: str, session_id: str, step: Step, locale: str = DEFAULT_LOCALE
) -> StepChange:
    """Open the clicked (same or earlier) step, rerouting to the first unfinished one."""
    clicked = Step(step)
    async with database.get_session_maker()() as db:
        session = await _owned_session(db, user_id, session_id)
        if session.status != SESSION_ACTIVE:
            raise InvalidStepTransition("Session is already completed")
        draft = await _owned_draft(db, user_id, session_id)

        current = Step(session.current_step)
        completed = step_completion_status(fields_by_step(draft), locale)
        try:
            target = resolve_navigation(clicked, current, completed)
        except ValueError as e:
            raise InvalidStepTransition(str(e)) from e

        if target != current:
            result = await db.execute(
                update(CoachSession)
                .where(CoachSession.id == session_id, CoachSession.current_step == current.value)
                .values(current_step=target.value, updated_at=utc_now())
            )
            if result.rowcount != 1:
                await db.rollback()
                raise InvalidStepTransition("Session step changed concurrently")
            await db.commit()

    if target != clicked:
        logger.info("Session %s rerouted from %s to %s", session_id, clicked.value, target.value)
    return StepChange(session_id, target, SESSION_ACTIVE)


# --- Finalization -----------------------------------------------------------

async def finalize_session(user_id: str, session_id: str, locale: str = DEFAULT_LOCALE) -> str:
    """
    Copy the draft into a permanent Argument and mark the session completed.

    Idempotent: a completed session returns its existing argument id. Draft
    cleanup runs afterwards and may fail without undoing the finalization.
    """
    async with database.get_session_maker()() as db:
        session = await _owned_session(db, user_id, session_id)
        if session.status == SESSION_COMPLETED and session.argument_id:
            return session.argument_id

        draft = await _owned_draft(db, user_id, session_id)
        argument = Argument(
            user_id=user_id,
            session_id=session_id,
            name=draft.name.strip() or default_argument_name(locale),
            **{column: getattr(draft, column) for column in STEP_FIELD_NAMES.values()},
        )
        db.add(argument)
        await db.flush()

        result = await db.execute(
            update(CoachSession)
            .where(CoachSession.id == session_id, CoachSession.status == SESSION_ACTIVE)
            .values(
                status=SESSION_COMPLETED,
                argument_id=argument.id,
                updated_at=utc_now(),
            )
        )
        if result.rowcount != 1:
            # Another request finalized first
            await db.rollback()
            session = await _owned_session(db, user_id, session_id)
            return session.argument_id
        await db.commit()
        argument_id = argument.id

    logger.info("Finalized session %s into argument %s", session_id, argument_id)
    await _cleanup_draft(session_id)
    return argument_id


async def _cleanup_draft(session_id: str) -> None:
    try:
        async with database.get_session_maker()() as db:
            await db.execute(delete(ArgumentDraft).where(ArgumentDraft.session_id == session_id))
            await db.commit()
    except SQLAlchemyError as e:
        logger.warning("Failed to delete draft for finalized session %s: %s", session_id, e)

