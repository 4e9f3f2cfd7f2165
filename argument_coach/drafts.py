"""
Draft Store Adapter

Versioned writes to `argument_drafts`. A write names the version it read and
is applied with one conditional UPDATE that also bumps the version. When the
stored version has moved, nothing is written and VersionConflict is raised;
there is no merge and no retry.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from argument_coach import database
from argument_coach.errors import NotFound, VersionConflict
from argument_coach.models import ArgumentDraft, utc_now
from argument_coach.steps import STEP_FIELD_NAMES, Step, field_name, parse_step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DraftSaveResult:
    session_id: str
    version: int


async def get_draft(user_id: str, session_id: str) -> ArgumentDraft:
    async with database.get_session_maker()() as db:
        result = await db.execute(
            select(ArgumentDraft).where(
                ArgumentDraft.session_id == session_id, ArgumentDraft.user_id == user_id
            )
        )
        draft = result.scalar_one_or_none()
        if draft is None:
            raise NotFound("Draft not found")
        return draft


async def _conditional_update(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    expected_version: int,
    values: Dict[str, Any],
) -> DraftSaveResult:
    result = await db.execute(
        update(ArgumentDraft)
        .where(
            ArgumentDraft.session_id == session_id,
            ArgumentDraft.user_id == user_id,
            ArgumentDraft.version == expected_version,
        )
        .values(version=ArgumentDraft.version + 1, updated_at=utc_now(), **values)
    )

    if result.rowcount == 1:
        await db.commit()
        return DraftSaveResult(session_id=session_id, version=expected_version + 1)

    await db.rollback()
    current = await db.execute(
        select(ArgumentDraft.version).where(
            ArgumentDraft.session_id == session_id, ArgumentDraft.user_id == user_id
        )
    )
    current_version: Optional[int] = current.scalar_one_or_none()
    if current_version is None:
        raise NotFound("Draft not found")

    logger.info(
        "Version conflict on draft for session %s: expected %d, stored %d",
        session_id, expected_version, current_version,
    )
    raise VersionConflict(
        "Draft was modified by another request",
        details={"expectedVersion": expected_version, "currentVersion": current_version},
    )


async def save_field(
    user_id: str,
    session_id: str,
    field: Step,
    value: str,
    expected_version: int,
) -> DraftSaveResult:
    """saveField(sessionId, field, value, expectedVersion) -> new version | VersionConflict"""
    step = parse_step(field)
    if step is None:
        raise ValueError(f"Unknown draft field: {field!r}")

    async with database.get_session_maker()() as db:
        saved = await _conditional_update(
            db, user_id, session_id, expected_version, {field_name(step): value}
        )
    logger.debug("Saved %s for session %s (v%d)", step.value, session_id, saved.version)
    return saved


async def save_from_editor(
    user_id: str,
    session_id: str,
    name: Optional[str],
    parts: Mapping[str, str],
    version: int,
) -> DraftSaveResult:
    """
    Full editor save: the argument name plus any subset of the seven parts.

    Keys of `parts` are step wire names ("groundsBacking") or column names
    ("grounds_backing").
    """
    values: Dict[str, Any] = {}
    columns = set(STEP_FIELD_NAMES.values())
    for key, text in parts.items():
        step = parse_step(key)
        column = field_name(step) if step is not None else key
        if column not in columns:
            raise ValueError(f"Unknown draft field: {key!r}")
        values[column] = text or ""
    if name is not None:
        values["name"] = name.strip()

    async with database.get_session_maker()() as db:
        return await _conditional_update(db, user_id, session_id, version, values)
