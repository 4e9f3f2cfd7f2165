"""
SQLModel Database Models

Schema for the argument coach: coaching sessions, their append-only message
log, the versioned working draft, the finalized argument, and the usage
counters behind the quota ledger and rate limiter.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from argument_coach.utils import id_generator as ids

SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def Timestamp(**kwargs: Any) -> Any:
    """Timezone-aware timestamp column defaulting to now (UTC)."""
    return Field(default_factory=utc_now, sa_type=DateTime(timezone=True), **kwargs)


class CoachSession(SQLModel, table=True):
    """
    One guided walk through the seven argument steps.

    `current_step` is the only record of which step is live.
    """
    __tablename__ = "coach_sessions"

    id: str = Field(default_factory=ids.session_id, primary_key=True)
    user_id: str = Field(index=True)
    current_step: str = Field(default="claim", max_length=32)
    status: str = Field(default=SESSION_ACTIVE, max_length=16)  # active, completed
    argument_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Timestamp()
    updated_at: datetime = Timestamp()


class CoachMessage(SQLModel, table=True):
    """Chat transcript entry. Append-only, never updated."""
    __tablename__ = "coach_messages"

    id: str = Field(default_factory=ids.message_id, primary_key=True)
    session_id: str = Field(foreign_key="coach_sessions.id", index=True)
    role: str  # 'user', 'assistant'
    content: str
    step: str = Field(max_length=32)
    created_at: datetime = Timestamp(index=True)


class ArgumentDraft(SQLModel, table=True):
    """
    The in-progress argument for a session (1:1).

    Every accepted write must present the version it read; the stored
    version then moves forward by exactly one.
    """
    __tablename__ = "argument_drafts"

    id: str = Field(default_factory=ids.draft_id, primary_key=True)
    session_id: str = Field(foreign_key="coach_sessions.id", unique=True, index=True)
    user_id: str = Field(index=True)
    name: str = Field(default="", max_length=255)

    claim: str = Field(default="")
    grounds: str = Field(default="")
    warrant: str = Field(default="")
    grounds_backing: str = Field(default="")
    warrant_backing: str = Field(default="")
    qualifier: str = Field(default="")
    rebuttal: str = Field(default="")

    version: int = Field(default=0)
    created_at: datetime = Timestamp()
    updated_at: datetime = Timestamp()


class Argument(SQLModel, table=True):
    """Permanent record produced when a session is finalized."""
    __tablename__ = "arguments"

    id: str = Field(default_factory=ids.argument_id, primary_key=True)
    user_id: str = Field(index=True)
    session_id: str = Field(index=True)
    name: str = Field(default="", max_length=255)

    claim: str = Field(default="")
    grounds: str = Field(default="")
    warrant: str = Field(default="")
    grounds_backing: str = Field(default="")
    warrant_backing: str = Field(default="")
    qualifier: str = Field(default="")
    rebuttal: str = Field(default="")

    created_at: datetime = Timestamp()


class UsageCounter(SQLModel, table=True):
    """
    One counter per user per period.

    Monthly quota rows use a "YYYY-MM" period key; rate-limit windows use
    "rate:<scope>:<window-index>".
    """
    __tablename__ = "usage_counters"

    user_id: str = Field(primary_key=True)
    period_key: str = Field(primary_key=True, max_length=64)
    used: int = Field(default=0)
    created_at: datetime = Timestamp()
    updated_at: datetime = Timestamp()
