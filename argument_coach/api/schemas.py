"""
Request and response schemas for the coach REST API.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from argument_coach.steps import Step


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Requests ---

class CoachTurnRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=5000)


class SessionCreate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)


class FieldSaveRequest(CamelModel):
    field: Step
    value: str = Field(..., max_length=2000)
    expected_version: int = Field(..., ge=0)


class EditorSaveRequest(CamelModel):
    name: Optional[str] = Field(None, max_length=200)
    parts: Dict[Step, str] = Field(default_factory=dict)
    version: int = Field(..., ge=0)


class AdvanceRequest(CamelModel):
    from_step: Step


class NavigateRequest(CamelModel):
    step: Step


# --- Responses ---

class SessionResponse(CamelModel):
    id: str
    user_id: str
    current_step: Step
    status: str
    argument_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SessionOverviewResponse(SessionResponse):
    draft_name: str = ""


class MessageResponse(CamelModel):
    id: str
    session_id: str
    role: str
    content: str
    step: Step
    created_at: datetime


class DraftResponse(CamelModel):
    id: str
    session_id: str
    name: str
    claim: str
    grounds: str
    warrant: str
    grounds_backing: str
    warrant_backing: str
    qualifier: str
    rebuttal: str
    version: int
    updated_at: datetime


class DraftProgressResponse(CamelModel):
    """Heuristic pass/fail per step for the saved draft."""
    step_status: Dict[Step, bool]
    first_incomplete_step: Optional[Step] = None
    argument_complete: bool


class SessionDetailResponse(CamelModel):
    session: SessionResponse
    messages: List[MessageResponse]
    draft: Optional[DraftResponse] = None
    progress: Optional[DraftProgressResponse] = None


class DraftSaveResponse(CamelModel):
    session_id: str
    version: int


class StepChangeResponse(CamelModel):
    session_id: str
    current_step: Step
    status: str
    argument_id: Optional[str] = None


class FinalizeResponse(CamelModel):
    session_id: str
    argument_id: str
    status: str = "completed"


class QuotaStatusResponse(CamelModel):
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: datetime
    is_unlimited: bool
