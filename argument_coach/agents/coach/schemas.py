"""
Pydantic schemas for Coach Agent outputs.

`CandidateResult` is what the model returned: untrusted, every field optional.
`CoachResult` is what the service hands to clients after coercion.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from argument_coach.steps import Step


class ProposalStatus(str, Enum):
    """Which sanitation rule decided the fate of a proposed field edit."""
    KEPT = "kept"
    STRIPPED_WRONG_STEP = "stripped-wrong-step"
    STRIPPED_EMPTY_VALUE = "stripped-empty-value"
    STRIPPED_LOW_CONFIDENCE = "stripped-low-confidence"
    STRIPPED_FIRST_ATTEMPT_NO_CONFIDENCE = "stripped-first-attempt-no-confidence"
    NONE = "none"


class CandidateProposal(BaseModel):
    """A suggested replacement for one draft field, as the model wrote it."""
    model_config = ConfigDict(extra="ignore")

    field: Optional[str] = Field(None, description="Step whose field the edit targets")
    value: Optional[str] = Field(None, max_length=2000, description="Proposed text for the field")
    rationale: Optional[str] = Field(None, max_length=500, description="Why the edit helps")


class CandidateResult(BaseModel):
    """Raw model output for one turn. Never persisted or returned as-is."""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "assistantText": "Good start. Can you narrow the claim to one city?",
                "step": "claim",
                "confidence": 0.55,
                "proposedUpdate": {
                    "field": "claim",
                    "value": "Our city should expand its protected bike lane network.",
                    "rationale": "States a single, arguable position.",
                },
                "nextQuestion": "Which city do you have in mind?",
                "shouldAdvance": False,
            }
        },
    )

    assistant_text: Optional[str] = Field(None, alias="assistantText")
    step: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    proposed_update: Optional[CandidateProposal] = Field(None, alias="proposedUpdate")
    next_question: Optional[str] = Field(None, alias="nextQuestion")
    should_advance: Optional[bool] = Field(None, alias="shouldAdvance")
    next_step: Optional[str] = Field(None, alias="nextStep")
    is_complete: Optional[bool] = Field(None, alias="isComplete")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CoachProposal(BaseModel):
    field: Step
    value: str = Field(..., min_length=1)
    rationale: Optional[str] = None


class CoachResult(BaseModel):
    """Authoritative, coerced result of a coaching turn."""
    model_config = ConfigDict(populate_by_name=True)

    assistant_text: str = Field(..., min_length=1, alias="assistantText")
    step: Step
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    proposed_update: Optional[CoachProposal] = Field(None, alias="proposedUpdate")
    next_question: Optional[str] = Field(None, alias="nextQuestion")
    should_advance: bool = Field(False, alias="shouldAdvance")
    next_step: Optional[Step] = Field(None, alias="nextStep")
    is_complete: bool = Field(False, alias="isComplete")
    proposal_status: ProposalStatus = Field(ProposalStatus.NONE, alias="proposalStatus")
    assistant_message_id: Optional[str] = Field(None, alias="assistantMessageId")

    def to_wire(self) -> Dict[str, Any]:
        """camelCase dict for the terminal stream line."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
