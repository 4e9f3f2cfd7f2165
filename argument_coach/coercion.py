"""
Candidate Coercion Pipeline

Turns the model's raw candidate into a result the session can trust:

1. Pin `step` to the session's live step.
2. Trim the assistant text.
3. Sanitize the proposed field edit (right field, non-blank value).
4. First-attempt bias: no unrequested ghost-writing on first contact with a step.
5. Gate `shouldAdvance` on the saved draft, the step heuristic and confidence.

Every rule is idempotent, so `coerce(coerce(x)) == coerce(x)`.

The salvage helpers at the bottom rebuild a candidate whose only defect is a
missing `nextStep`/`isComplete` in an advance scenario.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from argument_coach.agents.coach.schemas import (
    CandidateResult,
    CoachResult,
    ProposalStatus,
)
from argument_coach.errors import SalvageFailed, ValidationFailed
from argument_coach.heuristics import DEFAULT_LOCALE, validate_step
from argument_coach.steps import Step, is_terminal, next_step, parse_step

logger = logging.getLogger(__name__)

FIRST_ATTEMPT_MIN_CONFIDENCE = 0.8
ADVANCE_MIN_CONFIDENCE = 0.6

_CODE_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


@dataclass(frozen=True)
class CoercionContext:
    """Everything the pipeline needs to know about the session at this turn."""
    session_current_step: Step
    draft_field_value: str = ""
    locale: str = DEFAULT_LOCALE
    is_first_attempt_for_step: bool = False
    is_explicit_rewrite_request: bool = False
    user_text_passes_heuristics: bool = False


# --- Rules ------------------------------------------------------------------

def sanitize_proposed_update(result: CandidateResult, current_step: Step) -> ProposalStatus:
    """
    Drop a proposed edit unless it targets the live step with a non-blank value.

    Mutates `result` in place and reports which rule fired.
    """
    proposal = result.proposed_update
    if proposal is None:
        return ProposalStatus.NONE

    if proposal.field != current_step.value:
        logger.warning(
            "Removing proposedUpdate for field '%s', expected '%s'",
            proposal.field, current_step.value,
        )
        result.proposed_update = None
        return ProposalStatus.STRIPPED_WRONG_STEP

    if not isinstance(proposal.value, str) or not proposal.value.strip():
        logger.warning("Removing proposedUpdate with empty value for '%s'", current_step.value)
        result.proposed_update = None
        return ProposalStatus.STRIPPED_EMPTY_VALUE

    proposal.value = proposal.value.strip()
    if isinstance(proposal.rationale, str):
        proposal.rationale = proposal.rationale.strip()
    return ProposalStatus.KEPT


def apply_first_attempt_bias(
    result: CandidateResult,
    current_step: Step,
    user_text_passes_heuristics: bool,
) -> ProposalStatus:
    """Gate a surviving proposal on the user's first turn for a step."""
    if result.proposed_update is None:
        return ProposalStatus.NONE

    if result.confidence is not None:
        if result.confidence < FIRST_ATTEMPT_MIN_CONFIDENCE:
            logger.warning(
                "Removing first-attempt proposedUpdate for '%s': confidence %.2f below %.2f",
                current_step.value, result.confidence, FIRST_ATTEMPT_MIN_CONFIDENCE,
            )
            result.proposed_update = None
            return ProposalStatus.STRIPPED_LOW_CONFIDENCE
        return ProposalStatus.KEPT

    if not user_text_passes_heuristics:
        logger.warning(
            "Removing first-attempt proposedUpdate for '%s': no confidence and user text "
            "does not pass the step heuristic",
            current_step.value,
        )
        result.proposed_update = None
        return ProposalStatus.STRIPPED_FIRST_ATTEMPT_NO_CONFIDENCE

    return ProposalStatus.KEPT


def should_allow_advancement(
    result: CandidateResult,
    current_step: Step,
    draft_field_value: str,
    locale: str = DEFAULT_LOCALE,
) -> bool:
    """Content, heuristic and confidence checks for a requested advance."""
    has_proposal = result.proposed_update is not None
    step_has_content = bool(draft_field_value.strip())

    if not has_proposal and not step_has_content:
        logger.warning(
            "Stripping shouldAdvance: no proposedUpdate and draft.%s is empty", current_step.value
        )
        return False

    proposed_value = result.proposed_update.value if has_proposal else ""
    text_to_validate = proposed_value or draft_field_value
    if not validate_step(current_step, text_to_validate, locale):
        logger.warning(
            "Stripping shouldAdvance: text does not pass %s heuristics", current_step.value
        )
        return False

    if result.confidence is not None and result.confidence < ADVANCE_MIN_CONFIDENCE:
        logger.warning(
            "Stripping shouldAdvance: confidence %.2f below %.2f",
            result.confidence, ADVANCE_MIN_CONFIDENCE,
        )
        return False

    return True


def coerce(
    candidate: CandidateResult,
    session_current_step: Step,
    draft_field_value: str = "",
    locale: str = DEFAULT_LOCALE,
    is_first_attempt_for_step: bool = False,
    is_explicit_rewrite_request: bool = False,
    user_text_passes_heuristics: bool = False,
) -> Tuple[CandidateResult, ProposalStatus]:
    """
    Correct a candidate against the session's authoritative state.

    Returns a new candidate (the input is left untouched) and the diagnostic
    status of the proposed edit.
    """
    current = Step(session_current_step)
    draft_field_value = draft_field_value or ""
    result = candidate.model_copy(deep=True)

    if result.step != current.value:
        logger.warning("Coercing step '%s' to session step '%s'", result.step, current.value)
        result.step = current.value

    if isinstance(result.assistant_text, str):
        result.assistant_text = result.assistant_text.strip()

    status = sanitize_proposed_update(result, current)

    if status == ProposalStatus.KEPT and is_first_attempt_for_step and not is_explicit_rewrite_request:
        status = apply_first_attempt_bias(result, current, user_text_passes_heuristics)

    if result.should_advance is not True:
        return result, status

    if is_terminal(current):
        result.should_advance = False
        result.is_complete = True
        result.next_step = None
        return result, status

    # Forward motion needs a saved field, a live proposal is not enough
    if not draft_field_value.strip():
        logger.warning(
            "Stripping shouldAdvance: draft.%s has not been saved yet", current.value
        )
        result.should_advance = False
        result.next_step = None
        return result, status

    if not should_allow_advancement(result, current, draft_field_value, locale):
        result.should_advance = False
        result.next_step = None
        return result, status

    canonical = next_step(current)
    if result.next_step != canonical.value:
        logger.warning("Correcting nextStep from '%s' to '%s'", result.next_step, canonical.value)
        result.next_step = canonical.value

    return result, status


def coerce_with_context(
    candidate: CandidateResult, context: CoercionContext
) -> Tuple[CandidateResult, ProposalStatus]:
    return coerce(
        candidate,
        context.session_current_step,
        draft_field_value=context.draft_field_value,
        locale=context.locale,
        is_first_attempt_for_step=context.is_first_attempt_for_step,
        is_explicit_rewrite_request=context.is_explicit_rewrite_request,
        user_text_passes_heuristics=context.user_text_passes_heuristics,
    )


def finalize_candidate(
    result: CandidateResult,
    status: ProposalStatus,
    session_current_step: Step,
) -> CoachResult:
    """Promote a coerced candidate to the authoritative CoachResult."""
    current = Step(session_current_step)

    if not result.assistant_text or not result.assistant_text.strip():
        raise ValidationFailed("Assistant text is empty", code="coach_empty_response")

    if result.step != current.value:
        raise ValidationFailed(
            f"Result step '{result.step}' does not match session step '{current.value}'",
            code="coach_step_mismatch",
        )

    payload = result.to_wire()
    payload["proposalStatus"] = status.value
    try:
        return CoachResult.model_validate(payload)
    except ValidationError as e:
        raise ValidationFailed(f"Coerced result failed validation: {e.error_count()} error(s)") from e


# --- Strict validation and salvage -----------------------------------------

def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    match = _CODE_FENCE.match(text)
    return match.group(1).strip() if match else text.strip()


def parse_candidate_text(raw_text: str) -> Dict[str, Any]:
    """Parse the model's raw text into a JSON object, or raise ValidationFailed."""
    try:
        parsed = json.loads(strip_code_fences(raw_text or ""))
    except json.JSONDecodeError as e:
        raise ValidationFailed(f"Model output is not valid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ValidationFailed("Model output is not a JSON object")
    return parsed


def validate_candidate_payload(payload: Dict[str, Any]) -> CandidateResult:
    """
    Strict structural validation of a parsed candidate.

    Raises ValidationFailed with `details["missing"] = "nextStep"` when the only
    problem is an advance request that does not say where to go.
    """
    try:
        candidate = CandidateResult.model_validate(payload)
    except ValidationError as e:
        raise ValidationFailed(f"Candidate failed schema validation: {e.error_count()} error(s)") from e

    if candidate.assistant_text is None:
        raise ValidationFailed("Candidate is missing assistantText")

    step = parse_step(candidate.step)
    if step is None:
        raise ValidationFailed(f"Candidate step {candidate.step!r} is not a known step")

    if candidate.next_step is not None and parse_step(candidate.next_step) is None:
        raise ValidationFailed(f"Candidate nextStep {candidate.next_step!r} is not a known step")

    proposal = candidate.proposed_update
    if proposal is not None and proposal.field is not None and parse_step(proposal.field) is None:
        raise ValidationFailed(f"Candidate proposedUpdate.field {proposal.field!r} is not a known step")

    if candidate.should_advance and not is_terminal(step) and candidate.next_step is None:
        raise ValidationFailed(
            "Candidate requests shouldAdvance without nextStep",
            details={"missing": "nextStep"},
        )

    return candidate


def try_salvage(raw_text: str) -> Optional[Dict[str, Any]]:
    """
    Re-parse raw model text and fill in what the step order can determine.

    Only `nextStep` (or `isComplete` on the terminal step) is ever computed.
    Returns None when the text is not a JSON object.
    """
    try:
        parsed = json.loads(strip_code_fences(raw_text or ""))
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, dict):
        return None

    step = parse_step(parsed.get("step"))
    if parsed.get("shouldAdvance") is not True or step is None:
        return parsed

    if is_terminal(step):
        parsed["shouldAdvance"] = False
        parsed["isComplete"] = True
        parsed.pop("nextStep", None)
        return parsed

    if parsed.get("nextStep") is None:
        parsed["nextStep"] = next_step(step).value

    return parsed


def resolve_candidate(raw_text: str, context: CoercionContext) -> CoachResult:
    """
    Full path from the model's final text to a trusted CoachResult.

    parse -> strict validation -> (salvage once) -> coerce -> finalize.
    """
    try:
        candidate = validate_candidate_payload(parse_candidate_text(raw_text))
    except ValidationFailed as first_error:
        logger.warning("Candidate failed validation (%s), attempting salvage", first_error.message)
        salvaged = try_salvage(raw_text)
        if salvaged is None:
            logger.error("Salvage failed: model output is not a JSON object")
            raise SalvageFailed("Could not salvage model output") from first_error
        try:
            candidate = validate_candidate_payload(salvaged)
        except ValidationFailed as e:
            logger.error("Salvage failed: %s", e.message)
            raise SalvageFailed(e.message) from e
        logger.info("Salvaged candidate for step '%s'", candidate.step)

    result, status = coerce_with_context(candidate, context)
    return finalize_candidate(result, status, context.session_current_step)
