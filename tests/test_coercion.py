"""
Tests for the candidate coercion pipeline.
"""

import pytest

from argument_coach.agents.coach.schemas import CandidateResult, ProposalStatus
from argument_coach.coercion import (
    CoercionContext,
    coerce,
    coerce_with_context,
    finalize_candidate,
)
from argument_coach.errors import ValidationFailed
from argument_coach.steps import STEP_ORDER, Step

GOOD_CLAIM = "Our city should build protected bike lanes downtown."
GOOD_GROUNDS = "A 2022 city survey found 40% of residents would cycle with safer lanes."


def candidate(**fields) -> CandidateResult:
    payload = {"assistantText": "  Nice work.  ", "step": "claim"}
    payload.update(fields)
    return CandidateResult.model_validate(payload)


class TestStepPinning:
    def test_wrong_step_claim_is_pinned_and_advance_stripped(self):
        result, status = coerce(
            candidate(step="grounds", shouldAdvance=True, nextStep="qualifier"),
            Step.CLAIM,
            draft_field_value="",
        )
        assert result.step == "claim"
        assert result.should_advance is False
        assert result.next_step is None
        assert status is ProposalStatus.NONE

    def test_assistant_text_is_trimmed(self):
        result, _ = coerce(candidate(), Step.CLAIM)
        assert result.assistant_text == "Nice work."

    def test_input_is_not_mutated(self):
        original = candidate(step="grounds")
        coerce(original, Step.CLAIM)
        assert original.step == "grounds"


class TestProposalSanitation:
    def test_wrong_field_is_stripped(self):
        result, status = coerce(
            candidate(proposedUpdate={"field": "grounds", "value": GOOD_GROUNDS}), Step.CLAIM
        )
        assert result.proposed_update is None
        assert status is ProposalStatus.STRIPPED_WRONG_STEP

    def test_blank_value_is_stripped(self):
        result, status = coerce(
            candidate(proposedUpdate={"field": "claim", "value": "   "}), Step.CLAIM
        )
        assert result.proposed_update is None
        assert status is ProposalStatus.STRIPPED_EMPTY_VALUE

    def test_value_and_rationale_are_trimmed(self):
        result, status = coerce(
            candidate(proposedUpdate={"field": "claim", "value": f"  {GOOD_CLAIM} ", "rationale": " tighter "}),
            Step.CLAIM,
        )
        assert status is ProposalStatus.KEPT
        assert result.proposed_update.value == GOOD_CLAIM
        assert result.proposed_update.rationale == "tighter"


class TestFirstAttemptBias:
    PROPOSAL = {"field": "claim", "value": GOOD_CLAIM}

    def test_low_confidence_is_stripped(self):
        result, status = coerce(
            candidate(proposedUpdate=self.PROPOSAL, confidence=0.79),
            Step.CLAIM,
            is_first_attempt_for_step=True,
            user_text_passes_heuristics=True,
        )
        assert result.proposed_update is None
        assert status is ProposalStatus.STRIPPED_LOW_CONFIDENCE

    def test_high_confidence_is_kept(self):
        result, status = coerce(
            candidate(proposedUpdate=self.PROPOSAL, confidence=0.8),
            Step.CLAIM,
            is_first_attempt_for_step=True,
        )
        assert result.proposed_update is not None
        assert status is ProposalStatus.KEPT

    def test_no_confidence_needs_passing_user_text(self):
        stripped, status = coerce(
            candidate(proposedUpdate=self.PROPOSAL),
            Step.CLAIM,
            is_first_attempt_for_step=True,
            user_text_passes_heuristics=False,
        )
        assert stripped.proposed_update is None
        assert status is ProposalStatus.STRIPPED_FIRST_ATTEMPT_NO_CONFIDENCE

        kept, status = coerce(
            candidate(proposedUpdate=self.PROPOSAL),
            Step.CLAIM,
            is_first_attempt_for_step=True,
            user_text_passes_heuristics=True,
        )
        assert kept.proposed_update is not None
        assert status is ProposalStatus.KEPT

    def test_explicit_rewrite_request_skips_the_bias(self):
        result, status = coerce(
            candidate(proposedUpdate=self.PROPOSAL, confidence=0.3),
            Step.CLAIM,
            is_first_attempt_for_step=True,
            is_explicit_rewrite_request=True,
        )
        assert result.proposed_update is not None
        assert status is ProposalStatus.KEPT

    def test_later_attempts_are_not_biased(self):
        result, status = coerce(
            candidate(proposedUpdate=self.PROPOSAL, confidence=0.3),
            Step.CLAIM,
            is_first_attempt_for_step=False,
        )
        assert result.proposed_update is not None
        assert status is ProposalStatus.KEPT


class TestAdvancement:
    def test_terminal_step_completes_instead_of_advancing(self):
        result, _ = coerce(
            candidate(step="rebuttal", shouldAdvance=True, nextStep="claim"),
            Step.REBUTTAL,
            draft_field_value="Unless winter weather keeps riders away for months.",
        )
        assert result.should_advance is False
        assert result.is_complete is True
        assert result.next_step is None

    def test_blank_draft_field_blocks_advance_even_with_proposal(self):
        result, _ = coerce(
            candidate(
                shouldAdvance=True,
                nextStep="grounds",
                confidence=0.95,
                proposedUpdate={"field": "claim", "value": GOOD_CLAIM},
            ),
            Step.CLAIM,
            draft_field_value="   ",
        )
        assert result.should_advance is False
        assert result.next_step is None

    def test_saved_passing_field_advances_to_canonical_next_step(self):
        result, _ = coerce(
            candidate(shouldAdvance=True, nextStep="qualifier", confidence=0.9),
            Step.CLAIM,
            draft_field_value=GOOD_CLAIM,
        )
        assert result.should_advance is True
        assert result.next_step == "grounds"

    def test_failing_heuristic_blocks_advance(self):
        result, _ = coerce(
            candidate(shouldAdvance=True, nextStep="grounds"),
            Step.CLAIM,
            draft_field_value="Studies show bikes are good for cities.",
        )
        assert result.should_advance is False
        assert result.next_step is None

    def test_low_confidence_blocks_advance(self):
        result, _ = coerce(
            candidate(shouldAdvance=True, nextStep="grounds", confidence=0.59),
            Step.CLAIM,
            draft_field_value=GOOD_CLAIM,
        )
        assert result.should_advance is False


@pytest.mark.parametrize("session_step", STEP_ORDER)
@pytest.mark.parametrize(
    "payload",
    [
        {"step": "grounds", "shouldAdvance": True, "nextStep": "qualifier"},
        {"step": "rebuttal", "shouldAdvance": True, "confidence": 0.2},
        {"step": "claim", "proposedUpdate": {"field": "warrant", "value": "x"}},
        {"step": "warrant", "proposedUpdate": {"field": "qualifier", "value": "Probably so"}, "confidence": 0.9},
        {"step": "qualifier", "shouldAdvance": True, "proposedUpdate": {"field": "qualifier", "value": " "}},
    ],
)
def test_invariants_and_idempotence(session_step, payload):
    context = CoercionContext(
        session_current_step=session_step,
        draft_field_value="Probably so, in most neighborhoods",
        is_first_attempt_for_step=True,
    )
    once, status = coerce_with_context(candidate(**payload), context)
    twice, _ = coerce_with_context(once, context)

    assert twice.model_dump() == once.model_dump()
    assert once.step == session_step.value
    if once.proposed_update is not None:
        assert once.proposed_update.field == session_step.value
    if session_step is Step.REBUTTAL:
        assert once.should_advance is not True
    assert isinstance(status, ProposalStatus)


class TestFinalize:
    def test_promotes_to_coach_result(self):
        result, status = coerce(
            candidate(proposedUpdate={"field": "claim", "value": GOOD_CLAIM}), Step.CLAIM
        )
        final = finalize_candidate(result, status, Step.CLAIM)
        assert final.step is Step.CLAIM
        assert final.proposal_status is ProposalStatus.KEPT
        wire = final.to_wire()
        assert wire["assistantText"] == "Nice work."
        assert wire["proposedUpdate"]["field"] == "claim"
        assert "nextStep" not in wire

    def test_blank_assistant_text_is_an_empty_response(self):
        result, status = coerce(candidate(assistantText="   "), Step.CLAIM)
        with pytest.raises(ValidationFailed) as info:
            finalize_candidate(result, status, Step.CLAIM)
        assert info.value.code == "coach_empty_response"

    def test_step_mismatch_is_reported(self):
        result, status = coerce(candidate(), Step.CLAIM)
        with pytest.raises(ValidationFailed) as info:
            finalize_candidate(result, status, Step.GROUNDS)
        assert info.value.code == "coach_step_mismatch"
