"""
Tests for strict candidate validation, salvage and the full resolve path.
"""

import json

import pytest

from argument_coach.coercion import (
    CoercionContext,
    parse_candidate_text,
    resolve_candidate,
    strip_code_fences,
    try_salvage,
    validate_candidate_payload,
)
from argument_coach.errors import SalvageFailed, ValidationFailed
from argument_coach.steps import Step

GOOD_CLAIM = "Our city should build protected bike lanes downtown."


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_parse_rejects_non_objects():
    with pytest.raises(ValidationFailed):
        parse_candidate_text("not json")
    with pytest.raises(ValidationFailed):
        parse_candidate_text("[1, 2]")


class TestStrictValidation:
    def test_missing_next_step_on_advance_is_flagged(self):
        with pytest.raises(ValidationFailed) as info:
            validate_candidate_payload(
                {"assistantText": "Great.", "step": "claim", "shouldAdvance": True}
            )
        assert info.value.details == {"missing": "nextStep"}

    def test_terminal_advance_without_next_step_passes(self):
        candidate = validate_candidate_payload(
            {"assistantText": "Done.", "step": "rebuttal", "shouldAdvance": True}
        )
        assert candidate.should_advance is True

    @pytest.mark.parametrize(
        "payload",
        [
            {"step": "claim"},
            {"assistantText": "Hi", "step": "thesis"},
            {"assistantText": "Hi", "step": "claim", "nextStep": "conclusion"},
            {"assistantText": "Hi", "step": "claim", "proposedUpdate": {"field": "title", "value": "x"}},
            {"assistantText": "Hi", "step": "claim", "confidence": 3},
        ],
    )
    def test_structural_errors(self, payload):
        with pytest.raises(ValidationFailed):
            validate_candidate_payload(payload)


class TestSalvage:
    def test_fills_in_next_step(self):
        salvaged = try_salvage('{"assistantText": "Go on.", "step": "warrant", "shouldAdvance": true}')
        assert salvaged["nextStep"] == "groundsBacking"

    def test_terminal_step_completes(self):
        salvaged = try_salvage(
            '```json\n{"assistantText": "Done.", "step": "rebuttal", "shouldAdvance": true, "nextStep": "claim"}\n```'
        )
        assert salvaged["shouldAdvance"] is False
        assert salvaged["isComplete"] is True
        assert "nextStep" not in salvaged

    def test_non_json_cannot_be_salvaged(self):
        assert try_salvage("Sorry, I can't help with that.") is None
        assert try_salvage('"just a string"') is None


class TestResolve:
    def context(self, **overrides):
        values = dict(session_current_step=Step.CLAIM, draft_field_value=GOOD_CLAIM)
        values.update(overrides)
        return CoercionContext(**values)

    def test_salvaged_advance_is_coerced(self):
        raw = json.dumps(
            {"assistantText": "Strong claim.", "step": "claim", "shouldAdvance": True, "confidence": 0.9}
        )
        result = resolve_candidate(raw, self.context())
        assert result.should_advance is True
        assert result.next_step is Step.GROUNDS

    def test_garbage_raises_salvage_failed(self):
        with pytest.raises(SalvageFailed) as info:
            resolve_candidate("definitely not json", self.context())
        assert info.value.code == "coach_validation_failed"

    def test_unsalvageable_structure_raises_salvage_failed(self):
        with pytest.raises(SalvageFailed):
            resolve_candidate('{"step": "claim", "shouldAdvance": true}', self.context())

    def test_wire_shape(self):
        raw = json.dumps(
            {
                "assistantText": " What evidence supports it? ",
                "step": "grounds",
                "nextQuestion": "Do you have numbers?",
            }
        )
        wire = resolve_candidate(raw, self.context()).to_wire()
        assert wire["step"] == "claim"
        assert wire["assistantText"] == "What evidence supports it?"
        assert wire["shouldAdvance"] is False
        assert wire["proposalStatus"] == "none"
