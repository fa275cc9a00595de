"""Tests for effectiveness classification and refinement suggestions."""

from dataclasses import replace

import pytest

from conftest import make_output
from rubric_eval.pipeline.effectiveness import (
    FORMAT_SUGGESTION,
    MORE_CONTEXT_SUGGESTION,
    NO_OUTPUTS_SUGGESTION,
    RubricOutcome,
    average_score,
    classify_effectiveness,
    classify_scores,
    refinement_suggestions,
)
from rubric_eval.pipeline.types import Effectiveness, TestCaseWithModelOutputs

SECTIONED = "===== SECTION 1: REMINDER =====\nBody"


def _case(*outputs) -> TestCaseWithModelOutputs:
    return TestCaseWithModelOutputs(id="t", input="q", context="", model_outputs=list(outputs))


class TestClassifyScores:
    @pytest.mark.parametrize(
        "scores,expected",
        [
            ([5, 5, 4, 4], Effectiveness.HIGH),
            ([3, 4], Effectiveness.MEDIUM),
            ([2, 3], Effectiveness.LOW),
            ([], Effectiveness.LOW),
        ],
    )
    def test_thresholds(self, scores, expected) -> None:
        assert classify_scores(scores) is expected

    def test_averages_across_models(self) -> None:
        case = _case(
            make_output("a", scores={"c1": 5, "c2": 5}),
            make_output("b", scores={"c1": 4, "c2": 4}),
        )
        assert average_score(case) == 4.5
        assert classify_effectiveness(case) is Effectiveness.HIGH

    def test_unscored_case_is_low(self) -> None:
        case = _case(make_output("a"))
        assert average_score(case) is None
        assert classify_effectiveness(case) is Effectiveness.LOW


class TestRefinementSuggestions:
    def test_no_outputs(self) -> None:
        assert refinement_suggestions(_case()) == [NO_OUTPUTS_SUGGESTION]

    def test_model_suggestions_deduplicated_in_first_seen_order(self) -> None:
        a = make_output("a", SECTIONED, scores={"c1": 5})
        b = make_output("b", SECTIONED, scores={"c1": 5})
        a = replace(a, suggestions=["s2", "s1", "s2"])
        b = replace(b, suggestions=["s1", "s3", "s4"])
        assert refinement_suggestions(_case(a, b)) == ["s2", "s1", "s3"]

    def test_low_scores_add_context_hint(self) -> None:
        case = _case(make_output("a", SECTIONED, scores={"c1": 2, "c2": 3}))
        assert refinement_suggestions(case) == [MORE_CONTEXT_SUGGESTION]

    def test_missing_section_marker_adds_format_hint(self) -> None:
        case = _case(make_output("a", "plain text", scores={"c1": 5}))
        assert refinement_suggestions(case) == [FORMAT_SUGGESTION]

    def test_hints_need_scores(self) -> None:
        case = _case(make_output("a", "plain text"))
        assert refinement_suggestions(case) == []

    def test_total_capped_at_five(self) -> None:
        out = make_output("a", "plain", scores={"c1": 1})
        out = replace(out, suggestions=["1", "2", "3", "4"])
        suggestions = refinement_suggestions(_case(out))
        assert suggestions == ["1", "2", "3", MORE_CONTEXT_SUGGESTION, FORMAT_SUGGESTION]


class TestRubricOutcome:
    def test_from_test_case(self) -> None:
        outcome = RubricOutcome.from_test_case(
            _case(make_output("a", SECTIONED, scores={"c1": 3, "c2": 4}))
        )
        assert outcome.test_case_id == "t"
        assert outcome.effectiveness is Effectiveness.MEDIUM
        assert outcome.to_dict()["average_score"] == 3.5
