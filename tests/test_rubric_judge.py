"""Tests for the rubric judge: prompt building, JSON extraction, score parsing."""

import json

import pytest

from conftest import FakeProvider, make_output
from rubric_eval.pipeline.types import TestCase
from rubric_eval.scoring import RubricJudge, clamp_score, extract_json
from utils.exceptions import EvaluationCallError, JudgeParseError


def _reply(empathy=4, clarity=5, **extra) -> str:
    payload = {
        "empathy": {"reasoning_for_score": "Validates feelings", "score": empathy},
        "clarity": {"reasoning_for_score": "Concrete steps", "score": clarity},
        "overall_evaluation": "Solid answer",
        "suggestions": ["Name the feeling", "Offer a script"],
    }
    payload.update(extra)
    return json.dumps(payload)


@pytest.fixture
def test_case() -> TestCase:
    return TestCase(
        id="t1",
        input="My toddler hits other kids.",
        context="Parent of a 2 year old",
        use_case="behaviour",
    )


class TestExtractJson:
    def test_code_block(self) -> None:
        assert extract_json('Here:\n```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_object(self) -> None:
        assert extract_json('  {"a": 1}  ') == '{"a": 1}'

    def test_object_in_prose(self) -> None:
        assert extract_json('Sure! {"a": {"b": 2}} Hope that helps.') == '{"a": {"b": 2}}'

    def test_no_object(self) -> None:
        assert extract_json("I cannot score this.") is None


class TestClampScore:
    @pytest.mark.parametrize("raw,expected", [(0, 1.0), (3, 3.0), (4.5, 4.5), (9, 5.0)])
    def test_clamps_to_rubric_scale(self, raw, expected) -> None:
        assert clamp_score(raw) == expected


class TestBuildPrompt:
    def test_includes_case_output_and_criteria(self, test_case, criteria) -> None:
        judge = RubricJudge(FakeProvider())
        prompt = judge.build_prompt(test_case, make_output("m1", "Try redirecting."), criteria)

        assert "Try redirecting." in prompt
        assert "Use Case: behaviour" in prompt
        assert "User Context: Parent of a 2 year old" in prompt
        assert "1. Empathy (1-5): Acknowledges feelings" in prompt
        assert "   5 = Warm and validating" in prompt
        assert '"clarity": {' in prompt

    def test_missing_use_case_is_general(self, criteria) -> None:
        prompt = RubricJudge(FakeProvider()).build_prompt(
            TestCase(id="x", input="hi"), make_output("m1"), criteria
        )
        assert "Use Case: general" in prompt


class TestParseResponse:
    def test_maps_scores_to_criterion_ids(self, criteria) -> None:
        evaluation = RubricJudge(FakeProvider()).parse_response(_reply(), "m1", criteria)
        assert evaluation.model_id == "m1"
        assert evaluation.rubric_scores == {"empathy": 4.0, "clarity": 5.0}
        assert evaluation.feedback == "Solid answer"
        assert evaluation.suggestions == ["Name the feeling", "Offer a script"]

    def test_out_of_range_scores_are_clamped(self, criteria) -> None:
        evaluation = RubricJudge(FakeProvider()).parse_response(
            _reply(empathy=7, clarity=0), "m1", criteria
        )
        assert evaluation.rubric_scores == {"empathy": 5.0, "clarity": 1.0}

    def test_feedback_falls_back_to_reasoning(self, criteria) -> None:
        evaluation = RubricJudge(FakeProvider()).parse_response(
            _reply(overall_evaluation="", suggestions="One tip"), "m1", criteria
        )
        assert evaluation.feedback == "Empathy: Validates feelings\nClarity: Concrete steps"
        assert evaluation.suggestions == ["One tip"]

    def test_missing_score_raises(self, criteria) -> None:
        text = json.dumps({"empathy": {"score": 3}, "clarity": {"reasoning_for_score": "?"}})
        with pytest.raises(JudgeParseError, match="Clarity"):
            RubricJudge(FakeProvider()).parse_response(text, "m1", criteria)

    def test_boolean_score_raises(self, criteria) -> None:
        with pytest.raises(JudgeParseError):
            RubricJudge(FakeProvider()).parse_response(_reply(empathy=True), "m1", criteria)

    def test_invalid_json_raises(self, criteria) -> None:
        with pytest.raises(JudgeParseError, match="Invalid JSON"):
            RubricJudge(FakeProvider()).parse_response("{not json}", "m1", criteria)

    def test_parse_error_is_an_evaluation_failure(self) -> None:
        assert issubclass(JudgeParseError, EvaluationCallError)


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_sends_prompt_at_judge_config(self, test_case, criteria) -> None:
        provider = FakeProvider("judge-model", replies=[f"```json\n{_reply()}\n```"])
        judge = RubricJudge(provider)
        evaluation = await judge.evaluate(test_case, make_output("m1"), criteria)

        assert evaluation.rubric_scores["empathy"] == 4.0
        assert judge.config.temperature == 0.0
        assert judge.judge_model == "judge-model"
        [messages] = provider.received
        assert messages[0].role == "user"
        assert "My toddler hits other kids." in messages[0].content

    @pytest.mark.asyncio
    async def test_failed_provider_call_raises(self, test_case, criteria) -> None:
        judge = RubricJudge(FakeProvider(replies=[None]))
        with pytest.raises(JudgeParseError, match="connection refused") as info:
            await judge.evaluate(test_case, make_output("m1"), criteria)
        assert info.value.test_case_id == "t1"
