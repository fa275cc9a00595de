"""End-to-end tests for run_pipeline with fake remote operations."""

import asyncio
import json
import random

import pytest

from conftest import FakeEvaluateOperation, FakeGenerateOperation, make_output, make_test_cases
from rubric_eval.assignment import AssistantSlot, SlotType
from rubric_eval.pipeline import PipelineConfig, PipelinePhase, run_pipeline
from rubric_eval.pipeline.orchestrator import PipelineResult
from rubric_eval.pipeline.types import Effectiveness, TestCase, TestCaseWithModelOutputs
from utils.exceptions import FatalConstructionError


def _three_output_slots():
    return [
        AssistantSlot(i, ["ollama/a", "ollama/b", "ollama/c"], required_to_show=True)
        for i in range(3)
    ] + [AssistantSlot("judge", ["google/j"], type=SlotType.EVALUATION)]


class TestRunPipeline:
    @pytest.mark.asyncio
    async def test_full_run_scores_every_output(self, slots, criteria) -> None:
        cases = make_test_cases(3)
        result = await run_pipeline(
            cases,
            criteria,
            slots,
            "unique_model",
            generate_op=FakeGenerateOperation(),
            evaluate_op=FakeEvaluateOperation(default_score=5.0),
        )

        assert [tc.id for tc in result.test_cases] == [c.id for c in cases]
        assert result.failures == []
        assert result.state.phase is PipelinePhase.COMPLETE
        for tc in result.test_cases:
            assert [o.model_id for o in tc.model_outputs] == [
                "ollama/qwen2.5:32b",
                "google/gemini-2.5-flash",
            ]
            assert all(o.rubric_scores == {"empathy": 5.0, "clarity": 5.0} for o in tc.model_outputs)
        assert {o.effectiveness for o in result.outcomes()} == {Effectiveness.HIGH}

    @pytest.mark.asyncio
    async def test_three_cases_two_generation_failures(self, criteria) -> None:
        events = []
        cases = make_test_cases(3)
        result = await run_pipeline(
            cases,
            criteria,
            _three_output_slots(),
            "unique_model",
            generate_op=FakeGenerateOperation(fail_ids={"tc-0", "tc-2"}, counts={"tc-1": 2}),
            evaluate_op=FakeEvaluateOperation(),
            on_progress=lambda *e: events.append(e),
        )

        assert len(result.test_cases) == 3
        assert [tc.id for tc in result.test_cases] == ["tc-0", "tc-1", "tc-2"]
        assert result.test_cases[0].model_outputs == []
        assert result.test_cases[2].model_outputs == []
        assert len(result.test_cases[1].model_outputs) == 2
        assert result.expected_outputs == 6
        assert events[0] == (PipelinePhase.GENERATING, 6, 6, 2)
        assert events[1] == (PipelinePhase.EVALUATING, 2, 2, 2)
        assert len(events) == 2
        assert [f.test_case_id for f in result.generation_failures] == ["tc-0", "tc-2"]

    @pytest.mark.asyncio
    async def test_evaluation_failure_keeps_generated_text(self, slots, criteria) -> None:
        result = await run_pipeline(
            make_test_cases(2),
            criteria,
            slots,
            "unique_model",
            generate_op=FakeGenerateOperation(),
            evaluate_op=FakeEvaluateOperation(fail_ids={"tc-1"}),
        )

        unscored = result.test_cases[1]
        assert all(o.output.endswith("Answer for tc-1") for o in unscored.model_outputs)
        assert all(o.rubric_scores == {} for o in unscored.model_outputs)
        assert [f.test_case_id for f in result.evaluation_failures] == ["tc-1"]
        assert result.test_cases[0].model_outputs[0].is_scored

    @pytest.mark.asyncio
    async def test_empty_test_cases(self, slots, criteria) -> None:
        gen = FakeGenerateOperation()
        result = await run_pipeline(
            [], criteria, slots, "random_selection", gen, FakeEvaluateOperation()
        )
        assert result.test_cases == []
        assert result.failures == []
        assert gen.calls == []

    @pytest.mark.asyncio
    async def test_random_strategy_is_reproducible_with_rng(self, slots, criteria) -> None:
        runs = [
            await run_pipeline(
                make_test_cases(1),
                criteria,
                slots,
                "random_selection",
                FakeGenerateOperation(),
                FakeEvaluateOperation(),
                rng=random.Random(3),
            )
            for _ in range(2)
        ]
        assert runs[0].selected_models == runs[1].selected_models

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_share_state(self, slots, criteria) -> None:
        a, b = await asyncio.gather(
            run_pipeline(
                make_test_cases(2, "a"), criteria, slots, "unique_model",
                FakeGenerateOperation(), FakeEvaluateOperation(), run_id="run-a",
            ),
            run_pipeline(
                make_test_cases(5, "b"), criteria, slots, "unique_model",
                FakeGenerateOperation(), FakeEvaluateOperation(), run_id="run-b",
            ),
        )
        assert [tc.id for tc in a.test_cases] == ["a-0", "a-1"]
        assert len(b.test_cases) == 5
        assert a.expected_outputs == 4
        assert b.expected_outputs == 10
        assert a.state is not b.state

    @pytest.mark.asyncio
    async def test_incremental_progress(self, slots, criteria) -> None:
        events = []
        await run_pipeline(
            make_test_cases(2),
            criteria,
            slots,
            "unique_model",
            FakeGenerateOperation(),
            FakeEvaluateOperation(),
            on_progress=lambda *e: events.append(e),
            config=PipelineConfig(incremental_progress=True),
        )
        phases = [e[0] for e in events]
        assert phases.count(PipelinePhase.GENERATING) == 3
        assert phases.count(PipelinePhase.EVALUATING) == 3
        assert phases.index(PipelinePhase.EVALUATING) == 3

    @pytest.mark.asyncio
    async def test_to_dict_is_json_serializable(self, slots, criteria) -> None:
        result = await run_pipeline(
            make_test_cases(1), criteria, slots, "unique_model",
            FakeGenerateOperation(), FakeEvaluateOperation(), run_id="export",
        )
        data = json.loads(json.dumps(result.to_dict()))
        assert data["run_id"] == "export"
        assert data["test_cases"][0]["outcome"]["effectiveness"] == "medium"
        assert data["state"]["phase"] == "complete"

    def test_to_dict_keeps_outcomes_aligned_for_duplicate_ids(self) -> None:
        result = PipelineResult(
            run_id="dup-ids",
            test_cases=[
                TestCaseWithModelOutputs(
                    id="dup", input="a", context="", model_outputs=[make_output("m")]
                ),
                TestCaseWithModelOutputs(
                    id="dup",
                    input="b",
                    context="",
                    model_outputs=[make_output("m", scores={"c1": 5.0})],
                ),
            ],
        )
        data = result.to_dict()
        assert [tc["outcome"]["effectiveness"] for tc in data["test_cases"]] == ["low", "high"]
        assert [tc["input"] for tc in data["test_cases"]] == ["a", "b"]


class TestConstructionFailures:
    @pytest.mark.asyncio
    async def test_empty_criteria_aborts_before_generation(self, slots) -> None:
        gen = FakeGenerateOperation()
        with pytest.raises(FatalConstructionError):
            await run_pipeline(
                make_test_cases(2), [], slots, "unique_model", gen, FakeEvaluateOperation()
            )
        assert gen.calls == []

    @pytest.mark.asyncio
    async def test_malformed_test_case_aborts(self, slots, criteria) -> None:
        gen = FakeGenerateOperation()
        with pytest.raises(FatalConstructionError):
            await run_pipeline(
                [TestCase(id="x", input="")], criteria, slots, "unique_model",
                gen, FakeEvaluateOperation(),
            )
        assert gen.calls == []

    @pytest.mark.asyncio
    async def test_missing_operation_aborts(self, slots, criteria) -> None:
        with pytest.raises(FatalConstructionError):
            await run_pipeline(
                make_test_cases(1), criteria, slots, "unique_model", FakeGenerateOperation(), None
            )

    @pytest.mark.asyncio
    async def test_no_output_slots_aborts(self, criteria) -> None:
        judge_only = [AssistantSlot("judge", ["google/j"], type=SlotType.EVALUATION)]
        with pytest.raises(FatalConstructionError, match="output-generation"):
            await run_pipeline(
                make_test_cases(1), criteria, judge_only, "unique_model",
                FakeGenerateOperation(), FakeEvaluateOperation(),
            )
