"""
Pipeline Orchestrator

Runs one generation/evaluation pass:

    assign_models -> GenerationPhase -> EvaluationPhase -> PipelineResult

Everything that can be checked without a remote call (test cases, criteria,
operations, model assignment) is checked first; a FatalConstructionError
there is the only way a run aborts. Per-test-case call failures are
collected in PipelineResult.failures and never drop a test case.

Each call builds its own ProgressAggregator, so concurrent runs never share
progress state. Cancelling the task awaiting run_pipeline cancels every
in-flight remote call.

Usage:
    result = await run_pipeline(
        test_cases, criteria, slots, "unique_model",
        generate_op=ProviderGenerateOperation(),
        evaluate_op=JudgeEvaluateOperation(),
        on_progress=lambda phase, done, total, idx: print(phase.value, done, total),
    )
    for outcome in result.outcomes():
        print(outcome.test_case_id, outcome.effectiveness.value)
"""

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from utils.exceptions import FatalConstructionError
from utils.logging_config import DebugTimer, LogContext

from ..assignment import AssignmentStrategy, AssistantSlot, ModelConfig, SelectedModel, assign_models
from .config import PipelineConfig
from .effectiveness import RubricOutcome
from .evaluation import EvaluationPhase, validate_criteria
from .generation import GenerationPhase, validate_test_cases
from .operations import AssignmentAware, EvaluateOperation, GenerateOperation, GenerationContext
from .progress import ProgressAggregator, ProgressCallback
from .types import CallFailure, Criterion, PipelinePhase, RunState, TestCase, TestCaseWithModelOutputs

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything a finished run produced, index-aligned with its input."""

    run_id: str
    test_cases: List[TestCaseWithModelOutputs]
    selected_models: List[SelectedModel] = field(default_factory=list)
    failures: List[CallFailure] = field(default_factory=list)
    state: RunState = field(default_factory=RunState)
    # Generation total after the first-success revision
    expected_outputs: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    duration_ms: float = 0.0

    @property
    def generation_failures(self) -> List[CallFailure]:
        return [f for f in self.failures if f.phase == PipelinePhase.GENERATING]

    @property
    def evaluation_failures(self) -> List[CallFailure]:
        return [f for f in self.failures if f.phase == PipelinePhase.EVALUATING]

    @property
    def failure_reasons(self) -> List[str]:
        return [str(f) for f in self.failures]

    def outcomes(self) -> List[RubricOutcome]:
        return [RubricOutcome.from_test_case(tc) for tc in self.test_cases]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
            "state": self.state.to_dict(),
            "expected_outputs": self.expected_outputs,
            "selected_models": [
                {
                    "assistant_id": m.assistant_id,
                    "model_id": m.model_id,
                    "provider": m.provider,
                    "model": m.model,
                    "type": m.type.value,
                }
                for m in self.selected_models
            ],
            "test_cases": [
                {**tc.to_dict(), "outcome": outcome.to_dict()}
                for tc, outcome in zip(self.test_cases, self.outcomes())
            ],
            "failures": [f.to_dict() for f in self.failures],
        }


def _bind(operation: Any, selected: List[SelectedModel]) -> Any:
    if isinstance(operation, AssignmentAware):
        return operation.with_assignment(selected)
    return operation


async def run_pipeline(
    test_cases: Sequence[TestCase],
    criteria: Sequence[Criterion],
    assistant_slots: List[AssistantSlot],
    strategy: Union[AssignmentStrategy, str],
    generate_op: GenerateOperation,
    evaluate_op: EvaluateOperation,
    on_progress: Optional[ProgressCallback] = None,
    models: Optional[Mapping[str, ModelConfig]] = None,
    config: Optional[PipelineConfig] = None,
    rng: Optional[random.Random] = None,
    run_id: Optional[str] = None,
) -> PipelineResult:
    """
    Assign models, generate outputs, and score them against the rubric.

    Args:
        test_cases: Prompts to run; result order mirrors this order.
        criteria: Rubric criteria (non-empty, unique ids).
        assistant_slots: Slots to bind to models for this run.
        strategy: "random_selection" or "unique_model".
        generate_op: Remote generate operation.
        evaluate_op: Remote evaluate operation.
        on_progress: Called as (phase, completed, total, index) when each
                     phase settles (and per call with incremental_progress).
        models: Optional model catalog for assignment.
        config: Run tuning; defaults to PipelineConfig().
        rng: Random source for random_selection.
        run_id: Identifier attached to logs; generated when omitted.

    Returns:
        PipelineResult with one entry per test case plus aggregated failures.

    Raises:
        FatalConstructionError: Malformed input detected before any call.
    """
    config = config or PipelineConfig()
    run_id = run_id or uuid.uuid4().hex[:12]
    test_cases = list(test_cases)
    criteria = list(criteria)
    started_at = datetime.now()

    with LogContext(run_id=run_id), DebugTimer("pipeline", logger) as timer:
        if generate_op is None:
            raise FatalConstructionError("No generate operation supplied")
        if evaluate_op is None:
            raise FatalConstructionError("No evaluate operation supplied")
        validate_test_cases(test_cases)
        validate_criteria(criteria)

        selected = assign_models(assistant_slots, strategy, models=models, rng=rng)
        generate_op = _bind(generate_op, selected)
        evaluate_op = _bind(evaluate_op, selected)

        context = GenerationContext(selected_models=selected, config=config, run_id=run_id)
        if test_cases:
            context.validate()
        timer.checkpoint("construction")

        logger.info(
            f"Pipeline run {run_id}: {len(test_cases)} test cases, "
            f"{len(criteria)} criteria, {len(selected)} assistants"
        )

        aggregator = ProgressAggregator(on_progress, incremental=config.incremental_progress)
        generation = await GenerationPhase(
            generate_op, aggregator, max_concurrent=config.max_concurrent
        ).run(test_cases, context)
        expected_outputs = aggregator.state.total_expected
        timer.checkpoint("generation")

        evaluation = await EvaluationPhase(
            evaluate_op, aggregator, max_concurrent=config.max_concurrent
        ).run(generation.test_cases_with_outputs, criteria)
        timer.checkpoint("evaluation")

        await aggregator.complete()

    failures = generation.failures + evaluation.failures
    logger.info(
        f"Pipeline run {run_id} complete: {len(test_cases)} test cases, "
        f"{len(failures)} failed calls in {timer.elapsed_ms:.0f}ms"
    )

    return PipelineResult(
        run_id=run_id,
        test_cases=evaluation.test_cases_with_outputs,
        selected_models=selected,
        failures=failures,
        state=aggregator.state,
        expected_outputs=expected_outputs,
        started_at=started_at,
        duration_ms=timer.elapsed_ms,
    )
