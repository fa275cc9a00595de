"""
Evaluation Phase

Issues one evaluate call per test case that has outputs, carrying those
outputs and the full criteria list. Returned evaluations are merged back
onto the outputs by model_id with dataclasses.replace, in order when an id
repeats; the output text is
never touched. A failed call leaves that test case's outputs as they were.
"""

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field, replace
from typing import Deque, Dict, List, Optional

from utils.exceptions import EvaluationCallError, FatalConstructionError
from utils.logging_config import DebugTimer, LogContext

from .operations import EvaluateOperation
from .progress import ProgressAggregator
from .types import (
    CallFailure,
    Criterion,
    EvaluationReply,
    ModelOutput,
    OutputEvaluation,
    PipelinePhase,
    TestCaseWithModelOutputs,
)

logger = logging.getLogger(__name__)


@dataclass
class EvaluationOutcome:
    """Index-aligned scored test cases plus evaluation failures."""

    test_cases_with_outputs: List[TestCaseWithModelOutputs] = field(default_factory=list)
    failures: List[CallFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def validate_criteria(criteria: List[Criterion]) -> None:
    """Reject an empty rubric or duplicate criterion ids before any call."""
    if not criteria:
        raise FatalConstructionError("At least one rubric criterion is required")
    seen = set()
    for criterion in criteria:
        if not isinstance(criterion, Criterion):
            raise FatalConstructionError(
                f"Expected Criterion, got {type(criterion).__name__}"
            )
        if not str(criterion.id).strip():
            raise FatalConstructionError(f"Criterion {criterion.name!r} is missing an id")
        if criterion.id in seen:
            raise FatalConstructionError(f"Duplicate criterion id: {criterion.id}")
        seen.add(criterion.id)


def merge_evaluations(
    outputs: List[ModelOutput], evaluations: List[OutputEvaluation]
) -> List[ModelOutput]:
    """New outputs with scores, feedback and suggestions replaced by model_id.

    Outputs sharing a model_id take that id's evaluations in order.
    """
    by_model: Dict[str, Deque[OutputEvaluation]] = defaultdict(deque)
    for evaluation in evaluations:
        by_model[evaluation.model_id].append(evaluation)
    known = {o.model_id for o in outputs}
    unknown = [model_id for model_id in by_model if model_id not in known]
    if unknown:
        logger.warning(f"Ignoring evaluations for unknown models: {', '.join(unknown)}")

    merged = []
    for output in outputs:
        pending = by_model.get(output.model_id)
        if not pending:
            merged.append(output)
            continue
        evaluation = pending.popleft()
        merged.append(
            replace(
                output,
                rubric_scores=dict(evaluation.rubric_scores),
                feedback=evaluation.feedback,
                suggestions=list(evaluation.suggestions),
            )
        )
    return merged


class EvaluationPhase:
    """Fan-out of evaluate calls, one per test case with outputs."""

    def __init__(
        self,
        operation: EvaluateOperation,
        aggregator: ProgressAggregator,
        max_concurrent: Optional[int] = None,
    ):
        self.operation = operation
        self.aggregator = aggregator
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    async def _invoke(
        self, test_case: TestCaseWithModelOutputs, criteria: List[Criterion]
    ) -> EvaluationReply:
        outputs = list(test_case.model_outputs)
        if self._semaphore is None:
            return await self.operation.evaluate(test_case.as_test_case(), outputs, criteria)
        async with self._semaphore:
            return await self.operation.evaluate(test_case.as_test_case(), outputs, criteria)

    async def _call(
        self, index: int, test_case: TestCaseWithModelOutputs, criteria: List[Criterion]
    ) -> EvaluationReply:
        try:
            reply = await self._invoke(test_case, criteria)
            evaluations = getattr(reply, "evaluations", None)
            if not evaluations:
                raise EvaluationCallError("evaluate returned no evaluations", test_case.id)
        except Exception:
            await self.aggregator.record_completion(index, 0)
            raise

        await self.aggregator.record_completion(index, len(test_case.model_outputs))
        return reply

    async def run(
        self,
        test_cases_with_outputs: List[TestCaseWithModelOutputs],
        criteria: List[Criterion],
    ) -> EvaluationOutcome:
        """
        Score every test case that has outputs.

        Raises:
            FatalConstructionError: Missing operation or malformed criteria.
        """
        if self.operation is None:
            raise FatalConstructionError("No evaluate operation supplied")
        validate_criteria(criteria)

        pending = [(i, tc) for i, tc in enumerate(test_cases_with_outputs) if tc.model_outputs]
        skipped = [tc.id for tc in test_cases_with_outputs if not tc.model_outputs]
        await self.aggregator.begin_evaluation(
            sum(len(tc.model_outputs) for _, tc in pending)
        )

        with LogContext(phase=PipelinePhase.EVALUATING.value), DebugTimer(
            "evaluation", logger
        ) as timer:
            if skipped:
                logger.warning(
                    f"Skipping evaluation of {len(skipped)} test cases without outputs: "
                    f"{', '.join(skipped)}"
                )
            logger.info(
                f"Evaluating {len(pending)} test cases against {len(criteria)} criteria"
            )

            calls = [self._call(i, tc, criteria) for i, tc in pending]
            settled = await asyncio.gather(*calls, return_exceptions=True)
            self.aggregator.raise_callback_error()
            timer.checkpoint("all calls settled")

            results = list(test_cases_with_outputs)
            failures: List[CallFailure] = []
            for (i, test_case), outcome in zip(pending, settled):
                if isinstance(outcome, Exception):
                    reason = str(outcome) or type(outcome).__name__
                    failures.append(CallFailure(PipelinePhase.EVALUATING, i, test_case.id, reason))
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                results[i] = replace(
                    test_case,
                    model_outputs=merge_evaluations(test_case.model_outputs, outcome.evaluations),
                )

            if failures:
                logger.warning(
                    f"Evaluation failed for {len(failures)}/{len(pending)} test cases:\n"
                    + "\n".join(f"  - {f}" for f in failures)
                )

            await self.aggregator.settle(len(test_cases_with_outputs) - 1)

        logger.info(
            f"Evaluation settled: {len(pending) - len(failures)}/{len(pending)} scored "
            f"in {timer.elapsed_ms:.0f}ms"
        )
        return EvaluationOutcome(
            test_cases_with_outputs=results, failures=failures, skipped=skipped
        )
