"""
Generation Phase

Issues one generate call per test case. Every call is created before any is
awaited, and each settles independently: a failed call leaves its test case
in place with no outputs, so result[i] always corresponds to test_cases[i].
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from utils.exceptions import FatalConstructionError, GenerationCallError
from utils.logging_config import DebugTimer, LogContext

from .operations import GenerateOperation, GenerationContext
from .progress import ProgressAggregator
from .types import CallFailure, GenerationReply, PipelinePhase, TestCase, TestCaseWithModelOutputs

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    """Index-aligned results of the generation phase plus its failures."""

    test_cases_with_outputs: List[TestCaseWithModelOutputs] = field(default_factory=list)
    failures: List[CallFailure] = field(default_factory=list)

    @property
    def output_count(self) -> int:
        return sum(len(tc.model_outputs) for tc in self.test_cases_with_outputs)


def validate_test_cases(test_cases: List[TestCase]) -> None:
    """Reject malformed test cases before any call is issued."""
    seen = set()
    for i, test_case in enumerate(test_cases):
        if not isinstance(test_case, TestCase):
            raise FatalConstructionError(
                f"Test case #{i} is {type(test_case).__name__}, expected TestCase"
            )
        if not str(test_case.id).strip():
            raise FatalConstructionError(f"Test case #{i} is missing an id")
        if not test_case.input or not str(test_case.input).strip():
            raise FatalConstructionError(f"Test case {test_case.id} is missing its input")
        if test_case.id in seen:
            logger.warning(f"Duplicate test case id {test_case.id} at #{i}")
        seen.add(test_case.id)


class GenerationPhase:
    """Fan-out of generate calls, one per test case."""

    def __init__(
        self,
        operation: GenerateOperation,
        aggregator: ProgressAggregator,
        max_concurrent: Optional[int] = None,
    ):
        """
        Args:
            operation: Remote generate operation.
            aggregator: Progress state of the run this phase belongs to.
            max_concurrent: Bound on in-flight calls; None issues all at once.
        """
        self.operation = operation
        self.aggregator = aggregator
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    async def _invoke(self, test_case: TestCase, context: GenerationContext) -> GenerationReply:
        if self._semaphore is None:
            return await self.operation.generate(test_case, context)
        async with self._semaphore:
            return await self.operation.generate(test_case, context)

    async def _call(
        self, index: int, test_case: TestCase, context: GenerationContext
    ) -> GenerationReply:
        try:
            reply = await self._invoke(test_case, context)
            if reply is None or not isinstance(getattr(reply, "outputs", None), list):
                raise GenerationCallError("generate returned no outputs list", test_case.id)
        except Exception:
            await self.aggregator.record_completion(index, 0)
            raise

        await self.aggregator.record_completion(index, len(reply.outputs))
        return reply

    async def run(
        self, test_cases: List[TestCase], context: GenerationContext
    ) -> GenerationOutcome:
        """
        Generate outputs for every test case.

        Raises:
            FatalConstructionError: Malformed test cases or context, detected
                before any call is issued.
        """
        if self.operation is None:
            raise FatalConstructionError("No generate operation supplied")
        if context is None:
            raise FatalConstructionError("No generation context supplied")
        validate_test_cases(test_cases)
        if test_cases:
            context.validate()

        self.aggregator.start_generation(len(test_cases), context.expected_outputs)

        with LogContext(phase=PipelinePhase.GENERATING.value), DebugTimer(
            "generation", logger
        ) as timer:
            logger.info(
                f"Generating outputs for {len(test_cases)} test cases "
                f"with {context.expected_outputs} models"
            )
            calls = [self._call(i, tc, context) for i, tc in enumerate(test_cases)]
            settled = await asyncio.gather(*calls, return_exceptions=True)
            self.aggregator.raise_callback_error()
            timer.checkpoint("all calls settled")

            results: List[TestCaseWithModelOutputs] = []
            failures: List[CallFailure] = []
            for i, (test_case, outcome) in enumerate(zip(test_cases, settled)):
                if isinstance(outcome, Exception):
                    reason = str(outcome) or type(outcome).__name__
                    failures.append(
                        CallFailure(PipelinePhase.GENERATING, i, test_case.id, reason)
                    )
                    results.append(TestCaseWithModelOutputs.from_test_case(test_case))
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                results.append(TestCaseWithModelOutputs.from_test_case(test_case, outcome.outputs))

            # Only the first success (in input order) revises the expected total
            first = next((r for r in results if r.model_outputs), None)
            if first is not None:
                self.aggregator.recompute_expected(len(test_cases), len(first.model_outputs))

            if failures:
                logger.warning(
                    f"Generation failed for {len(failures)}/{len(test_cases)} test cases:\n"
                    + "\n".join(f"  - {f}" for f in failures)
                )

            await self.aggregator.settle(len(test_cases) - 1)

        outcome = GenerationOutcome(test_cases_with_outputs=results, failures=failures)
        logger.info(
            f"Generation settled: {outcome.output_count} outputs, "
            f"{len(failures)} failed calls in {timer.elapsed_ms:.0f}ms"
        )
        return outcome
