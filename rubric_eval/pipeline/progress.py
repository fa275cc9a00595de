"""
Progress Aggregator

Owns the RunState of one pipeline run and translates completion counts into
a 0-100 progress value plus the coarse phase generating -> evaluating ->
complete. The phase is driven by a strict StateMachine, so it can only move
forward and never skips a phase.

Subscribers receive ``(phase, completed_count, total_expected, current_index)``
when a phase settles, and optionally after every settled call. An error from
a per-call notification is held back until every call of the phase has
settled, then re-raised by raise_callback_error.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from utils.state_machine import StateMachine

from .types import PipelinePhase, RunState

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelinePhase, int, int, int], Union[None, Awaitable[None]]]

_FORWARD_ONLY = {
    PipelinePhase.GENERATING: [PipelinePhase.EVALUATING],
    PipelinePhase.EVALUATING: [PipelinePhase.COMPLETE],
    PipelinePhase.COMPLETE: [],
}


class ProgressAggregator:
    """Per-run progress state shared by the generation and evaluation phases."""

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        incremental: bool = False,
    ):
        """
        Args:
            on_progress: Subscriber called with (phase, completed, total, index).
            incremental: Also notify after each settled call, not only when
                         a whole phase settles.
        """
        self.state = RunState()
        self.incremental = incremental
        self._on_progress = on_progress
        self._recomputed = False
        self._callback_error: Optional[Exception] = None
        self._machine: StateMachine[PipelinePhase] = StateMachine(
            initial_state=PipelinePhase.GENERATING,
            allowed_transitions=_FORWARD_ONLY,
            strict=True,
        )
        self._machine.on_transition(self._reset_for_phase)

    @property
    def phase(self) -> PipelinePhase:
        return self._machine.state

    @property
    def history(self):
        return self._machine.history

    @property
    def recomputed(self) -> bool:
        """Whether total_expected has been revised from an observed output count."""
        return self._recomputed

    def start_generation(self, num_test_cases: int, expected_per_case: int) -> None:
        """Seed the generation total from the configured outputs per case."""
        self.state.total_expected = num_test_cases * max(expected_per_case, 0)
        self.state.completed_count = 0
        self.state.current_test_case_index = 0
        self.state.progress = 0.0
        logger.debug(
            f"Generation expects {self.state.total_expected} outputs "
            f"({num_test_cases} test cases x {expected_per_case})"
        )

    def recompute_expected(self, num_test_cases: int, observed_per_case: int) -> bool:
        """Revise total_expected once from the first observed output count.

        Later calls are ignored, even if a different count is observed.
        """
        if self._recomputed or observed_per_case <= 0:
            return False
        self._recomputed = True
        previous = self.state.total_expected
        self.state.total_expected = num_test_cases * observed_per_case
        self._update_progress()
        if previous != self.state.total_expected:
            logger.info(
                f"Expected outputs revised {previous} -> {self.state.total_expected} "
                f"({observed_per_case} per test case)"
            )
        return True

    async def record_completion(self, index: int, count: int) -> None:
        """Count one settled call; notifies only in incremental mode."""
        self.state.completed_count += count
        self.state.current_test_case_index = index
        self._update_progress()
        if not self.incremental:
            return
        try:
            await self._notify()
        except Exception as e:
            logger.error(f"Progress callback failed at test case {index}: {e}")
            if self._callback_error is None:
                self._callback_error = e

    def raise_callback_error(self) -> None:
        """Re-raise the first error a per-call notification held back, if any."""
        error, self._callback_error = self._callback_error, None
        if error is not None:
            raise error

    async def settle(self, last_index: int) -> None:
        """Report the current phase as fully settled at 100%."""
        self.state.current_test_case_index = max(last_index, 0)
        self.state.completed_count = max(self.state.completed_count, self.state.total_expected)
        self.state.progress = 100.0
        await self._notify()

    async def begin_evaluation(self, total_expected: int) -> None:
        await self._machine.transition_to(PipelinePhase.EVALUATING, reason="generation settled")
        self.state.total_expected = total_expected

    async def complete(self) -> None:
        await self._machine.transition_to(PipelinePhase.COMPLETE, reason="evaluation settled")
        self.state.progress = 100.0

    def _reset_for_phase(self, old: PipelinePhase, new: PipelinePhase, reason: str) -> None:
        self.state.phase = new
        self.state.completed_count = 0
        self.state.total_expected = 0
        self.state.progress = 0.0

    def _update_progress(self) -> None:
        total = self.state.total_expected
        if total <= 0:
            self.state.progress = 0.0
            return
        self.state.progress = min(100.0, self.state.completed_count * 100.0 / total)

    async def _notify(self) -> None:
        if self._on_progress is None:
            return
        outcome = self._on_progress(
            self.phase,
            self.state.completed_count,
            self.state.total_expected,
            self.state.current_test_case_index,
        )
        if inspect.isawaitable(outcome):
            await outcome
