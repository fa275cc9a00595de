"""
Remote operation interfaces consumed by the pipeline.

The pipeline never talks to a model directly. It calls a GenerateOperation
once per test case and an EvaluateOperation once per test case with outputs;
either may raise, and the phase records the failure against that test case.

Operations that need to know which models were assigned for the run (for
example, which model is the judge) implement AssignmentAware; the
orchestrator hands them the assignment before any call is made.
"""

from dataclasses import dataclass, field
from typing import List, Protocol, runtime_checkable

from utils.exceptions import FatalConstructionError

from ..assignment import SelectedModel, SlotType
from .config import PipelineConfig
from .types import (
    Criterion,
    EvaluationReply,
    GenerationReply,
    ModelOutput,
    OutputEvaluation,
    TestCase,
)

__all__ = [
    "AssignmentAware",
    "EvaluateOperation",
    "EvaluationReply",
    "GenerateOperation",
    "GenerationContext",
    "GenerationReply",
    "OutputEvaluation",
]


@dataclass
class GenerationContext:
    """Model selection and tuning shared by every generate call in a run."""

    selected_models: List[SelectedModel] = field(default_factory=list)
    config: PipelineConfig = field(default_factory=PipelineConfig)
    run_id: str = ""

    @property
    def output_models(self) -> List[SelectedModel]:
        """Output-generation models, limited to num_outputs_to_run."""
        models = [m for m in self.selected_models if m.type == SlotType.OUTPUT_GENERATION]
        if self.config.num_outputs_to_run is not None:
            models = models[: self.config.num_outputs_to_run]
        return models

    @property
    def evaluation_models(self) -> List[SelectedModel]:
        return [m for m in self.selected_models if m.type == SlotType.EVALUATION]

    @property
    def expected_outputs(self) -> int:
        """Outputs each test case should produce if every model answers."""
        return len(self.output_models)

    def validate(self) -> None:
        if not self.output_models:
            raise FatalConstructionError("No output-generation model was assigned for this run")


class GenerateOperation(Protocol):
    async def generate(self, test_case: TestCase, context: GenerationContext) -> GenerationReply:
        ...


class EvaluateOperation(Protocol):
    async def evaluate(
        self,
        test_case: TestCase,
        outputs: List[ModelOutput],
        criteria: List[Criterion],
    ) -> EvaluationReply:
        ...


@runtime_checkable
class AssignmentAware(Protocol):
    """An operation that must be bound to the run's model assignment."""

    def with_assignment(self, selected_models: List[SelectedModel]) -> "AssignmentAware":
        ...
