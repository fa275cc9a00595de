"""
Generation/Evaluation pipeline.

Usage:
    from rubric_eval.pipeline import run_pipeline, TestCase, Criterion
"""

from .config import PipelineConfig, RunRequestConfig
from .effectiveness import RubricOutcome, classify_effectiveness, refinement_suggestions
from .evaluation import EvaluationOutcome, EvaluationPhase
from .generation import GenerationOutcome, GenerationPhase
from .operations import (
    AssignmentAware,
    EvaluateOperation,
    GenerateOperation,
    GenerationContext,
)
from .orchestrator import PipelineResult, run_pipeline
from .progress import ProgressAggregator
from .types import (
    CallFailure,
    Criterion,
    Effectiveness,
    EvaluationReply,
    GenerationReply,
    ModelOutput,
    OutputEvaluation,
    PipelinePhase,
    RunState,
    TestCase,
    TestCaseWithModelOutputs,
)

__all__ = [
    "AssignmentAware",
    "CallFailure",
    "Criterion",
    "Effectiveness",
    "EvaluateOperation",
    "EvaluationOutcome",
    "EvaluationPhase",
    "EvaluationReply",
    "GenerateOperation",
    "GenerationContext",
    "GenerationOutcome",
    "GenerationPhase",
    "GenerationReply",
    "ModelOutput",
    "OutputEvaluation",
    "PipelineConfig",
    "PipelinePhase",
    "PipelineResult",
    "ProgressAggregator",
    "RubricOutcome",
    "RunRequestConfig",
    "RunState",
    "TestCase",
    "TestCaseWithModelOutputs",
    "classify_effectiveness",
    "refinement_suggestions",
    "run_pipeline",
]
