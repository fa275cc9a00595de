"""
Pipeline data model.

TestCase and Criterion are immutable inputs. ModelOutput values are created
by the generation phase with empty scores and replaced (never mutated) by the
evaluation phase. TestCaseWithModelOutputs is the unit of partial failure:
it has either n outputs or none, and its outputs are either scored or not.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class PipelinePhase(Enum):
    """Coarse run phase reported to progress subscribers."""

    GENERATING = "generating"
    EVALUATING = "evaluating"
    COMPLETE = "complete"


class Effectiveness(Enum):
    """Per-test-case effectiveness bucket from the average rubric score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class TestCase:
    """A single prompt to run through every output-generation assistant."""

    __test__ = False  # not a pytest test class

    id: str
    input: str
    context: str = ""
    scenario_category: Optional[str] = None
    use_case: Optional[str] = None


@dataclass(frozen=True)
class Criterion:
    """A rubric dimension scored 1-5.

    score_descriptions[0] describes a score of 1, score_descriptions[4] a 5.
    """

    id: str
    name: str
    description: str = ""
    weight: float = 1.0
    score_descriptions: tuple = ()

    def describe_score(self, score: int) -> str:
        index = score - 1
        if 0 <= index < len(self.score_descriptions):
            return self.score_descriptions[index]
        return ""


@dataclass(frozen=True)
class ModelOutput:
    """One model's answer to one test case, with its rubric evaluation."""

    model_id: str
    model_name: str
    output: str
    rubric_scores: Dict[str, float] = field(default_factory=dict)
    feedback: str = ""
    suggestions: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_scored(self) -> bool:
        return bool(self.rubric_scores)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class TestCaseWithModelOutputs:
    """A test case carried through the pipeline with its model outputs."""

    __test__ = False

    id: str
    input: str
    context: str
    model_outputs: List[ModelOutput] = field(default_factory=list)
    use_case: Optional[str] = None
    scenario_category: Optional[str] = None

    @classmethod
    def from_test_case(
        cls, test_case: TestCase, outputs: Optional[List[ModelOutput]] = None
    ) -> "TestCaseWithModelOutputs":
        return cls(
            id=test_case.id,
            input=test_case.input,
            context=test_case.context,
            model_outputs=list(outputs or []),
            use_case=test_case.use_case,
            scenario_category=test_case.scenario_category,
        )

    def as_test_case(self) -> TestCase:
        return TestCase(
            id=self.id,
            input=self.input,
            context=self.context,
            scenario_category=self.scenario_category,
            use_case=self.use_case,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "input": self.input,
            "context": self.context,
            "use_case": self.use_case,
            "scenario_category": self.scenario_category,
            "model_outputs": [o.to_dict() for o in self.model_outputs],
        }


@dataclass
class GenerationReply:
    """What one generate call returns for one test case."""

    outputs: List[ModelOutput] = field(default_factory=list)


@dataclass
class OutputEvaluation:
    """Scores and feedback for one model's output, keyed by model_id."""

    model_id: str
    rubric_scores: Dict[str, float] = field(default_factory=dict)
    feedback: str = ""
    suggestions: List[str] = field(default_factory=list)


@dataclass
class EvaluationReply:
    """What one evaluate call returns for one test case."""

    evaluations: List[OutputEvaluation] = field(default_factory=list)


@dataclass
class CallFailure:
    """A remote call that settled as a failure; the test case keeps its slot."""

    phase: PipelinePhase
    index: int
    test_case_id: str
    reason: str

    def __str__(self) -> str:
        return f"[{self.phase.value}] test case {self.test_case_id} (#{self.index}): {self.reason}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "index": self.index,
            "test_case_id": self.test_case_id,
            "reason": self.reason,
        }


@dataclass
class RunState:
    """Progress state for one pipeline run."""

    phase: PipelinePhase = PipelinePhase.GENERATING
    completed_count: int = 0
    total_expected: int = 0
    current_test_case_index: int = 0
    progress: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "completed_count": self.completed_count,
            "total_expected": self.total_expected,
            "current_test_case_index": self.current_test_case_index,
            "progress": round(self.progress, 1),
        }
