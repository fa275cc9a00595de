"""
Effectiveness classification and refinement suggestions.

Both are pure functions of a scored test case, independent of the order in
which its outputs were evaluated.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .types import Effectiveness, TestCaseWithModelOutputs

HIGH_THRESHOLD = 4.5
MEDIUM_THRESHOLD = 3.5

SECTION_MARKER = "===== SECTION"
MAX_MODEL_SUGGESTIONS = 3
MAX_SUGGESTIONS = 5

NO_OUTPUTS_SUGGESTION = "No model outputs available for analysis"
MORE_CONTEXT_SUGGESTION = (
    "Consider providing more specific context or examples in future test cases"
)
FORMAT_SUGGESTION = (
    "Ensure models follow the required structured output format with section headers"
)


def _all_scores(test_case: TestCaseWithModelOutputs) -> List[float]:
    return [
        float(score)
        for output in test_case.model_outputs
        for score in output.rubric_scores.values()
        if isinstance(score, (int, float)) and not isinstance(score, bool)
    ]


def average_score(test_case: TestCaseWithModelOutputs) -> Optional[float]:
    """Mean of every rubric score across all models, or None if unscored."""
    scores = _all_scores(test_case)
    if not scores:
        return None
    return float(np.mean(scores))


def classify_scores(scores: Iterable[float]) -> Effectiveness:
    values = list(scores)
    if not values:
        return Effectiveness.LOW
    avg = float(np.mean(values))
    if avg >= HIGH_THRESHOLD:
        return Effectiveness.HIGH
    if avg >= MEDIUM_THRESHOLD:
        return Effectiveness.MEDIUM
    return Effectiveness.LOW


def classify_effectiveness(test_case: TestCaseWithModelOutputs) -> Effectiveness:
    return classify_scores(_all_scores(test_case))


def refinement_suggestions(test_case: TestCaseWithModelOutputs) -> List[str]:
    """Model suggestions (deduplicated, first-seen order) plus structural hints."""
    outputs = test_case.model_outputs
    if not outputs:
        return [NO_OUTPUTS_SUGGESTION]

    seen = dict.fromkeys(s for output in outputs for s in output.suggestions)
    suggestions = list(seen)[:MAX_MODEL_SUGGESTIONS]

    avg = average_score(test_case)
    if avg is not None:
        if avg < MEDIUM_THRESHOLD:
            suggestions.append(MORE_CONTEXT_SUGGESTION)
        if not any(SECTION_MARKER in output.output for output in outputs):
            suggestions.append(FORMAT_SUGGESTION)

    return suggestions[:MAX_SUGGESTIONS]


@dataclass
class RubricOutcome:
    """Per-test-case summary of a finished run."""

    test_case_id: str
    effectiveness: Effectiveness
    average_score: Optional[float] = None
    suggestions: List[str] = field(default_factory=list)

    @classmethod
    def from_test_case(cls, test_case: TestCaseWithModelOutputs) -> "RubricOutcome":
        return cls(
            test_case_id=test_case.id,
            effectiveness=classify_effectiveness(test_case),
            average_score=average_score(test_case),
            suggestions=refinement_suggestions(test_case),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_case_id": self.test_case_id,
            "effectiveness": self.effectiveness.value,
            "average_score": (
                round(self.average_score, 2) if self.average_score is not None else None
            ),
            "suggestions": self.suggestions,
        }
