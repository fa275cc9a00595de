"""Rubric scoring with an evaluation model."""

from .rubric_judge import RubricJudge, clamp_score, extract_json

__all__ = ["RubricJudge", "clamp_score", "extract_json"]
