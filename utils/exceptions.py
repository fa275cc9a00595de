"""
Custom exception hierarchy for rubric_eval.

All project-specific exceptions inherit from RubricEvalError.
"""

from typing import Optional


class RubricEvalError(Exception):
    """Base exception for rubric_eval."""

    pass


class ConfigError(RubricEvalError):
    """Invalid or missing configuration."""

    pass


class FatalConstructionError(RubricEvalError):
    """Malformed pipeline input detected before any remote call was issued.

    This is the only error that aborts a whole pipeline run.
    """

    pass


class RemoteCallError(RubricEvalError):
    """A single remote generate/evaluate call failed."""

    def __init__(self, message: str, test_case_id: Optional[str] = None):
        super().__init__(message)
        self.test_case_id = test_case_id


class GenerationCallError(RemoteCallError):
    """One test case's generate call failed; the batch continues."""

    pass


class EvaluationCallError(RemoteCallError):
    """One test case's evaluate call failed; its outputs stay unscored."""

    pass


class JudgeParseError(EvaluationCallError):
    """The evaluation model returned text that could not be parsed."""

    pass
