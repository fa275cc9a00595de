"""
Rubric Judge

Scores one model output against a list of rubric criteria with an
evaluation model. The judge is asked for a JSON object with one
``{"reasoning_for_score", "score"}`` entry per criterion plus an overall
evaluation and suggestions; scores are clamped to the 1-5 rubric scale.

Usage:
    from rubric_eval.scoring.rubric_judge import RubricJudge

    judge = RubricJudge(provider=my_provider)
    evaluation = await judge.evaluate(test_case, model_output, criteria)
    print(evaluation.rubric_scores, evaluation.feedback)
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from utils.exceptions import JudgeParseError

from ..pipeline.types import Criterion, ModelOutput, OutputEvaluation, TestCase
from ..providers.base import BaseProvider, GenerationConfig, Message

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5

RUBRIC_EVAL_PROMPT = """Please evaluate the LLM response for the given use case based on the provided rubric criteria.

LLM Output:
{output}

Use Case: {use_case}

User Context: {context}

User Input: {input}

Evaluation Criteria:
{criteria}

Respond with a single JSON object in exactly this format:
{{
{json_format},
  "overall_evaluation": "<brief summary of the evaluation>",
  "suggestions": ["<suggestion1>", "<suggestion2>"]
}}
"""

CRITERION_JSON_FORMAT = """  "{key}": {{
    "reasoning_for_score": "<brief reasoning for the score>",
    "score": <integer {min_score}-{max_score}>
  }}"""


def extract_json(text: str) -> Optional[str]:
    """Extract a JSON object from a reply, handling markdown code blocks."""
    code_block = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", text, re.DOTALL)
    if code_block:
        return code_block.group(1).strip()

    text = text.strip()
    if text.startswith("{"):
        return text

    # Outermost braces; judges often wrap the object in prose
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return None


def clamp_score(value: float) -> float:
    return float(max(MIN_SCORE, min(MAX_SCORE, value)))


def _criterion_key(criterion: Criterion) -> str:
    return criterion.id.lower()


class RubricJudge:
    """Scores outputs against rubric criteria with an evaluation model."""

    def __init__(self, provider: BaseProvider, config: Optional[GenerationConfig] = None):
        self.provider = provider
        # Low temperature keeps judge scores stable across runs
        self.config = config or GenerationConfig(temperature=0.0, max_tokens=2048)

    @property
    def judge_model(self) -> str:
        return self.provider.model

    def build_prompt(
        self, test_case: TestCase, output: ModelOutput, criteria: List[Criterion]
    ) -> str:
        criteria_lines = []
        for i, criterion in enumerate(criteria, 1):
            line = f"{i}. {criterion.name} ({MIN_SCORE}-{MAX_SCORE}): {criterion.description}".rstrip()
            criteria_lines.append(line)
            for score in range(MIN_SCORE, MAX_SCORE + 1):
                described = criterion.describe_score(score)
                if described:
                    criteria_lines.append(f"   {score} = {described}")

        json_format = ",\n".join(
            CRITERION_JSON_FORMAT.format(
                key=_criterion_key(c), min_score=MIN_SCORE, max_score=MAX_SCORE
            )
            for c in criteria
        )

        return RUBRIC_EVAL_PROMPT.format(
            output=output.output,
            use_case=test_case.use_case or "general",
            context=test_case.context,
            input=test_case.input,
            criteria="\n".join(criteria_lines),
            json_format=json_format,
        )

    def parse_response(
        self, text: str, model_id: str, criteria: List[Criterion]
    ) -> OutputEvaluation:
        """
        Parse a judge reply into an OutputEvaluation.

        Raises:
            JudgeParseError: No JSON object, or a criterion without a numeric score.
        """
        extracted = extract_json(text)
        if extracted is None:
            raise JudgeParseError(f"No JSON found in evaluation of {model_id}")

        try:
            parsed = json.loads(extracted)
        except json.JSONDecodeError as e:
            raise JudgeParseError(f"Invalid JSON in evaluation of {model_id}: {e}") from e
        if not isinstance(parsed, dict):
            raise JudgeParseError(f"Evaluation of {model_id} is not a JSON object")

        scores: Dict[str, float] = {}
        reasoning: List[str] = []
        for criterion in criteria:
            entry: Any = parsed.get(_criterion_key(criterion), parsed.get(criterion.id))
            raw = entry.get("score") if isinstance(entry, dict) else entry
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise JudgeParseError(
                    f"Missing or invalid score for criterion {criterion.name} in {model_id}"
                )
            scores[criterion.id] = clamp_score(raw)
            if isinstance(entry, dict) and entry.get("reasoning_for_score"):
                reasoning.append(f"{criterion.name}: {entry['reasoning_for_score']}")

        feedback = str(parsed.get("overall_evaluation") or "").strip()
        if not feedback:
            feedback = "\n".join(reasoning) or "No feedback provided"

        suggestions = parsed.get("suggestions") or []
        if isinstance(suggestions, str):
            suggestions = [suggestions]

        return OutputEvaluation(
            model_id=model_id,
            rubric_scores=scores,
            feedback=feedback,
            suggestions=[str(s) for s in suggestions if str(s).strip()],
        )

    async def evaluate(
        self, test_case: TestCase, output: ModelOutput, criteria: List[Criterion]
    ) -> OutputEvaluation:
        """
        Score one output.

        Raises:
            JudgeParseError: The judge call failed or its reply was unusable.
        """
        prompt = self.build_prompt(test_case, output, criteria)
        response = await self.provider.generate_chat([Message("user", prompt)], self.config)
        if not response.success:
            raise JudgeParseError(
                f"Judge {self.judge_model} failed on {output.model_id}: {response.failure_reason}",
                test_case_id=test_case.id,
            )

        evaluation = self.parse_response(response.text, output.model_id, criteria)
        logger.debug(
            f"Judge {self.judge_model} scored {output.model_id} on {test_case.id}: "
            f"{evaluation.rubric_scores}"
        )
        return evaluation
