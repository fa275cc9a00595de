"""
Provider-backed generate and evaluate operations.

ProviderGenerateOperation answers one test case with every assigned
output-generation model. JudgeEvaluateOperation scores those answers with
the assigned evaluation model through a RubricJudge.

Usage:
    from rubric_eval.pipeline.provider_operations import (
        JudgeEvaluateOperation,
        ProviderGenerateOperation,
    )

    result = await run_pipeline(
        test_cases, criteria, slots, "unique_model",
        generate_op=ProviderGenerateOperation(),
        evaluate_op=JudgeEvaluateOperation(),
    )
"""

import asyncio
import logging
import random
from collections import Counter
from typing import Callable, Dict, List, Optional, Set

from utils.exceptions import EvaluationCallError, FatalConstructionError, GenerationCallError

from ..assignment import SelectedModel, SlotType
from ..providers import BaseProvider, GenerationConfig, Message, ProviderFactory
from ..scoring.rubric_judge import RubricJudge
from .config import PipelineConfig
from .operations import GenerationContext
from .types import Criterion, EvaluationReply, GenerationReply, ModelOutput, TestCase

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

ProviderBuilder = Callable[[SelectedModel, GenerationConfig, float], BaseProvider]


def default_provider_builder(
    selected: SelectedModel, config: GenerationConfig, timeout: float
) -> BaseProvider:
    """Create the provider for a selected model through ProviderFactory."""
    if not selected.provider:
        raise ValueError(f"Model {selected.model_id} has no provider")
    return ProviderFactory.create(
        selected.provider, model=selected.model, config=config, timeout=timeout
    )


def output_ids(models: List[SelectedModel]) -> List[str]:
    """Per-slot output ids; a model filling several slots is suffixed with the assistant id."""
    counts = Counter(m.model_id for m in models)
    return [
        m.model_id if counts[m.model_id] == 1 else f"{m.model_id}#{m.assistant_id}"
        for m in models
    ]


def build_messages(
    test_case: TestCase, system_prompt: str = DEFAULT_SYSTEM_PROMPT
) -> List[Message]:
    """System prompt (plus use case) and the test case as the user turn."""
    system = system_prompt
    if test_case.use_case:
        system = f"{system}\n\nUse Case: {test_case.use_case}"
    user = f"{test_case.context}\n{test_case.input}" if test_case.context else test_case.input
    return [Message("system", system), Message("user", user)]


class ProviderGenerateOperation:
    """Generates one output per assigned output-generation model."""

    def __init__(
        self,
        provider_builder: Optional[ProviderBuilder] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            provider_builder: Builds a provider for a selected model;
                              defaults to ProviderFactory.
            rng: Random source for shuffle_outputs.
        """
        self._build = provider_builder or default_provider_builder
        self._rng = rng or random.Random()
        self._providers: Dict[str, BaseProvider] = {}
        self._warned_prompts: Set[str] = set()

    def _provider(self, selected: SelectedModel, config: PipelineConfig) -> BaseProvider:
        provider = self._providers.get(selected.model_id)
        if provider is None:
            gen_config = GenerationConfig(
                temperature=config.temperature, max_tokens=config.max_tokens
            )
            provider = self._build(selected, gen_config, config.timeout_seconds)
            self._providers[selected.model_id] = provider
        return provider

    def _system_prompt(self, selected: SelectedModel) -> str:
        if selected.system_prompt:
            return selected.system_prompt
        if selected.model_id not in self._warned_prompts:
            self._warned_prompts.add(selected.model_id)
            logger.warning(
                f"Assistant {selected.name or selected.assistant_id} has no system prompt, "
                "using the default"
            )
        return DEFAULT_SYSTEM_PROMPT

    async def _generate_one(
        self,
        selected: SelectedModel,
        output_id: str,
        test_case: TestCase,
        config: PipelineConfig,
    ) -> ModelOutput:
        try:
            provider = self._provider(selected, config)
        except ValueError as e:
            raise GenerationCallError(str(e), test_case.id) from e

        response = await provider.generate_chat(
            build_messages(test_case, self._system_prompt(selected))
        )
        if not response.success:
            raise GenerationCallError(
                f"{selected.model_id}: {response.failure_reason}", test_case.id
            )
        return ModelOutput(
            model_id=output_id,
            model_name=selected.qualified_name,
            output=response.text,
            timestamp=response.timestamp,
        )

    async def generate(self, test_case: TestCase, context: GenerationContext) -> GenerationReply:
        """
        Raises:
            GenerationCallError: Every model failed for this test case.
        """
        models = context.output_models
        settled = await asyncio.gather(
            *[
                self._generate_one(m, output_id, test_case, context.config)
                for m, output_id in zip(models, output_ids(models))
            ],
            return_exceptions=True,
        )

        outputs: List[ModelOutput] = []
        errors: List[str] = []
        for selected, outcome in zip(models, settled):
            if isinstance(outcome, Exception):
                errors.append(str(outcome) or f"{selected.model_id}: {type(outcome).__name__}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                outputs.append(outcome)

        if errors:
            logger.warning(
                f"Test case {test_case.id}: {len(errors)}/{len(models)} models failed: "
                + "; ".join(errors)
            )
        if not outputs:
            raise GenerationCallError(
                f"All {len(models)} models failed: " + "; ".join(errors), test_case.id
            )

        if context.config.shuffle_outputs:
            self._rng.shuffle(outputs)
        return GenerationReply(outputs=outputs)


class JudgeEvaluateOperation:
    """Scores every output of a test case with the assigned evaluation model."""

    def __init__(
        self,
        judge: Optional[RubricJudge] = None,
        provider_builder: Optional[ProviderBuilder] = None,
        timeout_seconds: float = 120.0,
    ):
        """
        Args:
            judge: Pre-built judge; when omitted, one is built for the first
                   evaluation model of the run's assignment.
            provider_builder: Builds the judge's provider; defaults to ProviderFactory.
            timeout_seconds: Judge request timeout.
        """
        self.judge = judge
        self._build = provider_builder or default_provider_builder
        self.timeout_seconds = timeout_seconds

    def with_assignment(self, selected_models: List[SelectedModel]) -> "JudgeEvaluateOperation":
        """Bind to the run's evaluation model.

        Raises:
            FatalConstructionError: No evaluation model was assigned, or its
                provider cannot be created.
        """
        if self.judge is not None:
            return self

        evaluators = [m for m in selected_models if m.type == SlotType.EVALUATION]
        if not evaluators:
            raise FatalConstructionError("No evaluation model was assigned for this run")
        if len(evaluators) > 1:
            logger.info(
                f"{len(evaluators)} evaluation models assigned, judging with {evaluators[0].model_id}"
            )

        judge_config = GenerationConfig(temperature=0.0, max_tokens=2048)
        try:
            provider = self._build(evaluators[0], judge_config, self.timeout_seconds)
        except ValueError as e:
            raise FatalConstructionError(f"Cannot create judge: {e}") from e
        return JudgeEvaluateOperation(
            judge=RubricJudge(provider, judge_config),
            provider_builder=self._build,
            timeout_seconds=self.timeout_seconds,
        )

    async def evaluate(
        self,
        test_case: TestCase,
        outputs: List[ModelOutput],
        criteria: List[Criterion],
    ) -> EvaluationReply:
        """
        Raises:
            EvaluationCallError: No judge bound, or no output could be scored.
        """
        if self.judge is None:
            raise EvaluationCallError("No judge bound to an evaluation model", test_case.id)

        evaluations = []
        errors: List[str] = []
        for output in outputs:
            try:
                evaluations.append(await self.judge.evaluate(test_case, output, criteria))
            except EvaluationCallError as e:
                errors.append(str(e))

        if errors:
            logger.warning(
                f"Test case {test_case.id}: {len(errors)}/{len(outputs)} outputs unscored: "
                + "; ".join(errors)
            )
        if not evaluations:
            raise EvaluationCallError(
                "No output could be scored: " + "; ".join(errors), test_case.id
            )
        return EvaluationReply(evaluations=evaluations)
