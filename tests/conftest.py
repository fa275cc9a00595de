"""
Shared test fixtures for rubric_eval.

Provides temporary directories, fake remote operations and providers,
and test data factories.
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from rubric_eval.assignment import AssistantSlot, SlotType
from rubric_eval.pipeline.operations import GenerationContext
from rubric_eval.pipeline.types import (
    Criterion,
    EvaluationReply,
    GenerationReply,
    ModelOutput,
    OutputEvaluation,
    TestCase,
)
from rubric_eval.providers.base import (
    BaseProvider,
    GenerationConfig,
    GenerationResponse,
    Message,
    ProviderType,
)
from utils.exceptions import EvaluationCallError, GenerationCallError


def make_test_cases(n: int, prefix: str = "tc") -> List[TestCase]:
    return [
        TestCase(id=f"{prefix}-{i}", input=f"Question {i}?", context=f"Context {i}")
        for i in range(n)
    ]


def make_output(model_id: str, text: str = "An answer", scores: Optional[Dict[str, float]] = None) -> ModelOutput:
    return ModelOutput(
        model_id=model_id,
        model_name=model_id,
        output=text,
        rubric_scores=dict(scores or {}),
    )


class FakeGenerateOperation:
    """Scripted generate operation.

    Returns one output per assigned output model unless ``counts`` overrides
    the number for a test case id. Ids in ``fail_ids`` raise.
    """

    def __init__(
        self,
        counts: Optional[Dict[str, int]] = None,
        fail_ids: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
        text: str = "===== SECTION 1: REMINDER =====\nAnswer for {id}",
    ):
        self.counts = counts or {}
        self.fail_ids = set(fail_ids)
        self.delays = delays or {}
        self.text = text
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, test_case: TestCase, context: GenerationContext) -> GenerationReply:
        self.calls.append(test_case.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(test_case.id, 0))
        finally:
            self.in_flight -= 1

        if test_case.id in self.fail_ids:
            raise GenerationCallError(f"provider down for {test_case.id}", test_case.id)

        model_ids = [m.model_id for m in context.output_models]
        count = self.counts.get(test_case.id, len(model_ids))
        ids = (model_ids + [f"extra-{n}" for n in range(count)])[:count]
        return GenerationReply(
            outputs=[make_output(model_id, self.text.format(id=test_case.id)) for model_id in ids]
        )


class FakeEvaluateOperation:
    """Scripted evaluate operation scoring every criterion with a fixed value per model."""

    def __init__(
        self,
        scores: Optional[Dict[str, float]] = None,
        default_score: float = 4.0,
        fail_ids: Iterable[str] = (),
        empty_ids: Iterable[str] = (),
    ):
        self.scores = scores or {}
        self.default_score = default_score
        self.fail_ids = set(fail_ids)
        self.empty_ids = set(empty_ids)
        self.calls: List[str] = []
        self.received: Dict[str, List[ModelOutput]] = {}

    async def evaluate(
        self, test_case: TestCase, outputs: List[ModelOutput], criteria: List[Criterion]
    ) -> EvaluationReply:
        self.calls.append(test_case.id)
        self.received[test_case.id] = outputs
        await asyncio.sleep(0)
        if test_case.id in self.fail_ids:
            raise EvaluationCallError(f"judge timeout for {test_case.id}", test_case.id)
        if test_case.id in self.empty_ids:
            return EvaluationReply(evaluations=[])
        return EvaluationReply(
            evaluations=[
                OutputEvaluation(
                    model_id=o.model_id,
                    rubric_scores={
                        c.id: self.scores.get(o.model_id, self.default_score) for c in criteria
                    },
                    feedback=f"Feedback for {o.model_id}",
                    suggestions=[f"Improve {o.model_id}"],
                )
                for o in outputs
            ]
        )


class FakeProvider(BaseProvider):
    """Provider returning scripted replies in order; None entries fail."""

    def __init__(
        self,
        model: str = "fake-model",
        replies: Optional[List[Optional[str]]] = None,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
    ):
        super().__init__(model, config, timeout)
        self.replies = list(replies or ["ok"])
        self.received: List[List[Message]] = []

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    async def generate_chat(
        self, messages: List[Message], config: Optional[GenerationConfig] = None
    ) -> GenerationResponse:
        self.received.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if reply is None:
            return self._failed("connection refused")
        result = GenerationResponse(text=reply, model=self.model, provider=self.provider_type)
        self._record_request(result)
        return result

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Create a temporary state directory with standard structure."""
    (tmp_path / "logs").mkdir()
    return tmp_path


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch, tmp_project_dir: Path) -> Path:
    """Set environment variables pointing to temporary directories."""
    monkeypatch.setenv("RUBRIC_EVAL_STATE_DIR", str(tmp_project_dir))
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("DEBUG", "true")
    return tmp_project_dir


@pytest.fixture
def criteria() -> List[Criterion]:
    return [
        Criterion(
            id="empathy",
            name="Empathy",
            description="Acknowledges feelings",
            score_descriptions=("Dismissive", "Cold", "Neutral", "Kind", "Warm and validating"),
        ),
        Criterion(id="clarity", name="Clarity", description="Easy to follow"),
    ]


@pytest.fixture
def slots() -> List[AssistantSlot]:
    return [
        AssistantSlot(
            assistant_id=1,
            candidate_model_ids=["ollama/qwen2.5:32b", "google/gemini-2.5-flash"],
            required_to_show=True,
            name="Primary",
        ),
        AssistantSlot(
            assistant_id=2,
            candidate_model_ids=["ollama/qwen2.5:32b", "google/gemini-2.5-flash"],
            required_to_show=True,
            name="Secondary",
        ),
        AssistantSlot(
            assistant_id="judge",
            candidate_model_ids=["google/gemini-2.5-pro"],
            type=SlotType.EVALUATION,
            name="Judge",
        ),
    ]
