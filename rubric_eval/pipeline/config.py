"""
Run Request Configuration

PipelineConfig holds the per-run tuning knobs. RunRequestConfig loads a full
run request (models, assistant slots, rubric criteria, test cases) from YAML.

Example request:

    request_id: parenting-support-v2
    strategy: unique_model
    models:
      - id: google/gemini-2.5-flash
        provider: google
        model: gemini-2.5-flash
      - id: ollama/qwen2.5:32b
        provider: ollama
        model: qwen2.5:32b
    assistants:
      - id: 1
        name: Primary
        type: output_generation
        required_to_show: true
        candidate_models: [ollama/qwen2.5:32b, google/gemini-2.5-flash]
        system_prompt: "You are an expert in child development..."
      - id: judge
        type: evaluation
        candidate_models: [google/gemini-2.5-flash]
    criteria:
      - id: empathy
        name: Empathy
        description: Acknowledges the caregiver's feelings
        score_descriptions: ["Dismissive", "", "Neutral", "", "Warm and validating"]
    test_case_file: cases.yaml
    run_config:
      max_concurrent: 4
      num_outputs_to_run: 2
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

import config as app_config
from utils.exceptions import ConfigError

from ..assignment import AssignmentStrategy, AssistantSlot, ModelConfig, ModelPool
from .types import Criterion, TestCase

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Tuning for a single pipeline run."""

    # Max in-flight remote calls per phase; None = one per test case
    max_concurrent: Optional[int] = None
    # Notify subscribers after each settled call, not only at phase boundaries
    incremental_progress: bool = False

    # Output generation
    num_outputs_to_run: Optional[int] = None  # None = every output-generation slot
    shuffle_outputs: bool = False
    temperature: float = 0.7
    max_tokens: int = 2048
    timeout_seconds: float = 120.0

    def __post_init__(self) -> None:
        if self.max_concurrent is not None and self.max_concurrent <= 0:
            raise ConfigError(f"max_concurrent must be positive, got {self.max_concurrent}")
        if self.num_outputs_to_run is not None and self.num_outputs_to_run <= 0:
            raise ConfigError(
                f"num_outputs_to_run must be positive, got {self.num_outputs_to_run}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        return cls(
            max_concurrent=data.get("max_concurrent", app_config.MAX_CONCURRENT_CALLS),
            incremental_progress=bool(data.get("incremental_progress", False)),
            num_outputs_to_run=data.get("num_outputs_to_run"),
            shuffle_outputs=bool(data.get("shuffle_outputs", False)),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 2048)),
            timeout_seconds=float(data.get("timeout_seconds", 120.0)),
        )


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    try:
        return data[key]
    except (KeyError, TypeError):
        raise ConfigError(f"Missing required key '{key}' in {where}") from None


def _parse_test_cases(items: List[Dict[str, Any]], where: str) -> List[TestCase]:
    return [
        TestCase(
            id=str(_require(t, "id", where)),
            input=_require(t, "input", where),
            context=t.get("context", ""),
            scenario_category=t.get("scenario_category"),
            use_case=t.get("use_case"),
        )
        for t in items
    ]


@dataclass
class RunRequestConfig:
    """Complete run request, loaded from YAML."""

    request_id: str
    strategy: AssignmentStrategy = AssignmentStrategy.RANDOM_SELECTION
    models: List[ModelConfig] = field(default_factory=list)
    assistants: List[AssistantSlot] = field(default_factory=list)
    criteria: List[Criterion] = field(default_factory=list)
    test_cases: List[TestCase] = field(default_factory=list)
    run_config: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "RunRequestConfig":
        """Load a run request from a YAML file.

        ``test_case_file`` is resolved relative to the YAML file's directory
        and may hold a list of test cases or a mapping with a ``test_cases`` key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"Run request must be a mapping: {path}")

        where = path.name

        models = [
            ModelConfig(
                id=str(_require(m, "id", f"{where} models")),
                provider=_require(m, "provider", f"{where} models"),
                model=_require(m, "model", f"{where} models"),
            )
            for m in data.get("models", [])
        ]

        assistants = []
        for a in data.get("assistants", []):
            try:
                assistants.append(
                    AssistantSlot(
                        assistant_id=_require(a, "id", f"{where} assistants"),
                        candidate_model_ids=[str(m) for m in a.get("candidate_models", [])],
                        type=a.get("type", "output_generation"),
                        required_to_show=bool(a.get("required_to_show", False)),
                        name=a.get("name", ""),
                        system_prompt=a.get("system_prompt", ""),
                    )
                )
            except ValueError as e:
                raise ConfigError(f"Invalid assistant {a.get('id')!r} in {where}: {e}") from e

        criteria = [
            Criterion(
                id=str(_require(c, "id", f"{where} criteria")),
                name=_require(c, "name", f"{where} criteria"),
                description=c.get("description", ""),
                weight=float(c.get("weight", 1.0)),
                score_descriptions=tuple(c.get("score_descriptions", [])),
            )
            for c in data.get("criteria", [])
        ]

        test_cases = _parse_test_cases(data.get("test_cases", []), f"{where} test_cases")
        test_case_file = data.get("test_case_file")
        if test_case_file:
            case_path = path.parent / test_case_file
            if not case_path.exists():
                raise FileNotFoundError(
                    f"Test case file not found: {case_path} (referenced in {where})"
                )
            with open(case_path) as f:
                loaded = yaml.safe_load(f) or []
            if isinstance(loaded, dict):
                loaded = loaded.get("test_cases", [])
            test_cases.extend(_parse_test_cases(loaded, case_path.name))

        return cls(
            request_id=str(_require(data, "request_id", where)),
            strategy=AssignmentStrategy.parse(data.get("strategy", "random_selection")),
            models=models,
            assistants=assistants,
            criteria=criteria,
            test_cases=test_cases,
            run_config=PipelineConfig.from_dict(data.get("run_config") or {}),
        )

    def model_pool(self) -> ModelPool:
        return ModelPool.from_configs(self.assistants, self.models)

    def model_catalog(self) -> Optional[Dict[str, ModelConfig]]:
        """Model id -> config, or None to derive providers from the ids."""
        if not self.models:
            return None
        return {m.id: m for m in self.models}
