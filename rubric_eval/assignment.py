"""
Model Assignment

Binds every assistant slot to one concrete model for a pipeline run.
Two strategies are supported:

- random_selection: each slot independently draws one of its candidates.
  Duplicate models across slots are expected and allowed.
- unique_model: slots are visited in priority order (required-to-show first,
  then output-generation before evaluation) and each takes its first
  candidate not already claimed by an earlier slot, falling back to its own
  first candidate only when every candidate is taken.

Assignment is pure and synchronous; random_selection is the only
non-deterministic path and becomes deterministic given a seeded rng.

Usage:
    from rubric_eval.assignment import AssistantSlot, assign_models

    slots = [
        AssistantSlot(assistant_id=1, candidate_model_ids=["openai/gpt-4o", "google/gemini-2.5-flash"],
                      required_to_show=True),
        AssistantSlot(assistant_id=2, candidate_model_ids=["openai/gpt-4o"]),
    ]
    selected = assign_models(slots, "unique_model")
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from utils.logging_config import log_performance

logger = logging.getLogger(__name__)

AssistantId = Union[int, str]


class SlotType(Enum):
    """Role an assistant slot plays in a run."""

    OUTPUT_GENERATION = "output_generation"
    EVALUATION = "evaluation"


class AssignmentStrategy(Enum):
    """Supported model assignment algorithms."""

    RANDOM_SELECTION = "random_selection"
    UNIQUE_MODEL = "unique_model"

    @classmethod
    def parse(cls, value: Union["AssignmentStrategy", str, None]) -> "AssignmentStrategy":
        """Resolve a strategy name; unknown names fall back to random_selection."""
        if isinstance(value, cls):
            return value
        if value:
            try:
                return cls(str(value).strip().lower())
            except ValueError:
                pass
        logger.warning(f"Unknown assignment strategy {value!r}, falling back to random_selection")
        return cls.RANDOM_SELECTION


@dataclass(frozen=True)
class ModelConfig:
    """Provider and provider-side model name for one candidate model id."""

    id: str
    provider: str
    model: str

    @classmethod
    def from_model_id(cls, model_id: str) -> "ModelConfig":
        """Derive provider/model from a ``provider/name`` id.

        Only the first slash separates the provider, so OpenRouter-style ids
        such as ``openrouter/google/gemma-3`` keep their model path intact.
        """
        provider, sep, model = model_id.partition("/")
        if not sep or not model:
            return cls(id=model_id, provider="", model=model_id)
        return cls(id=model_id, provider=provider, model=model)


@dataclass
class AssistantSlot:
    """A configured assistant role to be bound to exactly one model per run."""

    assistant_id: AssistantId
    candidate_model_ids: List[str] = field(default_factory=list)
    type: SlotType = SlotType.OUTPUT_GENERATION
    required_to_show: bool = False
    name: str = ""
    system_prompt: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.type, SlotType):
            self.type = SlotType(self.type)

    @property
    def label(self) -> str:
        return self.name or f"assistant-{self.assistant_id}"


@dataclass(frozen=True)
class SelectedModel:
    """The model one assistant slot uses for this run."""

    assistant_id: AssistantId
    model_id: str
    provider: str
    model: str
    type: SlotType = SlotType.OUTPUT_GENERATION
    name: str = ""
    system_prompt: str = ""

    @property
    def qualified_name(self) -> str:
        """``provider/model`` as used to label generated outputs."""
        return f"{self.provider}/{self.model}" if self.provider else self.model


@dataclass
class ModelPool:
    """Assistant slots plus the provider config of every known model id."""

    slots: List[AssistantSlot] = field(default_factory=list)
    models: Dict[str, ModelConfig] = field(default_factory=dict)

    @classmethod
    def from_configs(
        cls, slots: Iterable[AssistantSlot], model_configs: Iterable[ModelConfig]
    ) -> "ModelPool":
        return cls(slots=list(slots), models={m.id: m for m in model_configs})

    def candidate_ids(self) -> Set[str]:
        """Union of all candidate model ids across slots."""
        return {model_id for slot in self.slots for model_id in slot.candidate_model_ids}

    def slots_of_type(self, slot_type: SlotType) -> List[AssistantSlot]:
        return [s for s in self.slots if s.type == slot_type]

    def assign(
        self,
        strategy: Union[AssignmentStrategy, str],
        rng: Optional[random.Random] = None,
    ) -> List[SelectedModel]:
        return assign_models(self.slots, strategy, models=self.models or None, rng=rng)


def _priority_key(slot: AssistantSlot) -> Tuple[int, int]:
    # sorted() is stable, so equal keys keep their configured order
    return (
        0 if slot.required_to_show else 1,
        0 if slot.type == SlotType.OUTPUT_GENERATION else 1,
    )


def _resolve(
    slot: AssistantSlot,
    model_id: str,
    models: Optional[Mapping[str, ModelConfig]],
) -> Optional[SelectedModel]:
    """Build the SelectedModel for a chosen id, or None if the id is unknown."""
    if models is not None:
        config = models.get(model_id)
        if config is None:
            logger.warning(f"Assistant {slot.label}: model {model_id} not found in model pool")
            return None
    else:
        config = ModelConfig.from_model_id(model_id)

    return SelectedModel(
        assistant_id=slot.assistant_id,
        model_id=model_id,
        provider=config.provider,
        model=config.model,
        type=slot.type,
        name=slot.name,
        system_prompt=slot.system_prompt,
    )


def random_selection(
    slots: List[AssistantSlot],
    models: Optional[Mapping[str, ModelConfig]] = None,
    rng: Optional[random.Random] = None,
) -> List[SelectedModel]:
    """Each slot independently draws one of its candidates uniformly."""
    rng = rng or random.Random()
    selected: List[SelectedModel] = []

    for slot in slots:
        if not slot.candidate_model_ids:
            logger.debug(f"Assistant {slot.label} has no candidate models, skipping")
            continue

        model_id = rng.choice(slot.candidate_model_ids)
        choice = _resolve(slot, model_id, models)
        if choice is not None:
            logger.debug(
                f"Assistant {slot.label}: drew {model_id} "
                f"from {len(slot.candidate_model_ids)} candidates"
            )
            selected.append(choice)

    return selected


def unique_model(
    slots: List[AssistantSlot],
    models: Optional[Mapping[str, ModelConfig]] = None,
) -> List[SelectedModel]:
    """Greedy unique assignment in priority order; duplicates only as a last resort."""
    claimed: Set[str] = set()
    selected: List[SelectedModel] = []

    for slot in sorted(slots, key=_priority_key):
        if not slot.candidate_model_ids:
            logger.debug(f"Assistant {slot.label} has no candidate models, skipping")
            continue

        model_id = next(
            (m for m in slot.candidate_model_ids if m not in claimed),
            None,
        )
        if model_id is None:
            model_id = slot.candidate_model_ids[0]
            logger.debug(f"Assistant {slot.label}: all candidates claimed, falling back to {model_id}")

        choice = _resolve(slot, model_id, models)
        if choice is not None:
            claimed.add(model_id)
            selected.append(choice)

    return selected


@log_performance()
def assign_models(
    slots: List[AssistantSlot],
    strategy: Union[AssignmentStrategy, str],
    models: Optional[Mapping[str, ModelConfig]] = None,
    rng: Optional[random.Random] = None,
) -> List[SelectedModel]:
    """
    Bind each assistant slot to one concrete model.

    Args:
        slots: Assistant slots with their candidate model ids.
        strategy: "random_selection" or "unique_model" (or the enum).
        models: Optional catalog of model id -> ModelConfig. When given, a
                chosen id missing from it skips the slot. When omitted,
                provider/model are split from "provider/name" ids.
        rng: Random source for random_selection.

    Returns:
        At most one SelectedModel per slot. Slots without candidates
        produce nothing; an empty slot list produces an empty list.
    """
    if not slots:
        return []

    resolved = AssignmentStrategy.parse(strategy)
    if resolved is AssignmentStrategy.UNIQUE_MODEL:
        selected = unique_model(slots, models)
    else:
        selected = random_selection(slots, models, rng)

    logger.info(
        f"Model assignment ({resolved.value}): {len(selected)}/{len(slots)} slots bound "
        f"[{', '.join(s.model_id for s in selected)}]"
    )
    return selected
