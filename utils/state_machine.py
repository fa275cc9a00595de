"""
Async State Machine

Finite state machine with transition history and transition listeners.
Drives the pipeline's coarse phase (generating -> evaluating -> complete),
where the allowed-transition map makes the phase strictly forward-moving.

Usage:
    from enum import Enum

    class Phase(Enum):
        GENERATING = "generating"
        EVALUATING = "evaluating"
        COMPLETE = "complete"

    sm = StateMachine(
        initial_state=Phase.GENERATING,
        allowed_transitions={
            Phase.GENERATING: [Phase.EVALUATING],
            Phase.EVALUATING: [Phase.COMPLETE],
        },
        strict=True,
    )

    async def on_change(old, new, reason):
        print(f"{old.name} -> {new.name}: {reason}")
    sm.on_transition(on_change)

    await sm.transition_to(Phase.EVALUATING, reason="generation settled")
    print(sm.state)    # Phase.EVALUATING
    print(sm.history)  # list of StateTransition records
"""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)

TransitionCallback = Callable[[S, S, str], Union[None, Awaitable[None]]]


class InvalidTransitionError(RuntimeError):
    """Raised by a strict state machine on a transition outside its map."""

    pass


@dataclass
class StateTransition(Generic[S]):
    """Records a single state transition."""
    from_state: S
    to_state: S
    timestamp: datetime
    reason: str


class StateMachine(Generic[S]):
    """
    Generic async state machine with transition history.

    Features:
    - Enum-based states (any Enum subclass)
    - Duplicate transitions are no-ops
    - Optional allowed_transitions map; strict mode raises instead of skipping
    - Any number of listeners, sync or async, called in registration order
    - Rolling history (configurable max size)
    """

    def __init__(
        self,
        initial_state: S,
        allowed_transitions: Optional[dict[S, List[S]]] = None,
        max_history: int = 100,
        strict: bool = False,
    ):
        """
        Args:
            initial_state: The starting state.
            allowed_transitions: Optional dict mapping each state to its valid
                                 target states. If None, all transitions allowed.
            max_history: Max number of transitions to keep in history.
            strict: Raise InvalidTransitionError on a disallowed transition
                    instead of logging and returning False.
        """
        self._state: S = initial_state
        self._allowed = allowed_transitions
        self._max_history = max_history
        self._strict = strict
        self._history: List[StateTransition[S]] = []
        self._callbacks: List[TransitionCallback] = []

    @property
    def state(self) -> S:
        """Current state."""
        return self._state

    @property
    def history(self) -> List[StateTransition[S]]:
        """Transition history (read-only copy)."""
        return list(self._history)

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register a listener: (old_state, new_state, reason) -> None or awaitable."""
        self._callbacks.append(callback)

    async def transition_to(self, new_state: S, reason: str = "") -> bool:
        """
        Transition to a new state.

        Args:
            new_state: Target state.
            reason: Human-readable reason (for debugging/logging).

        Returns:
            True if the transition occurred, False if skipped (duplicate or invalid).

        Raises:
            InvalidTransitionError: In strict mode, for a disallowed target.
        """
        if new_state == self._state:
            return False

        allowed = None if self._allowed is None else self._allowed.get(self._state, [])
        if allowed is not None and new_state not in allowed:
            message = (
                f"Invalid transition: {self._state.name} -> {new_state.name} "
                f"(allowed: {[s.name for s in allowed]})"
            )
            if self._strict:
                raise InvalidTransitionError(message)
            logger.warning(message)
            return False

        old_state = self._state
        self._state = new_state

        self._history.append(
            StateTransition(
                from_state=old_state,
                to_state=new_state,
                timestamp=datetime.now(),
                reason=reason,
            )
        )
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.info(f"State: {old_state.name} -> {new_state.name} ({reason})")

        for callback in self._callbacks:
            outcome = callback(old_state, new_state, reason)
            if inspect.isawaitable(outcome):
                await outcome

        return True
