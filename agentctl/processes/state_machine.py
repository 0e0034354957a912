"""Orchestrator lifecycle state machine — enforces valid transitions."""

from __future__ import annotations

from typing import Awaitable, Callable

from agentctl.exceptions import LifecycleStateError
from agentctl.types import LifecycleState

TransitionCallback = Callable[[LifecycleState, LifecycleState], Awaitable[None]]

VALID_TRANSITIONS: dict[LifecycleState, set[LifecycleState]] = {
    LifecycleState.IDLE: {LifecycleState.STARTING},
    LifecycleState.STARTING: {LifecycleState.RUNNING, LifecycleState.FAILED},
    LifecycleState.RUNNING: {
        LifecycleState.STOPPING,
        LifecycleState.IDLE,  # worker exited on its own
        LifecycleState.FAILED,
    },
    LifecycleState.STOPPING: {LifecycleState.IDLE, LifecycleState.FAILED},
    LifecycleState.FAILED: {LifecycleState.IDLE},  # folded back once reported
}


class LifecycleStateMachine:
    """Lifecycle of the single worker slot an orchestrator owns.

    Transitions are synchronous; listeners are awaited afterwards by
    ``transition``.
    """

    def __init__(self) -> None:
        self._state = LifecycleState.IDLE
        self._listeners: list[TransitionCallback] = []

    @property
    def state(self) -> LifecycleState:
        return self._state

    def can_transition(self, target: LifecycleState) -> bool:
        return target in VALID_TRANSITIONS.get(self._state, set())

    async def transition(self, target: LifecycleState) -> None:
        if not self.can_transition(target):
            raise LifecycleStateError(
                f"Cannot transition from {self._state.value} to {target.value}"
            )
        old = self._state
        self._state = target
        for listener in self._listeners:
            await listener(old, target)

    def on_transition(self, callback: TransitionCallback) -> None:
        self._listeners.append(callback)
