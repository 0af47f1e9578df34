"""
StubTap Scenario Store

Per-scenario working memory for stateful mocks.

Each scenario name owns a ScenarioState holding free-form ``data`` plus one
cursor per response sequence. Updates go through ``apply``: the callback
receives a private copy, and the copy replaces the stored state only if the
callback returns normally, so readers never see half-applied changes.

Data configured for the ``default`` scenario is the base of every other
scenario: a scenario starts from the default initial data overlaid with its
own.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import DEFAULT_SCENARIO


logger = logging.getLogger("stubtap.mock")


@dataclass(frozen=True)
class SequenceCursor:
    """Position inside a cyclic response sequence."""

    step_index: int = 0
    repeat_count: int = 0

    def advance(self, repeats: Sequence[int]) -> 'SequenceCursor':
        """
        Cursor after one more response has been served from the current step.

        Args:
            repeats: ``repeat`` value of every step, in order

        Returns:
            New cursor; wraps to step 0 after the last step
        """
        count = self.repeat_count + 1
        if count >= repeats[self.step_index]:
            return SequenceCursor(step_index=(self.step_index + 1) % len(repeats), repeat_count=0)
        return SequenceCursor(step_index=self.step_index, repeat_count=count)

    def to_dict(self) -> Dict[str, int]:
        return {'step_index': self.step_index, 'repeat_count': self.repeat_count}


@dataclass
class ScenarioState:
    """Working memory of one scenario."""

    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    sequences: Dict[str, SequenceCursor] = field(default_factory=dict)
    match_count: int = 0

    def copy(self) -> 'ScenarioState':
        return ScenarioState(
            name=self.name,
            data=copy.deepcopy(self.data),
            sequences=dict(self.sequences),
            match_count=self.match_count
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'data': copy.deepcopy(self.data),
            'sequences': {name: cursor.to_dict() for name, cursor in self.sequences.items()},
            'match_count': self.match_count
        }


class ScenarioStore:
    """
    Thread-safe store of ScenarioStates, one lock per scenario name.

    Example:
        store = ScenarioStore()
        store.configure('checkout', {'cart': []})

        def add_item(state):
            state.data['cart'].append('sku-1')
            return state

        snapshot = store.apply('checkout', add_item)
        store.reset('checkout')  # back to {'cart': []}
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._states: Dict[str, ScenarioState] = {}
        self._initial: Dict[str, Dict[str, Any]] = {}

    def configure(self, name: str, initial_state: Optional[Dict[str, Any]]):
        """
        Set the data a scenario starts from (used on first access and on reset).

        Existing state is left alone until the scenario is reset.
        """
        with self._guard:
            self._initial[name] = copy.deepcopy(initial_state or {})

    def get_state(self, name: str) -> ScenarioState:
        """Snapshot of a scenario's state, created lazily."""
        with self._lock_for(name):
            return self._current(name).copy()

    def apply(self, name: str, fn: Callable[[ScenarioState], Optional[ScenarioState]]) -> ScenarioState:
        """
        Atomically update a scenario.

        Args:
            name: Scenario name
            fn: Receives a private copy of the state and returns the new
                state (returning None keeps the mutated copy)

        Returns:
            Snapshot of the committed state

        Any exception raised by ``fn`` propagates and nothing is committed.
        """
        with self._lock_for(name):
            working = self._current(name).copy()
            result = fn(working)
            committed = result if result is not None else working
            self._states[name] = committed
            return committed.copy()

    def reset(self, name: str):
        """Return a scenario to its configured initial state."""
        with self._lock_for(name):
            self._states[name] = self._fresh(name)
        logger.info(f"Reset scenario '{name}'")

    def reset_all(self):
        """Reset every known scenario."""
        with self._guard:
            names = list(set(self._states) | set(self._initial))
        for name in names:
            self.reset(name)

    def clear(self):
        """Forget every scenario, including configured initial states."""
        with self._guard:
            self._states.clear()
            self._initial.clear()

    def names(self) -> List[str]:
        with self._guard:
            return sorted(set(self._states) | set(self._initial))

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def _current(self, name: str) -> ScenarioState:
        state = self._states.get(name)
        if state is None:
            state = self._states[name] = self._fresh(name)
        return state

    def _fresh(self, name: str) -> ScenarioState:
        with self._guard:
            initial = copy.deepcopy(self._initial.get(name, {}))
            if name != DEFAULT_SCENARIO:
                initial = {**copy.deepcopy(self._initial.get(DEFAULT_SCENARIO, {})), **initial}
        return ScenarioState(name=name, data=initial)
