"""Run state machine — strictly forward transitions, every one ledger-recorded.

Enforces:
- Only transitions listed in ``VALID_TRANSITIONS``.
- No state is re-entered; terminal states have no way out.
- Each transition is appended to the Run Ledger before it takes effect.
"""

from __future__ import annotations

import logging
import threading

from shiprail.core.run_ledger import RunLedger
from shiprail.models.ledger import LedgerEntry
from shiprail.models.runs import TERMINAL_STATES, VALID_TRANSITIONS, RunState

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RunStateMachine:
    """Tracks the current ``RunState`` of each run and validates transitions.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger
        self._states: dict[str, RunState] = {}
        self._lock = threading.Lock()

    def initialize_run(self, run_id: str) -> RunState:
        """Register a new run in PENDING."""
        with self._lock:
            if run_id in self._states or self._ledger.get_run_entries(run_id):
                raise InvalidTransitionError(f"Run {run_id} already exists")
            self._states[run_id] = RunState.PENDING
        return RunState.PENDING

    def get_current_state(self, run_id: str) -> RunState:
        state = self._states.get(run_id)
        if state is None:
            state = self._rebuild_state(run_id)
            if state not in TERMINAL_STATES:
                self._states[run_id] = state
        return state

    def _rebuild_state(self, run_id: str) -> RunState:
        """Rebuild the state of a run from its ledger entries."""
        state = RunState.PENDING
        for entry in self._ledger.get_run_entries(run_id):
            if "->" in entry.state_transition:
                _, to_state = entry.state_transition.split("->", 1)
                try:
                    state = RunState(to_state)
                except ValueError:
                    logger.warning(
                        "Ignoring unknown state %r in ledger entry %s",
                        to_state, entry.entry_id,
                    )
        return state

    def transition(
        self,
        run_id: str,
        target_state: RunState,
        *,
        commit_id: str = "",
        detail: str = "",
    ) -> LedgerEntry:
        """Move *run_id* to *target_state* and return the sealed ledger entry."""
        current = self.get_current_state(run_id)
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {run_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        sealed = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                commit_id=commit_id,
                state_transition=f"{current.value}->{target_state.value}",
                detail=detail,
            )
        )
        if target_state in TERMINAL_STATES:
            # Finished runs are answered from the ledger from here on.
            self._states.pop(run_id, None)
            logger.info("Run %s finished: %s", run_id, target_state.value)
        else:
            self._states[run_id] = target_state
            logger.debug("Run %s: %s -> %s", run_id, current.value, target_state.value)
        return sealed

    def is_terminal(self, run_id: str) -> bool:
        return self.get_current_state(run_id) in TERMINAL_STATES

    def get_available_transitions(self, run_id: str) -> set[RunState]:
        return set(VALID_TRANSITIONS.get(self.get_current_state(run_id), set()))
