"""Archive lifecycle state machine with an append-only transition log.

States::

    pending ──> processing ──> completed
       │            │  ^
       │            └──┘ (retry after a transient failure)
       └────────────┴───> failed

``completed`` and ``failed`` are terminal. Transition metadata:

- completed: ``fetch_duration_ms``
- failed: ``error_reason``, ``error_message``, ``http_status`` (if any)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .models import ArchiveRecord, ArchiveState, Transition

logger = logging.getLogger(__name__)

SORT_KEY_STEP = 10

ALLOWED_TRANSITIONS: Dict[ArchiveState, frozenset] = {
    ArchiveState.PENDING: frozenset({ArchiveState.PROCESSING, ArchiveState.FAILED}),
    ArchiveState.PROCESSING: frozenset(
        {ArchiveState.PROCESSING, ArchiveState.COMPLETED, ArchiveState.FAILED}
    ),
    ArchiveState.COMPLETED: frozenset(),
    ArchiveState.FAILED: frozenset(),
}


class TransitionFailedError(Exception):
    """Raised when a transition is not allowed from the current state."""

    def __init__(self, from_state: ArchiveState, to_state: ArchiveState) -> None:
        super().__init__(f"Cannot transition from '{from_state.value}' to '{to_state.value}'")
        self.from_state = from_state
        self.to_state = to_state


class ArchiveStateMachine:
    """Drives state changes for one :class:`ArchiveRecord`.

    :meth:`transition_to` is the only way to append to ``record.transitions``;
    it keeps sort keys strictly increasing and exactly one entry flagged
    ``most_recent``.
    """

    def __init__(self, record: ArchiveRecord) -> None:
        self.record = record

    @property
    def current_state(self) -> ArchiveState:
        last = self.last_transition
        return last.to_state if last else ArchiveState.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.current_state.is_terminal

    @property
    def last_transition(self) -> Optional[Transition]:
        for t in self.record.transitions:
            if t.most_recent:
                return t
        return None

    def history(self) -> List[Transition]:
        return sorted(self.record.transitions, key=lambda t: t.sort_key)

    def allowed_transitions(self) -> List[ArchiveState]:
        return sorted(ALLOWED_TRANSITIONS[self.current_state], key=list(ArchiveState).index)

    def can_transition_to(self, state: ArchiveState) -> bool:
        return ArchiveState(state) in ALLOWED_TRANSITIONS[self.current_state]

    def _next_sort_key(self) -> int:
        if not self.record.transitions:
            return SORT_KEY_STEP
        return max(t.sort_key for t in self.record.transitions) + SORT_KEY_STEP

    def transition_to(self, state: ArchiveState, **metadata: Any) -> Transition:
        """Append a transition to *state*.

        Raises:
            TransitionFailedError: If *state* is not reachable from the
                current state.
        """
        state = ArchiveState(state)
        from_state = self.current_state
        if not self.can_transition_to(state):
            raise TransitionFailedError(from_state, state)

        transition = Transition(
            to_state=state,
            sort_key=self._next_sort_key(),
            most_recent=True,
            metadata={k: v for k, v in metadata.items() if v is not None},
        )
        for t in self.record.transitions:
            t.most_recent = False
        self.record.transitions.append(transition)

        logger.debug(
            "Archive %s: %s -> %s", self.record.id, from_state.value, state.value
        )
        return transition

    def delete_transition(self, transition: Transition) -> None:
        """Remove *transition*; re-flag the new tail if it was most recent."""
        remaining = [t for t in self.record.transitions if t.id != transition.id]
        if len(remaining) == len(self.record.transitions):
            raise ValueError(f"Transition {transition.id} does not belong to archive {self.record.id}")

        if transition.most_recent and remaining:
            tail = max(remaining, key=lambda t: t.sort_key)
            tail.most_recent = True
        self.record.transitions = remaining
