from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Hashable, Iterable, Optional, Tuple

from statecore.common.config import MachineSettings
from statecore.common.logging import log_event
from statecore.machine.table import InvalidMachineDefinition, Transition, TransitionTable, _label

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DispatchOutcome(str, Enum):
    TRANSITIONED = "TRANSITIONED"
    REJECTED_BY_GUARD = "REJECTED_BY_GUARD"
    UNSUPPORTED_IN_STATE = "UNSUPPORTED_IN_STATE"


@dataclass(frozen=True)
class TransitionRecord:
    state_before: Hashable
    state_after: Hashable
    action: Hashable
    at: datetime

    def to_log_event(self) -> dict[str, Any]:
        return {
            "state_before": _label(self.state_before),
            "state_after": _label(self.state_after),
            "action": _label(self.action),
            "at": self.at.isoformat(),
        }


@dataclass(frozen=True)
class DispatchResult:
    outcome: DispatchOutcome
    action: Hashable
    state_before: Hashable
    state_after: Hashable
    at: datetime
    effect_result: Any = None

    @property
    def transitioned(self) -> bool:
        return self.outcome is DispatchOutcome.TRANSITIONED

    def __bool__(self) -> bool:
        return self.transitioned


Observer = Callable[[TransitionRecord], Any]


class StateMachine:
    """
    Table-driven finite state machine.

    Notes:
    - The machine owns only the current state identifier. The object whose
      behavior varies by state is passed to `dispatch` as `context`.
    - Business rejections (no transition, failing guard) are returned as
      outcomes, never raised. Only a malformed definition raises.
    - Not thread-safe: one logical caller per instance.
    """

    def __init__(
        self,
        initial_state: Hashable,
        table: TransitionTable,
        *,
        observers: Iterable[Observer] = (),
        history_limit: Optional[int] = None,
        log_transitions: Optional[bool] = None,
        now_fn: Callable[[], datetime] = _utc_now,
        name: str = "state_machine",
    ) -> None:
        if not isinstance(table, TransitionTable):
            raise InvalidMachineDefinition(f"Invalid transition table: expected TransitionTable, got {type(table).__name__}")
        if initial_state not in table:
            raise InvalidMachineDefinition(
                f"Invalid initial state: state={_label(initial_state)}. "
                f"Defined states: {[_label(s) for s in table.states]}"
            )

        settings = MachineSettings.from_env()
        limit = history_limit if history_limit is not None else settings.history_limit

        self._name = str(name)
        self._table = table
        self._state: Hashable = initial_state
        self._now = now_fn
        self._log_transitions = settings.log_transitions if log_transitions is None else bool(log_transitions)
        self._history: Deque[TransitionRecord] = deque(maxlen=limit if limit and limit > 0 else None)
        self._observers: list[Observer] = []
        for cb in observers:
            self.subscribe(cb)

    @property
    def name(self) -> str:
        return self._name

    @property
    def table(self) -> TransitionTable:
        return self._table

    @property
    def current_state(self) -> Hashable:
        return self._state

    @property
    def history(self) -> Tuple[TransitionRecord, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in self._table.terminal_states()

    def subscribe(self, callback: Observer) -> None:
        if not callable(callback):
            raise TypeError(f"observer must be callable, got {type(callback).__name__}")
        if callback not in self._observers:
            self._observers.append(callback)

    def unsubscribe(self, callback: Observer) -> None:
        try:
            self._observers.remove(callback)
        except ValueError:
            pass

    def _evaluate(self, action: Hashable, context: Any) -> Tuple[DispatchOutcome, Optional[Transition]]:
        tr = self._table.lookup(self._state, action)
        if tr is None:
            return (DispatchOutcome.UNSUPPORTED_IN_STATE, None)
        if tr.guard is not None and not tr.guard(context):
            return (DispatchOutcome.REJECTED_BY_GUARD, tr)
        return (DispatchOutcome.TRANSITIONED, tr)

    def can_dispatch(self, action: Hashable, context: Any = None) -> DispatchOutcome:
        """Dry run: evaluate lookup + guard without running the effect."""
        outcome, _tr = self._evaluate(action, context)
        return outcome

    def allowed_actions(self, context: Any = None) -> Tuple[Hashable, ...]:
        return tuple(
            a
            for a in self._table.actions_from(self._state)
            if self.can_dispatch(a, context) is DispatchOutcome.TRANSITIONED
        )

    def dispatch(self, action: Hashable, context: Any = None) -> DispatchResult:
        """
        Apply `action` to the current state.

        - No table entry for (state, action): UNSUPPORTED_IN_STATE, state unchanged.
        - Guard evaluates false against `context`: REJECTED_BY_GUARD, state unchanged.
        - Otherwise the effect runs, then the next state is assigned. If the
          effect raises, the exception propagates and the state is unchanged.
        """
        before = self._state
        outcome, tr = self._evaluate(action, context)

        if tr is None or outcome is not DispatchOutcome.TRANSITIONED:
            log_event(
                logger,
                "fsm.unsupported" if tr is None else "fsm.rejected",
                severity="DEBUG",
                machine=self._name,
                state=_label(before),
                action=_label(action),
                outcome=outcome.value,
                allowed_actions=[_label(a) for a in self._table.actions_from(before)],
            )
            return DispatchResult(
                outcome=outcome,
                action=action,
                state_before=before,
                state_after=before,
                at=self._now(),
            )

        effect_result = tr.effect(context) if tr.effect is not None else None

        now = self._now()
        self._state = tr.target
        record = TransitionRecord(state_before=before, state_after=tr.target, action=action, at=now)
        self._history.append(record)

        if self._log_transitions:
            log_event(logger, "fsm.transition", severity="INFO", machine=self._name, **record.to_log_event())
        self._notify(record)

        return DispatchResult(
            outcome=DispatchOutcome.TRANSITIONED,
            action=action,
            state_before=before,
            state_after=tr.target,
            at=now,
            effect_result=effect_result,
        )

    def _notify(self, record: TransitionRecord) -> None:
        for cb in tuple(self._observers):
            try:
                cb(record)
            except Exception:
                # Observers are outside the transition contract; the state change stands.
                logger.exception(
                    "fsm.observer_failed machine=%s action=%s",
                    self._name,
                    _label(record.action),
                    extra={"event_type": "fsm.observer_failed"},
                )

    def __repr__(self) -> str:
        return f"StateMachine(name={self._name!r}, current_state={_label(self._state)!r})"
