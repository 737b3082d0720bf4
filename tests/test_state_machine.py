from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from statecore.machine import (
    DispatchOutcome,
    InvalidMachineDefinition,
    StateMachine,
    Transition,
    TransitionTable,
)


class _Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=float(seconds))


def _door_table(effects: list | None = None) -> TransitionTable:
    log = effects if effects is not None else []
    return TransitionTable(
        ["closed", "open", "locked"],
        [
            Transition("closed", "open", "open", effect=lambda ctx: log.append(("open", ctx))),
            Transition("open", "close", "closed"),
            Transition("closed", "lock", "locked", guard=lambda ctx: bool(ctx and ctx.get("has_key"))),
            Transition("locked", "unlock", "closed", guard=lambda ctx: bool(ctx and ctx.get("has_key"))),
            Transition("closed", "knock", "closed", effect=lambda ctx: log.append(("knock", ctx))),
        ],
    )


def test_initial_state_must_be_defined():
    with pytest.raises(InvalidMachineDefinition) as ei:
        StateMachine("ajar", _door_table())
    assert "state=ajar" in str(ei.value)


def test_table_must_be_transition_table():
    with pytest.raises(InvalidMachineDefinition):
        StateMachine("closed", {("closed", "open"): "open"})  # type: ignore[arg-type]


def test_current_state_has_no_side_effects():
    sm = StateMachine("closed", _door_table())
    assert sm.current_state == "closed"
    assert sm.current_state == "closed"
    assert sm.history == ()


def test_every_valid_pair_moves_to_configured_target():
    table = _door_table()
    ctx = {"has_key": True}
    for tr in table:
        sm = StateMachine(tr.source, table)
        res = sm.dispatch(tr.action, ctx)
        assert res.outcome is DispatchOutcome.TRANSITIONED
        assert sm.current_state == tr.target
        assert res.state_before == tr.source
        assert res.state_after == tr.target


def test_every_absent_pair_is_unsupported_and_leaves_state():
    table = _door_table()
    actions = {tr.action for tr in table} | {"smash"}
    for state in table.states:
        for action in actions:
            if table.lookup(state, action) is not None:
                continue
            sm = StateMachine(state, table)
            res = sm.dispatch(action, {"has_key": True})
            assert res.outcome is DispatchOutcome.UNSUPPORTED_IN_STATE
            assert sm.current_state == state
            assert res.state_after == state
            assert not res


def test_failing_guard_rejects_without_mutation():
    effects: list = []
    sm = StateMachine("closed", _door_table(effects))
    res = sm.dispatch("lock", {"has_key": False})
    assert res.outcome is DispatchOutcome.REJECTED_BY_GUARD
    assert sm.current_state == "closed"
    assert sm.history == ()

    res = sm.dispatch("lock", None)
    assert res.outcome is DispatchOutcome.REJECTED_BY_GUARD

    res = sm.dispatch("lock", {"has_key": True})
    assert res.transitioned is True
    assert sm.current_state == "locked"


def test_effect_receives_context_and_result_is_returned():
    effects: list = []
    sm = StateMachine("closed", _door_table(effects))
    res = sm.dispatch("open", "alice")
    assert effects == [("open", "alice")]
    assert res.effect_result is None
    assert sm.current_state == "open"

    table = TransitionTable(["a", "b"], [Transition("a", "go", "b", effect=lambda ctx: ctx * 2)])
    assert StateMachine("a", table).dispatch("go", 21).effect_result == 42


def test_self_loop_repeated_dispatch_is_identical_per_call():
    effects: list = []
    sm = StateMachine("closed", _door_table(effects))
    r1 = sm.dispatch("knock", 1)
    r2 = sm.dispatch("knock", 1)
    assert r1.outcome is r2.outcome is DispatchOutcome.TRANSITIONED
    assert (r1.state_before, r1.state_after) == (r2.state_before, r2.state_after) == ("closed", "closed")
    assert effects == [("knock", 1), ("knock", 1)]
    assert [h.action for h in sm.history] == ["knock", "knock"]


def test_failing_effect_leaves_state_and_history_untouched():
    def _boom(_ctx):
        raise RuntimeError("effect failed")

    seen: list = []
    table = TransitionTable(["a", "b"], [Transition("a", "go", "b", effect=_boom)])
    sm = StateMachine("a", table, observers=[seen.append])
    with pytest.raises(RuntimeError):
        sm.dispatch("go")
    assert sm.current_state == "a"
    assert sm.history == ()
    assert seen == []


def test_history_records_transitions_with_clock():
    clock = _Clock(datetime(2026, 1, 1, tzinfo=timezone.utc))
    sm = StateMachine("closed", _door_table(), now_fn=clock)
    sm.dispatch("open")
    clock.advance(5)
    sm.dispatch("close")
    sm.dispatch("lock", {"has_key": False})

    hist = sm.history
    assert [(h.state_before, h.action, h.state_after) for h in hist] == [
        ("closed", "open", "open"),
        ("open", "close", "closed"),
    ]
    assert hist[1].at - hist[0].at == timedelta(seconds=5)
    assert hist[0].to_log_event()["at"] == "2026-01-01T00:00:00+00:00"


def test_history_limit_keeps_most_recent():
    sm = StateMachine("closed", _door_table(), history_limit=2)
    for _ in range(3):
        sm.dispatch("open")
        sm.dispatch("close")
    assert len(sm.history) == 2
    assert [h.action for h in sm.history] == ["open", "close"]


def test_history_limit_from_env(monkeypatch):
    monkeypatch.setenv("STATECORE_HISTORY_LIMIT", "1")
    sm = StateMachine("closed", _door_table())
    sm.dispatch("open")
    sm.dispatch("close")
    assert [h.action for h in sm.history] == ["close"]


def test_can_dispatch_is_a_dry_run():
    effects: list = []
    sm = StateMachine("closed", _door_table(effects))
    assert sm.can_dispatch("open") is DispatchOutcome.TRANSITIONED
    assert sm.can_dispatch("lock", {"has_key": False}) is DispatchOutcome.REJECTED_BY_GUARD
    assert sm.can_dispatch("close") is DispatchOutcome.UNSUPPORTED_IN_STATE
    assert effects == []
    assert sm.current_state == "closed"


def test_allowed_actions_respects_guards():
    sm = StateMachine("closed", _door_table())
    assert sm.allowed_actions({"has_key": False}) == ("open", "knock")
    assert sm.allowed_actions({"has_key": True}) == ("open", "lock", "knock")


def test_is_terminal():
    table = TransitionTable(["a", "b"], [Transition("a", "go", "b")])
    sm = StateMachine("a", table)
    assert sm.is_terminal is False
    sm.dispatch("go")
    assert sm.is_terminal is True


def test_observers_notified_after_transition_only():
    seen: list = []
    sm = StateMachine("closed", _door_table())

    def _observer(record):
        # Observers see the committed state.
        seen.append((record.state_before, record.state_after, sm.current_state))

    sm.subscribe(_observer)
    sm.subscribe(_observer)
    sm.dispatch("open")
    sm.dispatch("open")
    assert seen == [("closed", "open", "open")]

    sm.unsubscribe(_observer)
    sm.unsubscribe(_observer)
    sm.dispatch("close")
    assert len(seen) == 1


def test_subscribe_rejects_non_callable():
    sm = StateMachine("closed", _door_table())
    with pytest.raises(TypeError):
        sm.subscribe("not-callable")  # type: ignore[arg-type]


def test_failing_observer_does_not_undo_transition(caplog):
    def _bad(_record):
        raise ValueError("observer broke")

    good: list = []
    sm = StateMachine("closed", _door_table(), observers=[_bad, good.append])
    with caplog.at_level(logging.ERROR, logger="statecore"):
        res = sm.dispatch("open")
    assert res.transitioned
    assert sm.current_state == "open"
    assert len(good) == 1
    assert any(getattr(r, "event_type", None) == "fsm.observer_failed" for r in caplog.records)


def test_transition_logged_as_semantic_event(caplog):
    sm = StateMachine("closed", _door_table(), name="door")
    with caplog.at_level(logging.DEBUG, logger="statecore"):
        sm.dispatch("open")
        sm.dispatch("smash")

    by_type = {getattr(r, "event_type", None): r for r in caplog.records}
    tr = by_type["fsm.transition"]
    assert tr.machine == "door"
    assert (tr.state_before, tr.state_after, tr.action) == ("closed", "open", "open")
    unsupported = by_type["fsm.unsupported"]
    assert unsupported.outcome == "UNSUPPORTED_IN_STATE"
    assert unsupported.allowed_actions == ["close"]


def test_transition_logging_can_be_disabled(caplog):
    sm = StateMachine("closed", _door_table(), log_transitions=False)
    with caplog.at_level(logging.DEBUG, logger="statecore"):
        sm.dispatch("open")
    assert not any(getattr(r, "event_type", None) == "fsm.transition" for r in caplog.records)
