from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Hashable, Iterable, Iterator, Mapping, Optional, Tuple

Guard = Callable[[Any], bool]
Effect = Callable[[Any], Any]


class InvalidMachineDefinition(ValueError):
    pass


def _label(v: Any) -> str:
    return str(getattr(v, "value", v))


@dataclass(frozen=True)
class Transition:
    """
    One table entry: (source, action) -> target.

    `guard` is a predicate over the dispatch context; `effect` runs with the
    same context right before the machine assigns `target`.
    """

    source: Hashable
    action: Hashable
    target: Hashable
    guard: Optional[Guard] = None
    effect: Optional[Effect] = None
    description: str = ""

    @property
    def key(self) -> Tuple[Hashable, Hashable]:
        return (self.source, self.action)

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target


class TransitionTable:
    """
    Immutable (state, action) -> Transition mapping.

    Notes:
    - Validated once at construction; every source/target must belong to the
      declared state set and each (state, action) key may appear only once.
    - Passing an Enum class as `states` declares all of its members.
    - Identifiers follow plain dict semantics: a `str`-valued Enum member and
      its raw value compare and hash equal, so `"publish"` finds the
      `DocumentAction.PUBLISH` entry.
    """

    def __init__(self, states: Iterable[Hashable], transitions: Iterable[Transition]) -> None:
        self._states: Tuple[Hashable, ...] = ()
        self._by_key: Mapping[Tuple[Hashable, Hashable], Transition] = MappingProxyType({})
        ordered_states: list[Hashable] = []
        for s in states:
            if s not in ordered_states:
                ordered_states.append(s)
        if not ordered_states:
            raise InvalidMachineDefinition("Invalid transition table: state set is empty")

        try:
            state_set = frozenset(ordered_states)
        except TypeError as e:
            raise InvalidMachineDefinition(
                f"Invalid transition table: states must be hashable. Declared states: {ordered_states!r}"
            ) from e
        by_key: dict[Tuple[Hashable, Hashable], Transition] = {}
        for tr in transitions:
            if not isinstance(tr, Transition):
                raise InvalidMachineDefinition(f"Invalid transition table entry: {tr!r} is not a Transition")
            try:
                hash(tr.key)
                hash(tr.target)
            except TypeError as e:
                raise InvalidMachineDefinition(
                    f"Invalid transition: source={tr.source!r} action={tr.action!r} target={tr.target!r} "
                    f"must all be hashable"
                ) from e
            for role, state in (("source", tr.source), ("target", tr.target)):
                if state not in state_set:
                    raise InvalidMachineDefinition(
                        f"Invalid transition: {role}={_label(state)} action={_label(tr.action)} "
                        f"references an undefined state. Defined states: {[_label(s) for s in ordered_states]}"
                    )
            if tr.key in by_key:
                raise InvalidMachineDefinition(
                    f"Duplicate transition: state={_label(tr.source)} action={_label(tr.action)}"
                )
            if tr.guard is not None and not callable(tr.guard):
                raise InvalidMachineDefinition(
                    f"Invalid guard for state={_label(tr.source)} action={_label(tr.action)}: not callable"
                )
            if tr.effect is not None and not callable(tr.effect):
                raise InvalidMachineDefinition(
                    f"Invalid effect for state={_label(tr.source)} action={_label(tr.action)}: not callable"
                )
            by_key[tr.key] = tr

        self._states = tuple(ordered_states)
        self._state_set = state_set
        self._by_key = MappingProxyType(by_key)

    @property
    def states(self) -> Tuple[Hashable, ...]:
        return self._states

    @property
    def transitions(self) -> Tuple[Transition, ...]:
        return tuple(self._by_key.values())

    def lookup(self, state: Hashable, action: Hashable) -> Optional[Transition]:
        try:
            return self._by_key.get((state, action))
        except TypeError:
            # Unhashable action: cannot be in the table.
            return None

    def actions_from(self, state: Hashable) -> Tuple[Hashable, ...]:
        return tuple(a for (s, a) in self._by_key if s == state)

    def terminal_states(self) -> frozenset:
        sources = {s for (s, _a) in self._by_key}
        return frozenset(s for s in self._states if s not in sources)

    def __contains__(self, state: object) -> bool:
        try:
            return state in self._state_set
        except TypeError:
            return False

    def __iter__(self) -> Iterator[Transition]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __repr__(self) -> str:
        return f"TransitionTable(states={[_label(s) for s in self._states]}, transitions={len(self)})"
