"""
Declarative machine definitions.

A definition is plain data (dict or JSON) naming states, the initial state and
transitions. Guards and effects are referenced by name and resolved against
registries supplied by the host at build time, so the payload itself never
carries code.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic.config import ConfigDict

from statecore.machine.state_machine import Observer, StateMachine
from statecore.machine.table import Effect, Guard, InvalidMachineDefinition, Transition, TransitionTable


class _Definition(BaseModel):
    """Direct construction fails the same way `load_definition` does."""

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise InvalidMachineDefinition(f"Invalid {type(self).__name__}: {e}") from e


class TransitionDefinition(_Definition):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    source: str = Field(..., alias="from", min_length=1, description="Source state name")
    action: str = Field(..., min_length=1)
    target: str = Field(..., alias="to", min_length=1, description="Target state name")
    guard: Optional[str] = Field(default=None, description="Guard name, resolved at build time")
    effect: Optional[str] = Field(default=None, description="Effect name, resolved at build time")
    description: str = ""


class MachineDefinition(_Definition):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(default="state_machine", min_length=1)
    states: List[str] = Field(..., min_length=1)
    initial_state: str = Field(..., min_length=1)
    transitions: List[TransitionDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_states(self) -> "MachineDefinition":
        if len(set(self.states)) != len(self.states):
            raise ValueError(f"duplicate state names: {self.states}")
        if self.initial_state not in self.states:
            raise ValueError(f"initial_state={self.initial_state} is not one of {self.states}")
        return self

    def to_table(
        self,
        *,
        guards: Optional[Mapping[str, Guard]] = None,
        effects: Optional[Mapping[str, Effect]] = None,
    ) -> TransitionTable:
        guards = dict(guards or {})
        effects = dict(effects or {})

        entries: list[Transition] = []
        for td in self.transitions:
            if td.guard is not None and td.guard not in guards:
                raise InvalidMachineDefinition(
                    f"Unknown guard: name={td.guard} state={td.source} action={td.action}. "
                    f"Registered guards: {sorted(guards)}"
                )
            if td.effect is not None and td.effect not in effects:
                raise InvalidMachineDefinition(
                    f"Unknown effect: name={td.effect} state={td.source} action={td.action}. "
                    f"Registered effects: {sorted(effects)}"
                )
            entries.append(
                Transition(
                    source=td.source,
                    action=td.action,
                    target=td.target,
                    guard=guards.get(td.guard) if td.guard else None,
                    effect=effects.get(td.effect) if td.effect else None,
                    description=td.description,
                )
            )
        return TransitionTable(self.states, entries)

    def build(
        self,
        *,
        guards: Optional[Mapping[str, Guard]] = None,
        effects: Optional[Mapping[str, Effect]] = None,
        observers: tuple[Observer, ...] = (),
        **machine_kwargs: Any,
    ) -> StateMachine:
        table = self.to_table(guards=guards, effects=effects)
        return StateMachine(self.initial_state, table, observers=observers, name=self.name, **machine_kwargs)


def load_definition(payload: Union[Mapping[str, Any], str, bytes]) -> MachineDefinition:
    """
    Parse a dict or JSON document into a MachineDefinition.

    Malformed payloads raise InvalidMachineDefinition (never pydantic's own
    ValidationError) so callers handle a single construction-time error type.
    """
    try:
        if isinstance(payload, (str, bytes)):
            return MachineDefinition.model_validate_json(payload)
        return MachineDefinition.model_validate(dict(payload))
    except ValidationError as e:
        raise InvalidMachineDefinition(f"Invalid machine definition: {e}") from e
    except TypeError as e:
        raise InvalidMachineDefinition(f"Invalid machine definition payload: {e}") from e
