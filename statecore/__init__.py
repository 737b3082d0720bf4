"""
statecore package

Explicit, auditable state machines: every transition lives in one table and
every dispatch reports what happened instead of raising.
"""

from statecore.machine import (  # noqa: F401
    DispatchOutcome,
    DispatchResult,
    InvalidMachineDefinition,
    StateMachine,
    Transition,
    TransitionRecord,
    TransitionTable,
)

__version__ = "0.1.0"
