"""
Table-driven finite state machine core.

Small and dependency-light:
- One immutable transition table per machine definition.
- Dispatch returns an outcome; only malformed definitions raise.
"""

from .table import InvalidMachineDefinition, Transition, TransitionTable  # noqa: F401
from .state_machine import DispatchOutcome, DispatchResult, StateMachine, TransitionRecord  # noqa: F401
