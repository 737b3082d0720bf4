"""Concrete lifecycles built on the state machine core."""

from .document import Document, DocumentAction, DocumentState, User  # noqa: F401
from .vending_machine import VendingAction, VendingMachine, VendingState  # noqa: F401
