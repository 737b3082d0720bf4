from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from statecore.common.config import MachineSettings
from statecore.common.logging import log_event
from statecore.machine import (
    DispatchResult,
    StateMachine,
    Transition,
    TransitionRecord,
    TransitionTable,
)

logger = logging.getLogger(__name__)


class VendingState(str, Enum):
    IDLE = "idle"
    HAS_MONEY = "hasMoney"


class VendingAction(str, Enum):
    INSERT_MONEY = "insertMoney"
    SELECT_PRODUCT = "selectProduct"
    CANCEL = "cancel"


def _as_amount(v: Any) -> Optional[int]:
    # Whole coins only: bools, fractions and non-numeric payloads are not money.
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, str) and v.strip().lstrip("-").isdigit():
        return int(v.strip())
    return None


@dataclass(frozen=True)
class VendingRequest:
    """Dispatch context: the machine being operated plus the raw action payload."""

    machine: "VendingMachine"
    payload: Any = None

    @property
    def amount(self) -> Optional[int]:
        return _as_amount(self.payload)

    @property
    def product(self) -> str:
        return "" if self.payload is None else str(self.payload)


def is_valid_amount(req: VendingRequest) -> bool:
    amount = req.amount
    return amount is not None and amount > 0


def has_sufficient_funds(req: VendingRequest) -> bool:
    return req.machine.balance >= req.machine.price


def _credit(req: VendingRequest) -> int:
    return req.machine._credit(req.amount or 0)


def _dispense(req: VendingRequest) -> str:
    req.machine._take_balance()
    product = req.machine._record_dispense(req.product)
    log_event(logger, "vending.dispensed", product=product)
    return product


def _refund(req: VendingRequest) -> int:
    refunded = req.machine._take_balance()
    log_event(logger, "vending.refunded", amount=refunded)
    return refunded


VENDING_TRANSITIONS: TransitionTable = TransitionTable(
    VendingState,
    [
        Transition(
            VendingState.IDLE,
            VendingAction.INSERT_MONEY,
            VendingState.HAS_MONEY,
            guard=is_valid_amount,
            effect=_credit,
        ),
        Transition(
            VendingState.HAS_MONEY,
            VendingAction.SELECT_PRODUCT,
            VendingState.IDLE,
            guard=has_sufficient_funds,
            effect=_dispense,
            description="dispense",
        ),
        Transition(VendingState.HAS_MONEY, VendingAction.CANCEL, VendingState.IDLE, effect=_refund),
    ],
)


class VendingMachine:
    """
    Coin-operated vending machine.

    idle --insertMoney--> hasMoney --selectProduct [balance >= price]--> idle
                                   --cancel (refund)-------------------> idle
    """

    def __init__(
        self,
        *,
        price: Optional[int] = None,
        observers: Iterable[Callable[[TransitionRecord], Any]] = (),
        history_limit: Optional[int] = None,
    ) -> None:
        self.price = int(price) if price is not None else MachineSettings.from_env().vending_price
        if self.price <= 0:
            raise ValueError(f"price must be positive, got {self.price}")
        self._balance = 0
        self._dispensed: list[str] = []
        self._machine = StateMachine(
            VendingState.IDLE,
            VENDING_TRANSITIONS,
            observers=observers,
            history_limit=history_limit,
            name="vending_machine",
        )

    @property
    def state(self) -> VendingState:
        return self._machine.current_state

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def dispensed(self) -> tuple[str, ...]:
        return tuple(self._dispensed)

    @property
    def machine(self) -> StateMachine:
        return self._machine

    def _credit(self, amount: int) -> int:
        self._balance += amount
        return self._balance

    def _take_balance(self) -> int:
        taken, self._balance = self._balance, 0
        return taken

    def _record_dispense(self, product: str) -> str:
        self._dispensed.append(product)
        return product

    def dispatch(self, action: Any, payload: Any = None) -> DispatchResult:
        try:
            action = VendingAction(action)
        except (TypeError, ValueError):
            # Unknown names fall through to the table and come back UNSUPPORTED_IN_STATE.
            pass
        return self._machine.dispatch(action, VendingRequest(machine=self, payload=payload))

    def insert_money(self, amount: int) -> DispatchResult:
        return self.dispatch(VendingAction.INSERT_MONEY, amount)

    def select_product(self, product: str) -> DispatchResult:
        return self.dispatch(VendingAction.SELECT_PRODUCT, product)

    def cancel(self) -> DispatchResult:
        return self.dispatch(VendingAction.CANCEL)
