from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_VENDING_PRICE = 10


def _parse_bool(raw: str | None, default: bool = False) -> bool:
    s = (raw or "").strip().lower()
    if not s:
        return default
    if s in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_bool_env(name: str, default: bool = False) -> bool:
    return _parse_bool(os.getenv(name), default=default)


def _parse_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def _as_int_or_none(v: str | None) -> int | None:
    try:
        return int(v) if v is not None and str(v).strip() != "" else None
    except Exception:
        return None


@dataclass(frozen=True)
class MachineSettings:
    """
    Runtime knobs shared by every StateMachine in the process.

    Values are read at call time (never at import time) so tests and hosts
    can set env vars before constructing machines.
    """

    history_limit: Optional[int] = None
    log_transitions: bool = True
    vending_price: int = DEFAULT_VENDING_PRICE

    @classmethod
    def from_env(cls) -> "MachineSettings":
        limit = _as_int_or_none(os.getenv("STATECORE_HISTORY_LIMIT"))
        # 0 / negative means "unbounded", same as unset.
        if limit is not None and limit <= 0:
            limit = None
        price = _parse_int_env("STATECORE_VENDING_PRICE", DEFAULT_VENDING_PRICE)
        return cls(
            history_limit=limit,
            log_transitions=_parse_bool_env("STATECORE_LOG_TRANSITIONS", default=True),
            vending_price=price if price > 0 else DEFAULT_VENDING_PRICE,
        )
