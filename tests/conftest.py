from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_statecore_env(monkeypatch):
    """
    Test hygiene: machine settings are read from the environment at
    construction time, so a developer's shell must not leak into tests.
    """
    for name in list(os.environ):
        if name.startswith("STATECORE_"):
            monkeypatch.delenv(name, raising=False)
    yield
