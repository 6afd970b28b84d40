from __future__ import annotations

import pytest

from typefusion import FusionEngine


@pytest.fixture()
def engine() -> FusionEngine:
    return FusionEngine()


@pytest.fixture()
def strict_engine() -> FusionEngine:
    return FusionEngine({"policy": "strict"})


@pytest.fixture()
def strictest_engine() -> FusionEngine:
    return FusionEngine({"policy": "strictest"})
