"""Test bootstrap for mock-engine."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
if str(PACKAGE_ROOT) not in sys.path:
    sys.path.insert(0, str(PACKAGE_ROOT))

from mock_engine.config import EngineConfig  # noqa: E402
from mock_engine.engine import MockEngine  # noqa: E402


class FakeClock:
    """Clock that records requested sleeps and advances virtual time instantly."""

    def __init__(self) -> None:
        self.current = 0.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(tmp_path: Path, clock: FakeClock) -> MockEngine:
    config = EngineConfig(default_delay_ms=0, seed=1234, recordings_dir=tmp_path / "recordings")
    return MockEngine(config, clock=clock)
