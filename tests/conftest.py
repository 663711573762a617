from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from toolmemory.orchestration.tool_memory import ToolMemory
from toolmemory.storage.database import make_engine, make_session_factory
from toolmemory.storage.repo import ToolMemoryRepo


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0))


@pytest.fixture
def repo(tmp_path) -> ToolMemoryRepo:
    engine = make_engine(f"sqlite:///{tmp_path / 'tool_memory.db'}")
    yield ToolMemoryRepo(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def memory(repo, clock) -> ToolMemory:
    return ToolMemory(repo, clock=clock)
