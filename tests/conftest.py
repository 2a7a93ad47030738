"""Pytest configuration and shared fixtures.

Run with:
    pytest tests/                        # Run all tests
    pytest tests/test_orchestrator.py -v # Run specific test file

No test talks to the network: generation calls go through the scripted
fakes below and the store runs on SQLite (aiosqlite).
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cognileap.db.models import Base
from cognileap.generation.client import GenerationResponse, StreamChunk

LONG_TEXT = (
    "Photosynthesis converts light energy into chemical energy stored in glucose. "
    "It takes place in the chloroplasts and has two stages: the light-dependent "
    "reactions and the Calvin cycle, which fixes carbon dioxide into sugars."
)


# ─────────────────────────────────────────────────────────────────────────────
# Generation fakes
# ─────────────────────────────────────────────────────────────────────────────

class ScriptedClient:
    """Generation client that replays a script per model.

    Each script entry is either a string (returned as the completion) or an
    exception instance (raised). Models without a script return LONG_TEXT.
    """

    def __init__(self, scripts: dict[str, list] | None = None) -> None:
        self.scripts = {model: list(steps) for model, steps in (scripts or {}).items()}
        self.calls: list[tuple[str, object]] = []

    @property
    def models_called(self) -> list[str]:
        return [model for model, _ in self.calls]

    async def generate(self, model, prompt_parts, config):
        self.calls.append((model, config))
        steps = self.scripts.get(model)
        outcome = steps.pop(0) if steps else LONG_TEXT
        if isinstance(outcome, BaseException):
            raise outcome
        return GenerationResponse(text=outcome, usage={"totalTokens": 42})


class StreamingClient:
    """Generation client whose ``stream`` yields fixed fragments.

    ``fail_after`` raises ``error`` once that many fragments were yielded.
    """

    def __init__(
        self,
        fragments: list[str] | None = None,
        usage: dict | None = None,
        fail_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.fragments = fragments if fragments is not None else ["Hello", ", world"]
        self.usage = usage if usage is not None else {"totalTokens": 12, "promptTokens": 8}
        self.fail_after = fail_after
        self.error = error or RuntimeError("upstream stream broke")
        self.requests: list[tuple[str, list, object]] = []

    async def stream(self, model, contents, config):
        self.requests.append((model, contents, config))
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index >= self.fail_after:
                raise self.error
            yield StreamChunk(text=fragment)
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise self.error
        yield StreamChunk(is_complete=True, usage=self.usage)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ─────────────────────────────────────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cognileap.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


def collect(frames: list[str], tag: str) -> list[str]:
    return [f for f in frames if f.startswith(f"{tag}:")]
