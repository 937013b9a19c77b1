"""
Shared pytest fixtures for the tutoring engine test suite.

Provides:
* A controllable clock
* Response generators that fail, stall or record their calls
* An OpenAI-compatible async client stand-in
* A pre-wired engine over in-memory persistence and manual connectivity
"""

import asyncio
import os
import random
import sys
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "tutoring_sync_engine", "src"))

from tutoring_sync_engine.connectivity import ManualConnectivity
from tutoring_sync_engine.engine import TutoringEngine
from tutoring_sync_engine.errors import GenerationFailure
from tutoring_sync_engine.persistence import InMemoryPersistence
from tutoring_sync_engine.response_generation import ResponseGenerator, TemplateResponseGenerator


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 15, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, days: float = 0) -> None:
        self.now += timedelta(minutes=minutes, days=days)


class RecordingGenerator(ResponseGenerator):
    """Returns a fixed reply per call and remembers what it was asked."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, request_type, context):
        self.calls.append({"request_type": request_type, "context": dict(context)})
        if self.delay:
            await asyncio.sleep(self.delay)
        return f"Reply {len(self.calls)} to: {context['content']}"


class FailingGenerator(ResponseGenerator):
    async def generate(self, request_type, context):
        raise GenerationFailure("model unavailable")


class SlowGenerator(ResponseGenerator):
    async def generate(self, request_type, context):
        await asyncio.sleep(5)
        return "too late"


class DummyAsyncLLMClient:
    """Minimal AsyncOpenAI-compatible client with queued replies."""

    def __init__(self) -> None:
        self._queued: List[str] = []
        self.calls: List[Dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create_completion))

    def queue_response(self, content: str) -> None:
        self._queued.append(content)

    async def _create_completion(self, **kwargs: Any) -> SimpleNamespace:
        if not self._queued:
            raise AssertionError("DummyAsyncLLMClient received a call with no queued responses.")
        self.calls.append(kwargs)
        content = self._queued.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_engine(
    persistence=None,
    connectivity=None,
    generator=None,
    clock=None,
    seed: int = 42,
    **kwargs,
) -> TutoringEngine:
    rng = random.Random(seed)
    return TutoringEngine(
        persistence=persistence or InMemoryPersistence(),
        connectivity=connectivity or ManualConnectivity(),
        generator=generator or TemplateResponseGenerator(rng=rng),
        rng=rng,
        clock=clock or FakeClock(),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def connectivity():
    return ManualConnectivity()


@pytest.fixture
def engine(persistence, connectivity, clock):
    """Engine with template replies, seeded randomness and a fake clock."""
    return make_engine(persistence=persistence, connectivity=connectivity, clock=clock)


@pytest.fixture
def mock_openai_client():
    return DummyAsyncLLMClient()
