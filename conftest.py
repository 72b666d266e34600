"""
Shared test doubles: a scripted LLM client and a manually advanced clock.

No test talks to a real generation API.
"""

import asyncio
import json
from typing import Optional

import pytest

from site_extractor.llm_client import BaseLLMClient
from site_extractor.schemas import ExtractorConfig, LLMCompletion, PageData, TokenUsage
from site_extractor.prompts import PromptOverrides


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubLLMClient(BaseLLMClient):
    """
    Replays scripted responses in order.

    Each entry is either generated text or an exception to raise. Every call
    advances the optional clock by call_duration to simulate latency.
    """

    provider = "stub"

    def __init__(self, responses=None, api_key: Optional[str] = "stub-key",
                 clock: Optional[FakeClock] = None, call_duration: float = 0.0):
        self.responses = list(responses or [])
        self.api_key = api_key
        self.model = "stub-model"
        self.clock = clock
        self.call_duration = call_duration
        self.prompts: list[str] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: str, config: ExtractorConfig) -> LLMCompletion:
        self.prompts.append(prompt)
        if self.clock is not None:
            self.clock.advance(self.call_duration)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMCompletion(text=response, usage=TokenUsage(total_tokens=42), model=self.model)

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Async sleep replacement that records delays and advances a clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


def json_reply(**fields) -> str:
    return json.dumps(fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def config():
    return ExtractorConfig(api_key="test-key", jitter_max_seconds=0.5)


@pytest.fixture
def no_overrides():
    return PromptOverrides()


@pytest.fixture
def page():
    return PageData(
        url="https://example.com/articles/pressure-cookers",
        title="Choosing a Pressure Cooker",
        text_content="Pressure cookers cut cooking time for beans, stews and grains. " * 5,
        description="A buyer's guide to electric pressure cookers.",
    )
