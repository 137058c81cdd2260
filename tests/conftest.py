"""Shared fixtures for the prompt generator tests."""

import asyncio

import pytest

from prompt_generator.models import RateLimitPolicy


class FakeClock:
    """Simulated monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeProvider:
    """Provider double that records calls and replays scripted outcomes.

    `responses` maps a reference to a list of outcomes consumed one per call;
    an Exception instance is raised, anything else is returned. References
    with no script left succeed with "prompt for <reference>".
    """

    label = "Fake"

    def __init__(self):
        self.calls = []
        self.credentials = []
        self.responses = {}
        self.gate = None

    async def generate(self, reference, credential, model):
        self.calls.append(reference)
        self.credentials.append(credential)

        if self.gate is not None:
            await self.gate.wait()

        outcomes = self.responses.get(reference)
        if outcomes:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"prompt for {reference}"

    async def list_models(self, credential=None):
        return ["fake-model"]


@pytest.fixture
def clock():
    """Create a simulated clock."""
    return FakeClock()


@pytest.fixture
def fake_provider():
    """Create a scripted provider double."""
    return FakeProvider()


@pytest.fixture
def fast_policy():
    """Policy with tiny delays so tests run quickly."""
    return RateLimitPolicy(
        min_spacing_ms=1,
        max_retries=3,
        initial_backoff_ms=20,
        max_backoff_ms=100,
        backoff_multiplier=2,
    )
