"""Shared fixtures: a fake clock so timing tests never wait for real."""

import asyncio

import httpx
import pytest
import pytest_asyncio

from quotaguard.core.config import DispatcherSettings, LimiterSettings
from quotaguard.queue.dispatcher import RequestDispatcher
from quotaguard.queue.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock in seconds whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RecordingTransport:
    """Mock transport handler that replays responses and records call times."""

    def __init__(self, clock: FakeClock, responses=None):
        self.clock = clock
        self.responses = list(responses or [])
        self.calls: list[tuple[float, httpx.URL]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((self.clock(), request.url))
        if self.responses:
            response = self.responses.pop(0)
            if callable(response):
                return response(request)
            return response
        return httpx.Response(200, json={"path": request.url.path})

    @property
    def count(self) -> int:
        return len(self.calls)

    @property
    def times(self) -> list[float]:
        return [t for t, _ in self.calls]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter_settings():
    return LimiterSettings()


@pytest.fixture
def limiter(clock, limiter_settings):
    return RateLimiter(limiter_settings, clock=clock, sleep=clock.sleep)


@pytest.fixture
def transport(clock):
    return RecordingTransport(clock)


@pytest_asyncio.fixture
async def dispatcher(limiter, transport):
    d = RequestDispatcher(
        rate_limiter=limiter,
        settings=DispatcherSettings(),
        transport=httpx.MockTransport(transport),
    )
    yield d
    await d.aclose()
