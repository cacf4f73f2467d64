import pytest
from typing import Dict, List

from api_switchboard.core.control import JobControl
from api_switchboard.core.governor import RateLimitConfig
from api_switchboard.core.request import RequestDescriptor
from tests.mocks.fake_api import MockResponse, MockSession, RecordingSink


class SleepRecorder:
    """Async sleep replacement that returns immediately and records durations."""

    def __init__(self):
        self.calls: List[float] = []
        self.hooks = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        for hook in list(self.hooks):
            hook(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def fake_sleep() -> SleepRecorder:
    """Provide a sleep function that never actually waits."""
    return SleepRecorder()


@pytest.fixture
def control(fake_sleep) -> JobControl:
    """Provide a job control whose waits use the fake sleep."""
    return JobControl(poll_interval=0.5, sleep_func=fake_sleep)


@pytest.fixture
def no_delay() -> RateLimitConfig:
    """Provide a rate limit without inter-request delay."""
    return RateLimitConfig(min_delay_ms=0)


@pytest.fixture
def recording_sink() -> RecordingSink:
    """Provide an in-memory sink."""
    return RecordingSink()


@pytest.fixture
def sample_items() -> List[Dict]:
    """Provide 25 numbered items."""
    return [{"id": i, "name": f"item-{i}"} for i in range(1, 26)]


@pytest.fixture
def paged_request() -> RequestDescriptor:
    """Provide a page-number style request."""
    return RequestDescriptor(url="https://api.example.com/items?page=1&per_page=10")


@pytest.fixture
def mock_session():
    """Provide a factory for mock aiohttp sessions."""
    def make(*responses):
        return MockSession(list(responses))
    return make


@pytest.fixture
def mock_response():
    """Provide the mock aiohttp response class."""
    return MockResponse
