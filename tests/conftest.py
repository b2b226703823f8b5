"""Shared test fixtures: deterministic time and settings."""

import pytest

from invoice_recon.shared.config import Settings


class FakeClock:
    """Monotonic clock advanced only by FakeClock.sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock whose sleep advances time instantly."""
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment and any .env file."""
    return Settings(
        _env_file=None,
        azure_endpoint="https://example.cognitiveservices.azure.com",
        azure_api_key="test-key",
    )
