"""
Pytest configuration and fixtures.
"""

import pytest

from country_directory.services.cache import AggregationCache
from country_directory.services.fetcher import DirectoryFetcher
from country_directory.services.governor import RequestGovernor
from tests.fakes import Clock


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def governor(sleeps) -> RequestGovernor:
    """Governor that records its pauses instead of sleeping."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RequestGovernor(delay=0.0, batch_size=50, batch_pause=0.0, sleep=fake_sleep)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def make_cache(governor, clock, tmp_path):
    """Build a cache over the given client factory."""

    def _make(factory, tiers=("trust_level_0",), page_size=1000, snapshot_path=None):
        fetcher = DirectoryFetcher(factory, governor, list(tiers), page_size)
        path = snapshot_path if snapshot_path is not None else str(tmp_path / "snapshot.json")
        return AggregationCache(fetcher, snapshot_path=path, clock=clock)

    return _make
