"""Fixtures for the test suite."""

from __future__ import annotations

import logging

import pytest

from shard_cache import CacheCoordinator, ShardStore

logging.basicConfig(
    force=True,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Fixture providing a fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def coordinator(clock: FakeClock) -> CacheCoordinator:
    """Fixture providing a coordinator with four shards of capacity 1000."""
    coordinator = CacheCoordinator(virtual_nodes_per_shard=100)
    for i in range(4):
        coordinator.add_shard(f"s{i}", ShardStore(1_000, clock=clock))
    return coordinator
