"""Prometheus metrics for shard stores."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

if TYPE_CHECKING:
    from collections.abc import Iterator

    import falcon
    from prometheus_client.metrics_core import Metric

    from shard_cache import CacheCoordinator

logger = logging.getLogger(__name__)

_COUNTERS = (
    ("hits", "Cache hits"),
    ("misses", "Cache misses, expired entries included"),
    ("evictions", "Entries evicted to stay within capacity"),
    ("expirations", "Entries removed because their TTL passed"),
)
_GAUGES = (
    ("size", "Entries currently held"),
    ("capacity", "Configured maximum entries"),
)


class ShardCacheCollector:
    """Custom collector that reads shard counters at scrape time."""

    def __init__(self, coordinator: CacheCoordinator) -> None:
        """Initialize the collector."""
        self.coordinator = coordinator

    def collect(self) -> Iterator[Metric]:
        """Yield one family per counter, labelled by shard."""
        stats = self.coordinator.stats()
        for name, documentation in _COUNTERS:
            family = CounterMetricFamily(f"shard_cache_{name}", documentation, labels=["shard"])
            for shard_id, shard_stats in stats.items():
                family.add_metric([shard_id], getattr(shard_stats, name))
            yield family
        for name, documentation in _GAUGES:
            family = GaugeMetricFamily(f"shard_cache_{name}", documentation, labels=["shard"])
            for shard_id, shard_stats in stats.items():
                family.add_metric([shard_id], getattr(shard_stats, name))
            yield family


def build_registry(coordinator: CacheCoordinator) -> CollectorRegistry:
    """Create a registry holding only the shard collector."""
    registry = CollectorRegistry()
    registry.register(ShardCacheCollector(coordinator))
    return registry


class MetricsEndpoint:
    """Falcon endpoint for serving Prometheus metrics."""

    def __init__(self, registry: CollectorRegistry) -> None:
        """Initialize the endpoint."""
        self.registry = registry

    def on_get(self, _req: falcon.Request, resp: falcon.Response) -> None:
        """Serve metrics in Prometheus format."""
        resp.content_type = CONTENT_TYPE_LATEST
        resp.data = generate_latest(self.registry)
