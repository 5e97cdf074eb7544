"""Admin resources for shard topology and invalidation."""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

import falcon

from shard_cache import ShardStore

if TYPE_CHECKING:
    from shard_cache import CacheCoordinator

logger = logging.getLogger(__name__)


class ShardCollectionResource:
    """Falcon resource for ``/admin/shards``."""

    def __init__(self, coordinator: CacheCoordinator) -> None:
        """Initialize the resource."""
        self.coordinator = coordinator

    def on_get(self, req: falcon.Request, resp: falcon.Response) -> None:
        """List shards with their counters and replica counts."""
        del req
        resp.media = {
            "shards": [
                {
                    "shard_id": shard_id,
                    "available": self.coordinator.store(shard_id).available,
                    "replicas": len(self.coordinator.replicas(shard_id)),
                    **dataclasses.asdict(stats),
                }
                for shard_id, stats in self.coordinator.stats().items()
            ],
        }


class ShardResource:
    """Falcon resource for ``/admin/shards/{shard_id}``."""

    def __init__(self, coordinator: CacheCoordinator, capacity_per_shard: int) -> None:
        """Initialize the resource.

        Args:
            coordinator: Coordinator whose topology is managed.
            capacity_per_shard: Capacity of stores created for new shards.
        """
        self.coordinator = coordinator
        self.capacity_per_shard = capacity_per_shard

    def on_post(self, req: falcon.Request, resp: falcon.Response, shard_id: str) -> None:
        """Add a shard backed by a new store."""
        del req
        self.coordinator.add_shard(shard_id, ShardStore(self.capacity_per_shard))
        resp.status = falcon.HTTP_201
        resp.media = {"shard_id": shard_id, "capacity": self.capacity_per_shard}

    def on_delete(self, req: falcon.Request, resp: falcon.Response, shard_id: str) -> None:
        """Remove a shard; its entries are dropped."""
        del req
        self.coordinator.remove_shard(shard_id)
        resp.status = falcon.HTTP_204

    def on_post_fail(self, req: falcon.Request, resp: falcon.Response, shard_id: str) -> None:
        """Simulate a failure of the shard."""
        del req
        self.coordinator.fail_shard(shard_id)
        resp.status = falcon.HTTP_204

    def on_post_recover(self, req: falcon.Request, resp: falcon.Response, shard_id: str) -> None:
        """Bring a failed shard back."""
        del req
        self.coordinator.recover_shard(shard_id)
        resp.status = falcon.HTTP_204


class InvalidationResource:
    """Falcon resource for ``/admin/invalidate``."""

    def __init__(self, coordinator: CacheCoordinator) -> None:
        """Initialize the resource."""
        self.coordinator = coordinator

    def on_post(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Publish an invalidation.

        Request body should contain exactly one of:
        - key: Exact key to drop from every shard
        - pattern: Glob pattern of keys to drop from every shard
        """
        data = req.get_media(default_when_empty=None)
        if not isinstance(data, dict):
            raise falcon.HTTPBadRequest(title="Invalid Body", description="Expected a JSON object")
        key = data.get("key")
        pattern = data.get("pattern")
        if (key is None) == (pattern is None):
            raise falcon.HTTPBadRequest(title="Invalid Body", description="Provide exactly one of 'key' or 'pattern'")
        target = key if key is not None else pattern
        if not isinstance(target, str) or not target:
            raise falcon.HTTPBadRequest(title="Invalid Body", description="'key' and 'pattern' must be non-empty strings")
        if key is not None:
            delivered = self.coordinator.invalidate(key)
        else:
            delivered = self.coordinator.invalidate_pattern(pattern)
        logger.info("Invalidation key=%s pattern=%s reached %d subscribers", key, pattern, delivered)
        resp.media = {"delivered": delivered}
