"""Cache resource for reading and writing keys over HTTP."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import falcon

from shard_cache import MISS

if TYPE_CHECKING:
    from shard_cache import CacheCoordinator

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"


def _require_key(key: str) -> str:
    """Reject blank keys."""
    if not key.strip():
        raise falcon.HTTPBadRequest(title="Invalid Key", description="Cache key must not be empty")
    return key


class CacheResource:
    """Falcon resource for ``/cache/{key}``.

    Values are opaque byte strings: the request body of a PUT is stored as-is
    and returned as ``application/octet-stream`` on GET.
    """

    def __init__(self, coordinator: CacheCoordinator) -> None:
        """Initialize the cache resource."""
        self.coordinator = coordinator

    def on_get(self, req: falcon.Request, resp: falcon.Response, key: str) -> None:
        """Return the cached bytes, or 404 on a miss."""
        del req
        value = self.coordinator.get(_require_key(key))
        if value is MISS:
            logger.info("Cache miss: %s", key)
            raise falcon.HTTPNotFound(title="Cache Miss", description=f"No cached value for {key!r}")
        resp.content_type = OCTET_STREAM
        resp.data = value

    def on_put(self, req: falcon.Request, resp: falcon.Response, key: str) -> None:
        """Store the request body under ``key``.

        Query parameters:
        - ttl: Seconds until expiry (optional, falls back to the configured default)
        """
        _require_key(key)
        ttl = req.get_param_as_int("ttl", min_value=0)
        value = req.bounded_stream.read()
        if ttl is None:
            self.coordinator.set(key, value)
        else:
            self.coordinator.set(key, value, ttl=ttl)
        logger.info("Stored %d bytes under %s (ttl=%s)", len(value), key, ttl)
        resp.status = falcon.HTTP_204

    def on_delete(self, req: falcon.Request, resp: falcon.Response, key: str) -> None:
        """Delete ``key``; succeeds whether or not it existed."""
        del req
        existed = self.coordinator.delete(_require_key(key))
        logger.info("Deleted %s (existed=%s)", key, existed)
        resp.status = falcon.HTTP_204
