"""Application factory for the cache service."""

from __future__ import annotations

import json
import logging

import falcon
import falcon.media
import orjson

from shard_cache import CacheCoordinator, ShardCacheError
from shard_cache.settings import Settings

from .admin_resource import InvalidationResource, ShardCollectionResource, ShardResource
from .cache_resource import CacheResource
from .metrics import MetricsEndpoint, build_registry
from .middlewares import LoggingMiddleware, TimingMiddleware

logger = logging.getLogger(__name__)


def json_error_serializer(request: falcon.Request, response: falcon.Response, exception: falcon.HTTPError) -> None:
    """Format Falcon HTTP errors as JSON responses."""
    del request
    exception_dict = json.loads(json.dumps(exception.to_dict(), default=str))
    response.media = exception_dict
    response.content_type = falcon.MEDIA_JSON


def handle_cache_error(req: falcon.Request, resp: falcon.Response, ex: ShardCacheError, params: dict) -> None:
    """Map routing and topology errors to 503."""
    del resp, params
    logger.warning("Cache error for %s %s: %s", req.method, req.relative_uri, ex)
    raise falcon.HTTPServiceUnavailable(title=type(ex).__name__, description=str(ex)) from ex


def create_app(coordinator: CacheCoordinator | None = None, *, settings: Settings | None = None) -> falcon.App:
    """Create and configure the Falcon application.

    Args:
        coordinator: Cache to serve; built from ``settings`` when omitted.
        settings: Configuration; read from the environment when omitted.
    """
    if settings is None:
        settings = Settings()
    if coordinator is None:
        coordinator = CacheCoordinator.from_settings(settings)

    app = falcon.App(
        middleware=[
            TimingMiddleware(),
            LoggingMiddleware(),
        ],
    )
    app.set_error_serializer(json_error_serializer)
    app.add_error_handler(ShardCacheError, handle_cache_error)

    json_handler = falcon.media.JSONHandler(
        dumps=orjson.dumps,
        loads=orjson.loads,
    )
    extra_handlers = {
        "application/json": json_handler,
    }
    app.req_options.media_handlers.update(extra_handlers)
    app.resp_options.media_handlers.update(extra_handlers)

    shard_resource = ShardResource(coordinator, settings.capacity_per_shard)
    app.add_route("/cache/{key}", CacheResource(coordinator))
    app.add_route("/admin/shards", ShardCollectionResource(coordinator))
    app.add_route("/admin/shards/{shard_id}", shard_resource)
    app.add_route("/admin/shards/{shard_id}/fail", shard_resource, suffix="fail")
    app.add_route("/admin/shards/{shard_id}/recover", shard_resource, suffix="recover")
    app.add_route("/admin/invalidate", InvalidationResource(coordinator))
    app.add_route("/metrics", MetricsEndpoint(build_registry(coordinator)))
    logger.info("Cache service ready with shards %s", ", ".join(coordinator.shard_ids))
    return app
