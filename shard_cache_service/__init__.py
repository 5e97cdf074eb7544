"""HTTP service exposing the sharded cache."""

from shard_cache_service.app import create_app

__all__ = ["create_app"]
