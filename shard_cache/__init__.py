"""Sharded in-memory cache with consistent hashing, LRU eviction and TTL expiry."""

from shard_cache.coordinator import CacheCoordinator
from shard_cache.errors import (
    DuplicateShardError,
    NoShardsAvailableError,
    ShardCacheError,
    ShardUnavailableError,
    UnknownShardError,
)
from shard_cache.hash_ring import HashRing, hash_position
from shard_cache.invalidation import InvalidationBus, InvalidationEvent
from shard_cache.settings import Settings
from shard_cache.shard_store import MISS, CacheEntry, ShardStats, ShardStore
from shard_cache.sweeper import ExpirySweeper

__all__ = [
    "MISS",
    "CacheCoordinator",
    "CacheEntry",
    "DuplicateShardError",
    "ExpirySweeper",
    "HashRing",
    "InvalidationBus",
    "InvalidationEvent",
    "NoShardsAvailableError",
    "Settings",
    "ShardCacheError",
    "ShardStats",
    "ShardStore",
    "ShardUnavailableError",
    "UnknownShardError",
    "hash_position",
]
