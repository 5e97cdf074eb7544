"""Exceptions raised by the sharded cache.

A cache miss is not an error; lookups return the ``MISS`` sentinel instead.
"""

from __future__ import annotations


class ShardCacheError(Exception):
    """Base class for sharded cache errors."""


class DuplicateShardError(ShardCacheError):
    """Raised when adding a shard id that is already present."""

    def __init__(self, shard_id: str) -> None:
        """Initialize with the offending shard id."""
        super().__init__(f"Shard already present: {shard_id!r}")
        self.shard_id = shard_id


class UnknownShardError(ShardCacheError):
    """Raised when referring to a shard id that is not present."""

    def __init__(self, shard_id: str) -> None:
        """Initialize with the offending shard id."""
        super().__init__(f"Unknown shard: {shard_id!r}")
        self.shard_id = shard_id


class NoShardsAvailableError(ShardCacheError):
    """Raised when a key is routed while the ring is empty."""

    def __init__(self) -> None:
        """Initialize with a fixed message."""
        super().__init__("No shards available")


class ShardUnavailableError(ShardCacheError):
    """Raised when the shard owning a key is marked unavailable."""

    def __init__(self, shard_id: str) -> None:
        """Initialize with the unavailable shard id."""
        super().__init__(f"Shard unavailable: {shard_id!r}")
        self.shard_id = shard_id
