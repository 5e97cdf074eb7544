"""Consistent hash ring with virtual nodes.

Each physical shard is placed on a 32-bit ring ``virtual_nodes_per_shard`` times.
A key belongs to the first point at or after its own hash, wrapping around to the
start of the ring. Adding or removing a shard therefore only moves the keys that
fall between the affected points, roughly ``1/N`` of the keyspace.
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import Counter
from typing import TYPE_CHECKING, NamedTuple

import xxhash

from shard_cache.errors import DuplicateShardError, NoShardsAvailableError, UnknownShardError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

DEFAULT_VIRTUAL_NODES = 150
HASH_SEED = 0  # fixed so placement survives restarts


def hash_position(value: str) -> int:
    """Hash a string to an unsigned 32-bit ring position.

    Args:
        value: The string to hash (a cache key or a virtual node label).

    Returns:
        Position on the ring in ``[0, 2**32)``.
    """
    return xxhash.xxh32_intdigest(value.encode("utf-8"), seed=HASH_SEED)


class _RingSnapshot(NamedTuple):
    """Immutable view of the ring, swapped atomically on topology changes."""

    positions: tuple[int, ...]
    owners: tuple[str, ...]
    shard_ids: frozenset[str]


_EMPTY_SNAPSHOT = _RingSnapshot(positions=(), owners=(), shard_ids=frozenset())


class HashRing:
    """Maps keys to shard ids using consistent hashing.

    Lookups read an immutable snapshot and never block. ``add_shard`` and
    ``remove_shard`` build a new snapshot under a lock and publish it with a
    single attribute assignment.
    """

    def __init__(self, virtual_nodes_per_shard: int = DEFAULT_VIRTUAL_NODES) -> None:
        """Initialize an empty ring.

        Args:
            virtual_nodes_per_shard: Number of ring points per physical shard.
        """
        if virtual_nodes_per_shard <= 0:
            msg = "virtual_nodes_per_shard must be positive"
            raise ValueError(msg)
        self.virtual_nodes_per_shard = virtual_nodes_per_shard
        self._lock = threading.Lock()
        self._snapshot = _EMPTY_SNAPSHOT

    def _virtual_points(self, shard_id: str) -> list[tuple[int, str]]:
        return [(hash_position(f"{shard_id}-{i}"), shard_id) for i in range(self.virtual_nodes_per_shard)]

    @staticmethod
    def _build(points: Iterable[tuple[int, str]], shard_ids: frozenset[str]) -> _RingSnapshot:
        # ties on position break by shard id so ownership is deterministic
        ordered = sorted(points)
        return _RingSnapshot(
            positions=tuple(position for position, _ in ordered),
            owners=tuple(owner for _, owner in ordered),
            shard_ids=shard_ids,
        )

    def add_shard(self, shard_id: str) -> None:
        """Place a shard's virtual nodes on the ring.

        Raises:
            DuplicateShardError: If the shard is already on the ring.
        """
        with self._lock:
            current = self._snapshot
            if shard_id in current.shard_ids:
                raise DuplicateShardError(shard_id)
            points = list(zip(current.positions, current.owners))
            points.extend(self._virtual_points(shard_id))
            self._snapshot = self._build(points, current.shard_ids | {shard_id})
        logger.info("Added shard %s to ring (%d shards)", shard_id, len(self._snapshot.shard_ids))

    def remove_shard(self, shard_id: str) -> None:
        """Remove all of a shard's virtual nodes from the ring.

        Raises:
            UnknownShardError: If the shard is not on the ring.
        """
        with self._lock:
            current = self._snapshot
            if shard_id not in current.shard_ids:
                raise UnknownShardError(shard_id)
            points = [
                (position, owner)
                for position, owner in zip(current.positions, current.owners)
                if owner != shard_id
            ]
            self._snapshot = self._build(points, current.shard_ids - {shard_id})
        logger.info("Removed shard %s from ring (%d shards)", shard_id, len(self._snapshot.shard_ids))

    def owner_of(self, key: str) -> str:
        """Return the shard id that owns ``key``.

        Raises:
            NoShardsAvailableError: If the ring is empty.
        """
        snapshot = self._snapshot
        if not snapshot.positions:
            raise NoShardsAvailableError
        index = bisect.bisect_left(snapshot.positions, hash_position(key))
        if index == len(snapshot.positions):
            index = 0
        return snapshot.owners[index]

    def distribution(self, keys: Iterable[str]) -> dict[str, int]:
        """Count how many of ``keys`` each shard owns.

        Shards that own none of the keys are reported with a count of zero.
        """
        counts = Counter(self.owner_of(key) for key in keys)
        return {shard_id: counts.get(shard_id, 0) for shard_id in self.shard_ids}

    @property
    def shard_ids(self) -> tuple[str, ...]:
        """Sorted ids of the shards on the ring."""
        return tuple(sorted(self._snapshot.shard_ids))

    def __contains__(self, shard_id: object) -> bool:
        return shard_id in self._snapshot.shard_ids

    def __len__(self) -> int:
        return len(self._snapshot.shard_ids)

    def __repr__(self) -> str:
        return f"HashRing(shards={list(self.shard_ids)!r}, virtual_nodes_per_shard={self.virtual_nodes_per_shard})"
