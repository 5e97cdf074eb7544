"""Routes cache operations to shard stores through the hash ring."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, NamedTuple

from shard_cache.errors import DuplicateShardError, ShardUnavailableError, UnknownShardError
from shard_cache.hash_ring import DEFAULT_VIRTUAL_NODES, HashRing
from shard_cache.invalidation import InvalidationBus, InvalidationEvent
from shard_cache.shard_store import ShardStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from shard_cache.settings import Settings
    from shard_cache.shard_store import ShardStats

logger = logging.getLogger(__name__)

_DEFAULT_TTL = object()


class _Attachment(NamedTuple):
    store: ShardStore
    subscription_id: int


class _ShardSubscriber:
    """Applies invalidation events to one attached store.

    Key events that originate from this store's own shard were already applied
    to the primary by the coordinator, so the primary skips them. Replicas apply
    everything.
    """

    def __init__(self, shard_id: str, store: ShardStore, *, replica: bool) -> None:
        self.shard_id = shard_id
        self.store = store
        self.replica = replica

    def __call__(self, event: InvalidationEvent) -> None:
        if event.pattern is not None:
            removed = self.store.delete_matching(event.pattern)
            if removed:
                logger.debug("Invalidated %d keys matching %s on %r", removed, event.pattern, self)
            return
        if not self.replica and event.origin_shard_id == self.shard_id:
            return
        self.store.delete(event.key)

    def __repr__(self) -> str:
        role = "replica" if self.replica else "primary"
        return f"<{role} subscriber for {self.shard_id}>"


class CacheCoordinator:
    """Public entry point of the sharded cache.

    The coordinator owns the hash ring and the topology (which store backs
    which shard id); each store owns its own entries. Callers construct one
    coordinator and pass it to whatever needs the cache.

    Failure policy is fail-fast: when the shard owning a key is unavailable the
    operation raises ``ShardUnavailableError`` instead of trying the next shard
    on the ring. Topology changes never migrate entries, so keys that move to a
    different shard miss until they are set again. Adding a shard drops the
    entries it takes over from their former owners.
    """

    def __init__(
        self,
        *,
        virtual_nodes_per_shard: int = DEFAULT_VIRTUAL_NODES,
        default_ttl: float | None = None,
        bus: InvalidationBus | None = None,
        ring: HashRing | None = None,
    ) -> None:
        """Initialize a coordinator with no shards.

        Args:
            virtual_nodes_per_shard: Ring points per shard, ignored when ``ring`` is given.
            default_ttl: TTL applied by ``set`` when no ttl is passed. ``None`` never expires.
            bus: Invalidation bus to publish on; a private one is created if omitted.
            ring: Empty hash ring to use; a new one is created if omitted.
        """
        if ring is None:
            ring = HashRing(virtual_nodes_per_shard)
        elif len(ring):
            msg = "ring must be empty; add shards through the coordinator"
            raise ValueError(msg)
        self.ring = ring
        self.bus = bus if bus is not None else InvalidationBus()
        self.default_ttl = default_ttl
        self._topology_lock = threading.Lock()
        # replaced wholesale under the lock, read without it
        self._primaries: dict[str, _Attachment] = {}
        self._replicas: dict[str, tuple[_Attachment, ...]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        shard_ids: Iterable[str] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> CacheCoordinator:
        """Build a coordinator and its stores from configuration.

        Args:
            settings: Source of capacity, virtual node count and default TTL.
            shard_ids: Shards to create; defaults to ``settings.shard_ids``.
            clock: Time source handed to every store.
        """
        coordinator = cls(
            virtual_nodes_per_shard=settings.virtual_nodes_per_shard,
            default_ttl=settings.default_ttl_seconds,
        )
        for shard_id in settings.shard_ids if shard_ids is None else shard_ids:
            coordinator.add_shard(shard_id, ShardStore(settings.capacity_per_shard, clock=clock))
        return coordinator

    # routing

    def owner_of(self, key: str) -> str:
        """Shard id currently owning ``key``."""
        return self.ring.owner_of(key)

    def _route(self, key: str) -> tuple[str, ShardStore]:
        shard_id = self.ring.owner_of(key)
        attachment = self._primaries.get(shard_id)
        while attachment is None and shard_id not in self.ring:
            # the owner was removed between the ring lookup and here
            shard_id = self.ring.owner_of(key)
            attachment = self._primaries.get(shard_id)
        if attachment is None or not attachment.store.available:
            logger.warning("Shard %s is unavailable for key %s", shard_id, key)
            raise ShardUnavailableError(shard_id)
        return shard_id, attachment.store

    def get(self, key: str) -> Any:
        """Value for ``key`` from its owning shard, or ``MISS``."""
        _, store = self._route(key)
        return store.get(key)

    def set(self, key: str, value: Any, ttl: Any = _DEFAULT_TTL) -> None:
        """Store ``value`` on the owning shard and its replicas.

        Only the owner and its replicas are touched, so writes to different
        shards never wait on each other.

        Args:
            key: Cache key.
            value: Opaque payload.
            ttl: Seconds until expiry. Omitted means ``default_ttl``; ``None`` never expires.
        """
        if ttl is _DEFAULT_TTL:
            ttl = self.default_ttl
        shard_id, store = self._route(key)
        store.set(key, value, ttl)
        for replica in self._replicas.get(shard_id, ()):
            if replica.store.available:
                replica.store.set(key, value, ttl)
            else:
                logger.debug("Skipping unavailable replica of %s for key %s", shard_id, key)

    def delete(self, key: str) -> bool:
        """Delete ``key`` on its owner and invalidate every other copy.

        Returns:
            Whether the owning shard held the key.
        """
        shard_id, store = self._route(key)
        existed = store.delete(key)
        self.bus.publish(InvalidationEvent(key=key, origin_shard_id=shard_id))
        return existed

    def invalidate(self, key: str) -> int:
        """Drop ``key`` from every attached store. Returns handlers reached."""
        return self.bus.publish(InvalidationEvent(key=key))

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop keys matching the glob ``pattern`` everywhere. Returns handlers reached."""
        return self.bus.publish(InvalidationEvent(pattern=pattern))

    # topology

    def _attach(self, shard_id: str, store: ShardStore, *, replica: bool) -> _Attachment:
        subscription_id = self.bus.subscribe(_ShardSubscriber(shard_id, store, replica=replica))
        return _Attachment(store=store, subscription_id=subscription_id)

    def add_shard(self, shard_id: str, store: ShardStore) -> None:
        """Attach ``store`` as the primary for a new shard and place it on the ring.

        Entries the new shard now owns are dropped from the other shards and
        their replicas, so a later removal cannot serve them stale.

        Raises:
            DuplicateShardError: If the shard id is already attached.
        """
        with self._topology_lock:
            if shard_id in self._primaries:
                raise DuplicateShardError(shard_id)
            attachment = self._attach(shard_id, store, replica=False)
            self._primaries = {**self._primaries, shard_id: attachment}
            self.ring.add_shard(shard_id)
        dropped = self._drop_entries_owned_by(shard_id)
        logger.info("Shard %s attached (capacity %d), dropped %d entries it now owns", shard_id, store.capacity(), dropped)

    def _drop_entries_owned_by(self, shard_id: str) -> int:
        # copies left on former owners would resurface if shard_id is removed again
        primaries = self._primaries
        replicas = self._replicas
        dropped = 0
        for other_id, attachment in primaries.items():
            if other_id == shard_id:
                continue
            for store in (attachment.store, *(each.store for each in replicas.get(other_id, ()))):
                for key in store.keys():
                    if self.ring.owner_of(key) == shard_id and store.delete(key):
                        dropped += 1
        return dropped

    def remove_shard(self, shard_id: str) -> ShardStore:
        """Take a shard off the ring and detach its primary and replicas.

        Entries are not migrated; the detached primary is returned to the caller.

        Raises:
            UnknownShardError: If the shard id is not attached.
        """
        with self._topology_lock:
            if shard_id not in self._primaries:
                raise UnknownShardError(shard_id)
            self.ring.remove_shard(shard_id)
            primaries = dict(self._primaries)
            attachment = primaries.pop(shard_id)
            replicas = dict(self._replicas)
            detached = (attachment, *replicas.pop(shard_id, ()))
            self._primaries = primaries
            self._replicas = replicas
        for each in detached:
            self.bus.unsubscribe(each.subscription_id)
        logger.info("Shard %s detached with %d entries", shard_id, attachment.store.size())
        return attachment.store

    def add_replica(self, shard_id: str, store: ShardStore) -> None:
        """Attach ``store`` as a replica of an existing shard.

        Replicas receive every write to the shard and every invalidation, but
        are never read from.

        Raises:
            UnknownShardError: If the shard id is not attached.
        """
        with self._topology_lock:
            if shard_id not in self._primaries:
                raise UnknownShardError(shard_id)
            attachment = self._attach(shard_id, store, replica=True)
            self._replicas = {**self._replicas, shard_id: (*self._replicas.get(shard_id, ()), attachment)}
        logger.info("Replica attached to shard %s", shard_id)

    def remove_replica(self, shard_id: str, store: ShardStore) -> None:
        """Detach a replica previously added with ``add_replica``.

        Raises:
            UnknownShardError: If ``store`` is not a replica of the shard.
        """
        with self._topology_lock:
            current = self._replicas.get(shard_id, ())
            remaining = tuple(each for each in current if each.store is not store)
            if len(remaining) == len(current):
                raise UnknownShardError(shard_id)
            detached = next(each for each in current if each.store is store)
            replicas = dict(self._replicas)
            if remaining:
                replicas[shard_id] = remaining
            else:
                del replicas[shard_id]
            self._replicas = replicas
        self.bus.unsubscribe(detached.subscription_id)
        logger.info("Replica detached from shard %s", shard_id)

    def fail_shard(self, shard_id: str) -> None:
        """Mark a shard's primary unavailable so routed operations fail fast."""
        self.store(shard_id).mark_unavailable()
        logger.warning("Shard %s marked unavailable", shard_id)

    def recover_shard(self, shard_id: str) -> None:
        """Mark a shard's primary available again."""
        self.store(shard_id).mark_available()
        logger.info("Shard %s marked available", shard_id)

    # introspection

    @property
    def shard_ids(self) -> tuple[str, ...]:
        """Sorted ids of attached shards."""
        return tuple(sorted(self._primaries))

    def store(self, shard_id: str) -> ShardStore:
        """Primary store for ``shard_id``.

        Raises:
            UnknownShardError: If the shard id is not attached.
        """
        try:
            return self._primaries[shard_id].store
        except KeyError:
            raise UnknownShardError(shard_id) from None

    def replicas(self, shard_id: str) -> tuple[ShardStore, ...]:
        """Replica stores of ``shard_id``, in attach order."""
        return tuple(each.store for each in self._replicas.get(shard_id, ()))

    def stores(self) -> list[ShardStore]:
        """Every attached store, primaries first."""
        primaries = self._primaries
        replicas = self._replicas
        stores = [primaries[shard_id].store for shard_id in sorted(primaries)]
        for shard_id in sorted(replicas):
            stores.extend(each.store for each in replicas[shard_id])
        return stores

    def stats(self) -> dict[str, ShardStats]:
        """Counters of each shard's primary store, keyed by shard id."""
        primaries = self._primaries
        return {shard_id: primaries[shard_id].store.stats() for shard_id in sorted(primaries)}

    def __repr__(self) -> str:
        return f"CacheCoordinator(shards={list(self.shard_ids)!r})"
