"""Tests for the cache coordinator."""

from __future__ import annotations

import threading

import pytest

from shard_cache import (
    MISS,
    CacheCoordinator,
    DuplicateShardError,
    HashRing,
    InvalidationBus,
    NoShardsAvailableError,
    Settings,
    ShardStore,
    ShardUnavailableError,
    UnknownShardError,
)


def _keys(count: int) -> list[str]:
    return [f"user:{i}" for i in range(count)]


class TestRouting:
    """Test routed get/set/delete."""

    def test_round_trip(self, coordinator: CacheCoordinator) -> None:
        """Test that values come back from whichever shard owns them."""
        for key in _keys(50):
            coordinator.set(key, key.upper())
        for key in _keys(50):
            assert coordinator.get(key) == key.upper()

    def test_value_lives_only_on_owner(self, coordinator: CacheCoordinator) -> None:
        """Test that set writes to the owning shard only."""
        coordinator.set("user:42", "v")
        owner = coordinator.owner_of("user:42")
        for shard_id in coordinator.shard_ids:
            held = "user:42" in coordinator.store(shard_id)
            assert held == (shard_id == owner)

    def test_miss(self, coordinator: CacheCoordinator) -> None:
        """Test that an unknown key is a MISS."""
        assert coordinator.get("never-set") is MISS

    def test_delete(self, coordinator: CacheCoordinator) -> None:
        """Test delete return values and effect."""
        assert coordinator.delete("missing-key") is False
        coordinator.set("k", 1)
        assert coordinator.delete("k") is True
        assert coordinator.delete("k") is False
        assert coordinator.get("k") is MISS

    def test_empty_coordinator_raises(self) -> None:
        """Test that every routed operation fails without shards."""
        coordinator = CacheCoordinator()
        with pytest.raises(NoShardsAvailableError):
            coordinator.get("k")
        with pytest.raises(NoShardsAvailableError):
            coordinator.set("k", 1)
        with pytest.raises(NoShardsAvailableError):
            coordinator.delete("k")

    def test_default_ttl(self, clock) -> None:
        """Test that omitted ttl uses the default and explicit None disables it."""
        coordinator = CacheCoordinator(default_ttl=10)
        coordinator.add_shard("s0", ShardStore(10, clock=clock))
        coordinator.set("defaulted", 1)
        coordinator.set("forever", 2, ttl=None)
        coordinator.set("short", 3, ttl=1)
        clock.advance(5)
        assert coordinator.get("short") is MISS
        assert coordinator.get("defaulted") == 1
        clock.advance(5)
        assert coordinator.get("defaulted") is MISS
        assert coordinator.get("forever") == 2

    def test_non_empty_ring_rejected(self) -> None:
        """Test that a pre-populated ring cannot be handed in."""
        ring = HashRing()
        ring.add_shard("s0")
        with pytest.raises(ValueError, match="ring must be empty"):
            CacheCoordinator(ring=ring)


class TestTopology:
    """Test shard add/remove."""

    def test_duplicate_and_unknown(self, coordinator: CacheCoordinator) -> None:
        """Test topology misuse errors."""
        with pytest.raises(DuplicateShardError):
            coordinator.add_shard("s0", ShardStore(1))
        with pytest.raises(UnknownShardError):
            coordinator.remove_shard("nope")
        with pytest.raises(UnknownShardError):
            coordinator.store("nope")

    def test_remove_shard_keeps_other_keys(self, coordinator: CacheCoordinator) -> None:
        """Test that keys on surviving shards still hit after a removal."""
        keys = _keys(400)
        for key in keys:
            coordinator.set(key, key)
        before = {key: coordinator.owner_of(key) for key in keys}

        detached = coordinator.remove_shard("s1")

        assert "s1" not in coordinator.shard_ids
        assert detached.size() == sum(1 for owner in before.values() if owner == "s1")
        for key in keys:
            if before[key] == "s1":
                # not migrated: a cold miss on the new owner
                assert coordinator.get(key) is MISS
            else:
                assert coordinator.owner_of(key) == before[key]
                assert coordinator.get(key) == key

    def test_removed_store_stops_receiving_invalidations(self, coordinator: CacheCoordinator) -> None:
        """Test that removal unsubscribes the store from the bus."""
        subscribers = coordinator.bus.subscriber_count
        detached = coordinator.remove_shard("s0")
        detached.set("user:1", "kept")
        coordinator.invalidate("user:1")
        assert detached.get("user:1") == "kept"
        assert coordinator.bus.subscriber_count == subscribers - 1

    def test_add_shard_moves_about_a_quarter(self, clock) -> None:
        """Test that adding a fourth shard reroutes a fraction of keys, not all."""
        coordinator = CacheCoordinator(virtual_nodes_per_shard=150)
        for shard_id in ("s0", "s1", "s2"):
            coordinator.add_shard(shard_id, ShardStore(2_000, clock=clock))
        keys = _keys(1_000)
        before = {key: coordinator.owner_of(key) for key in keys}
        coordinator.add_shard("s3", ShardStore(2_000, clock=clock))
        moved = sum(1 for key in keys if coordinator.owner_of(key) != before[key])
        assert 100 < moved < 450

    def test_from_settings(self, clock) -> None:
        """Test building a coordinator from configuration."""
        settings = Settings({"SHARD_CACHE_CAPACITY_PER_SHARD": "7", "SHARD_CACHE_SHARDS": "a, b", "SHARD_CACHE_DEFAULT_TTL": "30"})
        coordinator = CacheCoordinator.from_settings(settings, clock=clock)
        assert coordinator.shard_ids == ("a", "b")
        assert coordinator.store("a").capacity() == 7
        assert coordinator.default_ttl == 30
        assert coordinator.ring.virtual_nodes_per_shard == 150

    def test_topology_changes_during_traffic(self, clock) -> None:
        """Test that lookups keep working while shards come and go."""
        coordinator = CacheCoordinator(virtual_nodes_per_shard=50)
        coordinator.add_shard("stable", ShardStore(10_000, clock=clock))
        errors: list[Exception] = []
        stop = threading.Event()

        def traffic() -> None:
            i = 0
            while not stop.is_set():
                key = f"k{i % 200}"
                try:
                    coordinator.set(key, i)
                    coordinator.get(key)
                except Exception as oops:  # noqa: BLE001
                    errors.append(oops)
                i += 1

        workers = [threading.Thread(target=traffic) for _ in range(4)]
        for worker in workers:
            worker.start()
        for round_number in range(30):
            coordinator.add_shard(f"flappy-{round_number}", ShardStore(100, clock=clock))
            coordinator.remove_shard(f"flappy-{round_number}")
        stop.set()
        for worker in workers:
            worker.join()

        assert errors == []
        assert coordinator.shard_ids == ("stable",)

    def test_route_re_resolves_a_removed_owner(self, clock) -> None:
        """Test that an owner looked up just before its removal is resolved again."""

        class LaggingRing(HashRing):
            lagging_owner: str | None = None

            def owner_of(self, key: str) -> str:
                if self.lagging_owner is not None:
                    owner, self.lagging_owner = self.lagging_owner, None
                    return owner
                return super().owner_of(key)

        ring = LaggingRing(50)
        coordinator = CacheCoordinator(ring=ring)
        coordinator.add_shard("a", ShardStore(10, clock=clock))
        coordinator.add_shard("b", ShardStore(10, clock=clock))
        coordinator.remove_shard("b")

        ring.lagging_owner = "b"
        coordinator.set("k", 1)
        assert coordinator.store("a").get("k") == 1


class TestInvalidation:
    """Test invalidation fan-out through the coordinator."""

    def test_delete_invalidates_replicas(self, coordinator: CacheCoordinator, clock) -> None:
        """Test that replicas receive writes and drop keys deleted on the primary."""
        owner = coordinator.owner_of("user:42")
        replica = ShardStore(100, clock=clock)
        coordinator.add_replica(owner, replica)

        coordinator.set("user:42", "v")
        assert replica.get("user:42") == "v"

        assert coordinator.delete("user:42") is True
        assert replica.get("user:42") is MISS

    def test_add_shard_drops_copies_it_takes_over(self, coordinator: CacheCoordinator, clock) -> None:
        """Test that a copy left on a former owner cannot resurface after the new shard leaves."""
        keys = _keys(200)
        for key in keys:
            coordinator.set(key, "old")
        before = {key: coordinator.owner_of(key) for key in keys}

        coordinator.add_shard("s4", ShardStore(100, clock=clock))
        moved = [key for key in keys if coordinator.owner_of(key) != before[key]]
        assert moved
        for key in moved:
            assert key not in coordinator.store(before[key])
        coordinator.set(moved[0], "new")

        coordinator.remove_shard("s4")
        assert all(coordinator.get(key) is MISS for key in moved)
        assert all(coordinator.get(key) == "old" for key in keys if key not in moved)

    def test_set_publishes_nothing(self, coordinator: CacheCoordinator) -> None:
        """Test that writes stay on the owner and its replicas."""
        events: list = []
        coordinator.bus.subscribe(events.append)
        coordinator.set("user:1", 1)
        assert events == []

    def test_set_does_not_wait_on_other_shards(self, coordinator: CacheCoordinator) -> None:
        """Test that a write completes while another shard's store is locked."""
        key = next(key for key in _keys(100) if coordinator.owner_of(key) == "s0")
        done = threading.Event()

        def writer() -> None:
            coordinator.set(key, "v")
            done.set()

        with coordinator.store("s1")._lock:
            thread = threading.Thread(target=writer, daemon=True)
            thread.start()
            assert done.wait(timeout=5)
        thread.join()
        assert coordinator.get(key) == "v"

    def test_invalidate_pattern(self, coordinator: CacheCoordinator) -> None:
        """Test that a pattern invalidation reaches every shard."""
        for key in _keys(100):
            coordinator.set(key, 1)
        coordinator.set("session:1", 1)

        delivered = coordinator.invalidate_pattern("user:*")

        assert delivered == len(coordinator.shard_ids)
        assert all(coordinator.get(key) is MISS for key in _keys(100))
        assert coordinator.get("session:1") == 1

    def test_invalidate_key(self, coordinator: CacheCoordinator) -> None:
        """Test that a broadcast key invalidation removes the key from its owner."""
        coordinator.set("user:7", "v")
        coordinator.invalidate("user:7")
        assert coordinator.get("user:7") is MISS

    def test_primary_consumes_own_delete_once(self, clock) -> None:
        """Test that the owning primary is not asked to delete twice."""
        calls: list[str] = []

        class CountingStore(ShardStore):
            def delete(self, key: str) -> bool:
                calls.append(key)
                return super().delete(key)

        coordinator = CacheCoordinator()
        coordinator.add_shard("s0", CountingStore(10, clock=clock))
        coordinator.set("k", 1)
        calls.clear()
        coordinator.delete("k")
        assert calls == ["k"]

    def test_shared_bus(self, clock) -> None:
        """Test that a delete on one coordinator drops copies held by another on the same bus."""
        bus = InvalidationBus()
        first = CacheCoordinator(bus=bus)
        second = CacheCoordinator(bus=bus)
        first.add_shard("a", ShardStore(10, clock=clock))
        second.add_shard("b", ShardStore(10, clock=clock))
        first.set("k", 1)
        second.set("k", 2)
        assert first.get("k") == 1
        assert second.delete("k") is True
        assert first.get("k") is MISS
        assert second.get("k") is MISS

    def test_remove_replica(self, coordinator: CacheCoordinator, clock) -> None:
        """Test detaching replicas."""
        replica = ShardStore(10, clock=clock)
        coordinator.add_replica("s0", replica)
        assert coordinator.replicas("s0") == (replica,)
        coordinator.remove_replica("s0", replica)
        assert coordinator.replicas("s0") == ()
        with pytest.raises(UnknownShardError):
            coordinator.remove_replica("s0", replica)
        with pytest.raises(UnknownShardError):
            coordinator.add_replica("nope", replica)


class TestFailure:
    """Test the fail-fast policy for unavailable shards."""

    def test_failed_owner_raises(self, coordinator: CacheCoordinator) -> None:
        """Test that operations on a failed owner raise instead of failing over."""
        coordinator.set("user:42", "v")
        owner = coordinator.owner_of("user:42")
        coordinator.fail_shard(owner)

        with pytest.raises(ShardUnavailableError) as excinfo:
            coordinator.get("user:42")
        assert excinfo.value.shard_id == owner
        with pytest.raises(ShardUnavailableError):
            coordinator.set("user:42", "w")

        coordinator.recover_shard(owner)
        assert coordinator.get("user:42") == "v"

    def test_failed_replica_is_skipped(self, coordinator: CacheCoordinator, clock) -> None:
        """Test that writes skip a failed replica."""
        owner = coordinator.owner_of("k")
        replica = ShardStore(10, clock=clock)
        coordinator.add_replica(owner, replica)
        replica.mark_unavailable()
        coordinator.set("k", 1)
        assert replica.size() == 0
        assert coordinator.get("k") == 1


def test_stats(coordinator: CacheCoordinator) -> None:
    """Test that stats are reported per shard."""
    coordinator.set("user:1", 1)
    coordinator.get("user:1")
    coordinator.get("user:2")
    stats = coordinator.stats()
    assert tuple(stats) == ("s0", "s1", "s2", "s3")
    assert sum(each.hits for each in stats.values()) == 1
    assert sum(each.misses for each in stats.values()) == 1
    assert sum(each.size for each in stats.values()) == 1
