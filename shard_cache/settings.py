"""Settings module for runtime configuration."""

from __future__ import annotations

import os

DEFAULT_CAPACITY_PER_SHARD = 10_000
DEFAULT_VIRTUAL_NODES = 150
DEFAULT_SHARDS = "shard-0,shard-1,shard-2,shard-3"


def _parse_int(name: str, value: str | None, default: int | None) -> int | None:
    """Parse an integer environment variable.

    Args:
        name: Variable name, used in the error message.
        value: Raw value, or None when unset.
        default: Returned when the value is unset or blank.

    Returns:
        The parsed integer, or ``default``.
    """
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        msg = f"{name} must be an integer, got {value!r}"
        raise ValueError(msg) from None


class Settings:
    """Simple settings class for runtime configuration."""

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        """Initialize settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.
        """
        env = os.environ if environ is None else environ
        self.capacity_per_shard = _parse_int(
            "SHARD_CACHE_CAPACITY_PER_SHARD",
            env.get("SHARD_CACHE_CAPACITY_PER_SHARD"),
            DEFAULT_CAPACITY_PER_SHARD,
        )
        self.virtual_nodes_per_shard = _parse_int(
            "SHARD_CACHE_VIRTUAL_NODES",
            env.get("SHARD_CACHE_VIRTUAL_NODES"),
            DEFAULT_VIRTUAL_NODES,
        )
        self.default_ttl_seconds = _parse_int("SHARD_CACHE_DEFAULT_TTL", env.get("SHARD_CACHE_DEFAULT_TTL"), None)
        self.eviction_sweep_interval_seconds = _parse_int(
            "SHARD_CACHE_SWEEP_INTERVAL",
            env.get("SHARD_CACHE_SWEEP_INTERVAL"),
            None,
        )
        self.shard_ids = env.get("SHARD_CACHE_SHARDS", DEFAULT_SHARDS)

    @property
    def capacity_per_shard(self) -> int:
        """Maximum entries per shard store."""
        return self._capacity_per_shard

    @capacity_per_shard.setter
    def capacity_per_shard(self, value: int) -> None:
        if value < 0:
            msg = "capacity_per_shard must not be negative"
            raise ValueError(msg)
        self._capacity_per_shard = value

    @property
    def virtual_nodes_per_shard(self) -> int:
        """Ring points per shard."""
        return self._virtual_nodes_per_shard

    @virtual_nodes_per_shard.setter
    def virtual_nodes_per_shard(self, value: int) -> None:
        if value <= 0:
            msg = "virtual_nodes_per_shard must be positive"
            raise ValueError(msg)
        self._virtual_nodes_per_shard = value

    @property
    def default_ttl_seconds(self) -> int | None:
        """TTL used when a write does not give one; None never expires."""
        return self._default_ttl_seconds

    @default_ttl_seconds.setter
    def default_ttl_seconds(self, value: int | None) -> None:
        self._default_ttl_seconds = value

    @property
    def eviction_sweep_interval_seconds(self) -> int | None:
        """Seconds between background expiry sweeps; None disables the sweeper."""
        return self._eviction_sweep_interval_seconds

    @eviction_sweep_interval_seconds.setter
    def eviction_sweep_interval_seconds(self, value: int | None) -> None:
        if value is not None and value <= 0:
            msg = "eviction_sweep_interval_seconds must be positive"
            raise ValueError(msg)
        self._eviction_sweep_interval_seconds = value

    @property
    def shard_ids(self) -> tuple[str, ...]:
        """Shard ids created at startup."""
        return self._shard_ids

    @shard_ids.setter
    def shard_ids(self, value: str | tuple[str, ...] | list[str]) -> None:
        if isinstance(value, str):
            value = value.split(",")
        self._shard_ids = tuple(part.strip() for part in value if part.strip())

