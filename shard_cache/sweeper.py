"""Background thread that periodically drops expired entries."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shard_cache.coordinator import CacheCoordinator

logger = logging.getLogger(__name__)


class ExpirySweeper(threading.Thread):
    """Calls ``sweep_expired`` on every attached store every ``interval`` seconds.

    Expired entries are also removed lazily on access; the sweeper only keeps
    ``size()`` honest for keys nobody touches again.
    """

    def __init__(self, coordinator: CacheCoordinator, interval: float) -> None:
        """Initialize the sweeper thread (not started).

        Args:
            coordinator: Coordinator whose stores are swept.
            interval: Seconds between sweeps.
        """
        if interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)
        super().__init__(name="expiry-sweeper", daemon=True)
        self.coordinator = coordinator
        self.interval = interval
        self._stop_event = threading.Event()

    def sweep_once(self) -> int:
        """Sweep every store once. Returns the number of entries removed."""
        removed = sum(store.sweep_expired() for store in self.coordinator.stores())
        logger.debug("Swept %d expired entries", removed)
        return removed

    def run(self) -> None:
        """Sweep until ``stop`` is called."""
        logger.info("Starting expiry sweeper every %.2fs", self.interval)
        while not self._stop_event.wait(self.interval):
            try:
                self.sweep_once()
            except Exception as oops:
                logger.error("Expiry sweep failed: %s", oops, exc_info=True)
        logger.info("Expiry sweeper stopped")

    def stop(self, timeout: float | None = None) -> None:
        """Stop scheduling sweeps and wait for an in-flight sweep to finish."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)

    @property
    def stopped(self) -> bool:
        """Whether ``stop`` has been requested."""
        return self._stop_event.is_set()
