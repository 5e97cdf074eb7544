"""In-process publish/subscribe bus for cache invalidation events.

Delivery is synchronous, best-effort and not persisted: a handler that is not
subscribed when an event is published never sees it. Entries still expire by
TTL, which bounds how long a missed invalidation can leave stale data around.
"""

from __future__ import annotations

import fnmatch
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvalidationEvent:
    """Request to drop a key, or every key matching a glob pattern.

    Attributes:
        key: Exact key to drop.
        pattern: ``fnmatch`` glob selecting keys to drop.
        origin_shard_id: Shard that already applied the change, if any.
        timestamp: Wall-clock creation time.
    """

    key: str | None = None
    pattern: str | None = None
    origin_shard_id: str | None = None
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if (self.key is None) == (self.pattern is None):
            msg = "exactly one of key or pattern must be set"
            raise ValueError(msg)

    def matches(self, key: str) -> bool:
        """Whether this event covers ``key``."""
        if self.key is not None:
            return key == self.key
        return fnmatch.fnmatchcase(key, self.pattern)


class InvalidationBus:
    """Fans invalidation events out to subscribed handlers in subscription order."""

    def __init__(self) -> None:
        """Initialize a bus with no subscribers."""
        self._lock = threading.Lock()
        self._handlers: dict[int, Callable[[InvalidationEvent], None]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, handler: Callable[[InvalidationEvent], None]) -> int:
        """Register ``handler`` and return its subscription id."""
        with self._lock:
            subscription_id = next(self._ids)
            self._handlers[subscription_id] = handler
        logger.debug("Subscribed handler %d: %r", subscription_id, handler)
        return subscription_id

    def unsubscribe(self, subscription_id: int) -> bool:
        """Remove a subscription. Returns whether it existed."""
        with self._lock:
            removed = self._handlers.pop(subscription_id, None) is not None
        logger.debug("Unsubscribed handler %d (existed=%s)", subscription_id, removed)
        return removed

    def publish(self, event: InvalidationEvent) -> int:
        """Deliver ``event`` to every current subscriber.

        A handler that raises is logged and skipped; later handlers still run.

        Returns:
            Number of handlers that completed without raising.
        """
        with self._lock:
            handlers = list(self._handlers.items())
        delivered = 0
        for subscription_id, handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.error("Invalidation handler %d failed for %s", subscription_id, event, exc_info=True)
                continue
            delivered += 1
        logger.debug("Published %s to %d/%d handlers", event, delivered, len(handlers))
        return delivered

    @property
    def subscriber_count(self) -> int:
        """Number of current subscriptions."""
        with self._lock:
            return len(self._handlers)
