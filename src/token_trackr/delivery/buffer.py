"""Bounded in-memory event queue."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field

from ..config import OverflowPolicy
from ..events import UsageEvent


logger = logging.getLogger(__name__)


@dataclass
class BoundedQueue:
    """
    Thread-safe FIFO buffer of pending usage events.

    Shared between producer threads calling record() and the delivery
    scheduler. Every operation takes the internal lock, does no I/O and
    never blocks on free space:

    - enqueue() on a full queue applies the overflow policy
    - drain() atomically removes a prefix, so two concurrent drains
      never return the same event
    """
    capacity: int = 1000

    # "drop_newest" = discard the incoming event (default)
    # "drop_oldest" = evict the head to make room
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_NEWEST

    # Log the first drop, then every Nth
    log_every: int = 100

    # Internal state
    _items: deque[UsageEvent] = field(default_factory=deque, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {self.capacity}")
        self.overflow_policy = OverflowPolicy(self.overflow_policy)
        self._stats = {
            "enqueued": 0,
            "dropped": 0,
            "drained": 0,
        }

    def enqueue(self, event: UsageEvent) -> UsageEvent | None:
        """
        Append an event to the tail.

        Returns the event that was dropped to respect capacity (the
        incoming one or the evicted head, depending on policy), or None
        if nothing was dropped.
        """
        with self._lock:
            dropped = None
            drop_count = 0
            if len(self._items) >= self.capacity:
                if self.overflow_policy == OverflowPolicy.DROP_OLDEST:
                    dropped = self._items.popleft()
                    self._items.append(event)
                    self._stats["enqueued"] += 1
                else:
                    dropped = event
                self._stats["dropped"] += 1
                drop_count = self._stats["dropped"]
            else:
                self._items.append(event)
                self._stats["enqueued"] += 1

        if dropped is not None and (drop_count == 1 or drop_count % self.log_every == 0):
            logger.warning(
                f"Usage queue full (capacity={self.capacity}, policy={self.overflow_policy.value}), "
                f"{drop_count} events dropped so far"
            )
        return dropped

    def drain(self, max_count: int) -> list[UsageEvent]:
        """Atomically remove and return up to max_count events from the head."""
        if max_count < 1:
            return []
        with self._lock:
            count = min(max_count, len(self._items))
            batch = [self._items.popleft() for _ in range(count)]
            self._stats["drained"] += count
        return batch

    def size(self) -> int:
        """Current queue length."""
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.size()

    @property
    def stats(self) -> dict:
        """Get queue statistics."""
        with self._lock:
            return {
                **self._stats,
                "size": len(self._items),
                "capacity": self.capacity,
            }
