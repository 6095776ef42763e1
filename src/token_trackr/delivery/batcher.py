"""Flush-trigger logic on top of the bounded queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from ..events import UsageEvent
from .buffer import BoundedQueue


@dataclass
class Batcher:
    """
    Decides when queued events become a batch.

    Two triggers feed the same drain path:
    - count trigger: the producer checks should_flush() right after
      enqueueing and takes one batch when the threshold is reached
    - time trigger: the scheduler's timer takes every pending batch
      each flush interval, whatever the queue length

    The queue's atomic drain is the only serialization point, so a
    count-triggered drain racing a timer drain just gets fewer events.
    """
    queue: BoundedQueue
    batch_size: int = 10

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

    def should_flush(self) -> bool:
        """True once the queue holds at least one full batch."""
        return self.queue.size() >= self.batch_size

    def drain(self) -> list[UsageEvent]:
        """Take the next batch (up to batch_size events, may be empty)."""
        return self.queue.drain(self.batch_size)

    def drain_all(self) -> Iterator[list[UsageEvent]]:
        """
        Yield batches covering the events queued when iteration starts.

        Events enqueued afterwards are left for the next cycle, so a busy
        producer cannot keep a flush running forever.
        """
        remaining = self.queue.size()
        while remaining > 0:
            batch = self.queue.drain(min(self.batch_size, remaining))
            if not batch:
                return
            remaining -= len(batch)
            yield batch
