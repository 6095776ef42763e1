"""Delivery pipeline - non-blocking buffering and batched shipping."""

from .batcher import Batcher
from .buffer import BoundedQueue
from .scheduler import DeliveryResult, DeliveryScheduler, DeliveryStatus, FlushResult

__all__ = [
    "BoundedQueue",
    "Batcher",
    "DeliveryScheduler",
    "DeliveryResult",
    "DeliveryStatus",
    "FlushResult",
]
