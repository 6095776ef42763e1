"""Base transport interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ...events import UsageEvent


class Transport(ABC):
    """
    Abstract base class for batch transports.

    A transport makes exactly one delivery attempt per send() call.
    Retrying is the scheduler's job.
    """

    @abstractmethod
    def send(self, batch: list[UsageEvent]) -> None:
        """
        Deliver a batch.

        Raises:
            TransientDeliveryError: the attempt may succeed if repeated
            PermanentDeliveryError: repeating will not help
        """
        ...

    def close(self) -> None:
        """Release resources (called on client shutdown)."""
        pass


def serialize_batch(batch: list[UsageEvent]) -> list[dict]:
    """Wire body for one batch: a JSON array of event payloads."""
    return [event.to_payload() for event in batch]
