"""Exception types for the token-trackr SDK."""

from __future__ import annotations

from typing import Any


class TrackrError(Exception):
    """Base exception for token-trackr errors."""
    pass


class ConfigurationError(TrackrError):
    """Invalid client configuration."""
    pass


class QueueOverflowError(TrackrError):
    """An event was dropped because the queue was full."""
    def __init__(self, dropped_event: Any, capacity: int):
        super().__init__(f"Queue full (capacity={capacity}), event dropped")
        self.dropped_event = dropped_event
        self.capacity = capacity


class ShutdownRejectedError(TrackrError):
    """An event was recorded after the client stopped accepting events."""
    def __init__(self, event: Any, state: str):
        super().__init__(f"Client is {state}, event rejected")
        self.event = event
        self.state = state


class DeliveryError(TrackrError):
    """Base class for batch delivery failures."""
    pass


class TransientDeliveryError(DeliveryError):
    """Retryable failure: timeout, connection error, 429 or 5xx."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentDeliveryError(DeliveryError):
    """Non-retryable failure, e.g. 4xx other than 429."""
    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class RetriesExhaustedError(DeliveryError):
    """Every attempt failed with a transient error."""
    def __init__(self, attempts: int, last_error: TransientDeliveryError):
        super().__init__(f"Delivery failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
