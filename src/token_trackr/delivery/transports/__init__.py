"""Transports - how a batch reaches the collector."""

from .base import Transport, serialize_batch
from .console import ConsoleTransport
from .http import HttpTransport

__all__ = [
    "Transport",
    "serialize_batch",
    "ConsoleTransport",
    "HttpTransport",
]
