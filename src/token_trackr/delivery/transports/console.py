"""Console transport for development/debugging."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass

from ...events import UsageEvent
from .base import Transport, serialize_batch


@dataclass
class ConsoleTransport(Transport):
    """
    Transport that writes events to console (stdout/stderr).

    Never fails, so nothing is retried. Useful for local development
    without a collector.
    """
    # Output destination
    stream: str = "stdout"  # stdout | stderr

    # Output format
    format: str = "json"  # json | compact

    # Prefix for each line
    prefix: str = "[TOKEN-TRACKR] "

    def send(self, batch: list[UsageEvent]) -> None:
        out = sys.stdout if self.stream == "stdout" else sys.stderr

        for payload in serialize_batch(batch):
            print(f"{self.prefix}{self._format(payload)}", file=out)

    def _format(self, payload: dict) -> str:
        if self.format == "compact":
            return (
                f"{payload['timestamp']} "
                f"{payload['tenant_id']} "
                f"{payload['provider']}/{payload['model']} "
                f"prompt={payload['prompt_tokens']} "
                f"completion={payload['completion_tokens']}"
            )
        return json.dumps(payload, default=str)
