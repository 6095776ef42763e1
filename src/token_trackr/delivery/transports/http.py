"""HTTP transport posting batches to the collector."""

from __future__ import annotations

import logging

import httpx

from ... import __version__
from ...config import TrackrConfig
from ...errors import PermanentDeliveryError, TransientDeliveryError
from ...events import UsageEvent
from .base import Transport, serialize_batch


logger = logging.getLogger(__name__)

# Longest response body kept in error details
_MAX_DETAIL_CHARS = 500


class HttpTransport(Transport):
    """
    POSTs each batch as a JSON array to {backend_url}{ingest_path}.

    Status handling:
    - 2xx: delivered
    - 429, 5xx, timeouts, connection errors: TransientDeliveryError
    - anything else: PermanentDeliveryError
    """

    def __init__(
        self,
        config: TrackrConfig,
        http_client: httpx.Client | None = None,
    ):
        self.url = config.ingest_url
        self._headers = self._build_headers(config)
        # Injected clients belong to the caller; only close our own
        self._owns_client = http_client is None
        self.client = http_client or httpx.Client(timeout=config.timeout_seconds)
        self.timeout = config.timeout_seconds

    @staticmethod
    def _build_headers(config: TrackrConfig) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"token-trackr-python/{__version__}",
        }
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        return headers

    def send(self, batch: list[UsageEvent]) -> None:
        if not batch:
            return

        try:
            response = self.client.post(
                self.url,
                headers=self._headers,
                json=serialize_batch(batch),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientDeliveryError(f"Timed out posting batch: {e}") from e
        except httpx.TransportError as e:
            raise TransientDeliveryError(f"Connection error posting batch: {e}") from e

        status = response.status_code
        if 200 <= status < 300:
            logger.debug(f"Posted {len(batch)} events to {self.url} (HTTP {status})")
            return

        if status == 429 or 500 <= status < 600:
            raise TransientDeliveryError(f"Collector returned HTTP {status}", status_code=status)

        detail = response.text[:_MAX_DETAIL_CHARS]
        raise PermanentDeliveryError(
            f"Collector rejected batch with HTTP {status}",
            status_code=status,
            detail=detail,
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
