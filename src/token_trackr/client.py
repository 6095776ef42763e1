"""Main client class and process-wide registry."""

from __future__ import annotations

import atexit
import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from .config import TrackrConfig
from .delivery.batcher import Batcher
from .delivery.buffer import BoundedQueue
from .delivery.scheduler import DeliveryScheduler, FlushResult
from .delivery.transports.base import Transport
from .delivery.transports.http import HttpTransport
from .errors import QueueOverflowError, ShutdownRejectedError, TrackrError
from .events import Provider, UsageEvent
from .metadata import HostMetadataProvider


logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    """Lifecycle of a client instance."""
    ACTIVE = "active"        # Timer running, accepting records
    DRAINING = "draining"    # shutdown() in progress, final flush running
    STOPPED = "stopped"      # Terminal


class TokenTrackrClient:
    """
    Records LLM token usage and ships it to the collector in batches.

    Usage:
        client = TokenTrackrClient()
        client.track("bedrock", "anthropic.claude-3-sonnet", 120, 48, latency_ms=830)
        ...
        client.shutdown()

        # Or with custom config
        with TokenTrackrClient(TrackrConfig(
            backend_url="https://trackr.internal",
            tenant_id="team-search",
            batch_size=50,
        )) as client:
            client.record(event)

    In async mode (default) record() only buffers: a full batch is handed
    to a background worker and a timer flushes the rest every
    flush_interval. In sync mode record() delivers everything pending
    before returning and reports whether that succeeded.

    Delivery problems never raise out of record(); they are logged and
    passed to the optional on_error callback.

    With shutdown_on_exit the atexit hook holds a reference to the
    client, so a client that is never shut down stays alive until the
    interpreter exits. Call shutdown() (or use the context manager) to
    release it earlier.
    """

    def __init__(
        self,
        config: TrackrConfig | None = None,
        *,
        transport: Transport | None = None,
        on_error: Callable[[TrackrError], None] | None = None,
        host_metadata: HostMetadataProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        # Validates; raises ConfigurationError before anything starts
        self.config = config if config is not None else TrackrConfig()
        self.on_error = on_error

        self.queue = BoundedQueue(
            capacity=self.config.max_queue_size,
            overflow_policy=self.config.overflow_policy,
        )
        self.batcher = Batcher(self.queue, batch_size=self.config.batch_size)

        self._owns_transport = transport is None
        self.transport = transport if transport is not None else HttpTransport(self.config)

        self.scheduler = DeliveryScheduler.from_config(
            self.config,
            self.batcher,
            self.transport,
            on_error=self._report_error,
            sleep=sleep,
        )

        self.host_metadata = host_metadata if host_metadata is not None else HostMetadataProvider()

        self._state = ClientState.ACTIVE
        self._state_lock = threading.Lock()
        # Signalled when the last in-progress record() call leaves
        self._idle = threading.Condition(self._state_lock)
        self._producers = 0
        self._stats_lock = threading.Lock()
        self._stats = {
            "recorded": 0,
            "dropped_overflow": 0,
            "rejected_after_shutdown": 0,
        }

        self.scheduler.start()

        if self.config.detect_cloud and host_metadata is None:
            self.host_metadata.refresh_in_background()

        if self.config.shutdown_on_exit:
            atexit.register(self.shutdown)

        logger.info(
            f"Token-trackr client started (backend={self.config.backend_url}, "
            f"tenant={self.config.tenant_id}, async={self.config.async_mode})"
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, event: UsageEvent) -> bool:
        """
        Record a usage event.

        Returns True if the event was queued (async mode) or queued and
        delivered (sync mode). Returns False if it was dropped, rejected
        after shutdown, or (sync mode) delivery failed.
        """
        with self._state_lock:
            active = self._state == ClientState.ACTIVE
            if active:
                self._producers += 1
        if not active:
            self._reject(event)
            return False

        try:
            return self._record(event)
        finally:
            with self._state_lock:
                self._producers -= 1
                if self._producers == 0:
                    self._idle.notify_all()

    def _record(self, event: UsageEvent) -> bool:
        event = event.with_defaults(self.config.tenant_id, self.host_metadata.get())
        dropped = self.queue.enqueue(event)
        accepted = dropped is not event

        with self._stats_lock:
            if accepted:
                self._stats["recorded"] += 1
            if dropped is not None:
                self._stats["dropped_overflow"] += 1
        if dropped is not None:
            self._report_error(QueueOverflowError(dropped, self.queue.capacity))

        if not self.config.async_mode:
            return self.flush().ok and accepted

        # Count trigger: drain here, deliver on a worker
        if self.batcher.should_flush():
            batch = self.batcher.drain()
            if batch:
                self.scheduler.submit(batch)

        return accepted

    def track(
        self,
        provider: Provider | str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        *,
        latency_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """Build a UsageEvent from its parts and record it."""
        event = UsageEvent(
            provider=provider,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            metadata=metadata,
            timestamp=timestamp,
        )
        return self.record(event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> FlushResult:
        """Deliver everything queued now, waiting for retries to finish."""
        if self._state == ClientState.STOPPED:
            return FlushResult()
        return self.scheduler.flush()

    def shutdown(self, timeout: float | None = None) -> FlushResult:
        """
        Stop the timer and deliver everything still queued.

        Idempotent: only the first call does any work; later calls
        return an empty result immediately.

        record() calls already in progress are allowed to finish first,
        so do not call this from an on_error callback fired by record().
        """
        with self._state_lock:
            if self._state != ClientState.ACTIVE:
                return FlushResult()
            self._state = ClientState.DRAINING

        logger.info("Shutting down token-trackr client...")

        # record() calls admitted before DRAINING finish enqueueing first
        with self._state_lock:
            if not self._idle.wait_for(lambda: self._producers == 0, timeout):
                logger.warning(
                    f"{self._producers} record() calls still running at shutdown, "
                    f"their events may not be delivered"
                )

        self.scheduler.stop(timeout)
        result = self.scheduler.flush()

        if self._owns_transport:
            self.transport.close()

        with self._state_lock:
            self._state = ClientState.STOPPED

        if self.config.shutdown_on_exit:
            atexit.unregister(self.shutdown)

        logger.info(f"Token-trackr client stopped. Stats: {self.stats}")
        return result

    def __enter__(self) -> TokenTrackrClient:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reject(self, event: UsageEvent) -> None:
        with self._stats_lock:
            self._stats["rejected_after_shutdown"] += 1
            rejected = self._stats["rejected_after_shutdown"]
        if rejected == 1 or rejected % 100 == 0:
            logger.warning(
                f"record() called on a {self._state.value} client, "
                f"{rejected} events rejected so far"
            )
        self._report_error(ShutdownRejectedError(event, self._state.value))

    def _report_error(self, error: TrackrError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error(f"on_error callback failed: {e}")

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def stats(self) -> dict:
        """Get client statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        stats.update(self.scheduler.stats)
        stats["queue_size"] = self.queue.size()
        stats["state"] = self._state.value
        return stats


# Process-wide client. Explicit lifecycle: init_client() / shutdown_client().
_default_client: TokenTrackrClient | None = None
_default_lock = threading.Lock()


def init_client(config: TrackrConfig | None = None, **kwargs) -> TokenTrackrClient:
    """
    Create and install the process-wide client.

    Usage:
        from token_trackr import init_client, get_client

        init_client(TrackrConfig(tenant_id="team-search"))
        get_client().track("gemini", "gemini-1.5-pro", 40, 12)
    """
    global _default_client
    with _default_lock:
        if _default_client is not None:
            raise TrackrError("Process-wide client already initialized; call shutdown_client() first")
        _default_client = TokenTrackrClient(config, **kwargs)
        return _default_client


def get_client() -> TokenTrackrClient:
    """Return the process-wide client. Never creates one implicitly."""
    client = _default_client
    if client is None:
        raise TrackrError("No process-wide client; call init_client() first")
    return client


def shutdown_client() -> FlushResult:
    """Shut down and uninstall the process-wide client (no-op if none)."""
    global _default_client
    with _default_lock:
        client, _default_client = _default_client, None
    if client is None:
        return FlushResult()
    return client.shutdown()
