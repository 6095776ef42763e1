"""Delivery scheduler: retry loop, flush timer and send workers."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import TrackrConfig
from ..errors import (
    DeliveryError,
    PermanentDeliveryError,
    RetriesExhaustedError,
    TrackrError,
    TransientDeliveryError,
)
from ..events import UsageEvent
from .batcher import Batcher
from .transports.base import Transport


logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    """Final outcome of one batch."""
    DELIVERED = "delivered"
    FAILED_PERMANENT = "failed_permanent"
    FAILED_EXHAUSTED = "failed_exhausted"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of delivering one batch, retries included."""
    status: DeliveryStatus
    events: int
    attempts: int
    error: DeliveryError | None = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


@dataclass
class FlushResult:
    """Aggregate outcome of a flush (zero or more batches)."""
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every batch was delivered (vacuously true when empty)."""
        return all(r.ok for r in self.results)

    @property
    def batches(self) -> int:
        return len(self.results)

    @property
    def delivered(self) -> int:
        return sum(r.events for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(r.events for r in self.results if not r.ok)

    @property
    def errors(self) -> list[DeliveryError]:
        return [r.error for r in self.results if r.error is not None]


class DeliveryScheduler:
    """
    Owns everything between a drained batch and the collector.

    - deliver(): one batch, retried with exponential backoff on
      transient failures, dropped on permanent failure or exhaustion
    - submit(): hand a batch to the worker pool (count trigger in
      async mode); several batches may be in flight at once
    - timer thread: the only caller of time-triggered flushes; wakes
      every flush_interval and delivers whatever is queued

    Delivery failures are logged and passed to on_error, never raised.
    """

    def __init__(
        self,
        batcher: Batcher,
        transport: Transport,
        *,
        flush_interval: float = 5.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        max_workers: int = 2,
        on_error: Callable[[TrackrError], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.batcher = batcher
        self.transport = transport
        self.flush_interval = flush_interval
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.on_error = on_error
        self._sleep = sleep

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="token-trackr-send",
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._timer_thread: threading.Thread | None = None

        self._stats_lock = threading.Lock()
        self._stats = {
            "batches_sent": 0,
            "events_sent": 0,
            "batches_failed": 0,
            "events_failed": 0,
            "attempts": 0,
            "retries": 0,
            "timer_flushes": 0,
        }

    @classmethod
    def from_config(
        cls,
        config: TrackrConfig,
        batcher: Batcher,
        transport: Transport,
        on_error: Callable[[TrackrError], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> DeliveryScheduler:
        return cls(
            batcher,
            transport,
            flush_interval=config.flush_interval,
            retry_attempts=config.retry_attempts,
            backoff_seconds=config.retry_backoff_seconds,
            backoff_max_seconds=config.retry_backoff_max_seconds,
            max_workers=config.max_concurrent_sends,
            on_error=on_error,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(self, batch: list[UsageEvent]) -> DeliveryResult:
        """Send one batch with retry. Never raises delivery errors."""
        attempts = 0
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_max_seconds),
            retry=retry_if_exception_type(TransientDeliveryError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    attempts += 1
                    self.transport.send(batch)
        except TransientDeliveryError as e:
            error: DeliveryError = RetriesExhaustedError(attempts, e)
            status = DeliveryStatus.FAILED_EXHAUSTED
            logger.error(f"Dropping batch of {len(batch)} events: {error}")
        except PermanentDeliveryError as e:
            error = e
            status = DeliveryStatus.FAILED_PERMANENT
            logger.error(
                f"Dropping batch of {len(batch)} events, collector rejected it "
                f"(status={e.status_code}): {e.detail or e}"
            )
        except Exception as e:
            error = PermanentDeliveryError(f"Unexpected transport error: {e}")
            status = DeliveryStatus.FAILED_PERMANENT
            logger.exception(f"Unexpected transport error, dropping batch of {len(batch)} events")
        else:
            self._record_outcome(len(batch), attempts, ok=True)
            logger.debug(f"Delivered batch of {len(batch)} events in {attempts} attempt(s)")
            return DeliveryResult(DeliveryStatus.DELIVERED, len(batch), attempts)

        self._record_outcome(len(batch), attempts, ok=False)
        self._report(error)
        return DeliveryResult(status, len(batch), attempts, error)

    def submit(self, batch: list[UsageEvent]) -> Future:
        """Deliver a batch on the worker pool without waiting for it."""
        try:
            future = self._executor.submit(self.deliver, batch)
        except RuntimeError:
            # Pool already shut down: a producer raced shutdown
            future = Future()
            future.set_result(self.deliver(batch))
            return future

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def flush(self) -> FlushResult:
        """Deliver every currently queued event in the calling thread."""
        result = FlushResult()
        for batch in self.batcher.drain_all():
            result.results.append(self.deliver(batch))
        return result

    def wait_for_pending(self, timeout: float | None = None) -> bool:
        """Block until submitted batches finish. Returns False on timeout."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the flush timer thread."""
        if self._timer_thread is not None:
            return
        self._timer_thread = threading.Thread(
            target=self._timer_loop,
            name="token-trackr-flush",
            daemon=True,
        )
        self._timer_thread.start()
        logger.info(f"Flush timer started (interval={self.flush_interval}s)")

    def _timer_loop(self) -> None:
        """
        Flush on every tick, even with an empty queue (no-op then).

        Bounds how long an event can sit in the queue when traffic is
        too low to reach the batch size.
        """
        while not self._stop_event.wait(self.flush_interval):
            try:
                self.flush()
                with self._stats_lock:
                    self._stats["timer_flushes"] += 1
            except Exception as e:
                logger.error(f"Flush timer error: {e}")

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop the timer and wait for in-flight deliveries.

        A timer flush already running is allowed to finish. No new
        time-triggered flush starts after this returns.
        """
        self._stop_event.set()
        if self._timer_thread is not None:
            self._timer_thread.join(timeout)
            if self._timer_thread.is_alive():
                logger.warning("Flush timer did not stop within timeout")
        if self.wait_for_pending(timeout):
            self._executor.shutdown(wait=True)
        else:
            # Leftover workers finish their retries in the background
            logger.warning(f"{self.in_flight} deliveries still running after {timeout}s")
            self._executor.shutdown(wait=False)
        logger.info("Flush timer stopped")

    @property
    def timer_running(self) -> bool:
        return self._timer_thread is not None and self._timer_thread.is_alive()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Delivery attempt {retry_state.attempt_number}/{self.retry_attempts} failed "
            f"({exc}), retrying in {delay:.1f}s"
        )

    def _record_outcome(self, events: int, attempts: int, ok: bool) -> None:
        with self._stats_lock:
            self._stats["attempts"] += attempts
            self._stats["retries"] += max(attempts - 1, 0)
            if ok:
                self._stats["batches_sent"] += 1
                self._stats["events_sent"] += events
            else:
                self._stats["batches_failed"] += 1
                self._stats["events_failed"] += events

    def _report(self, error: TrackrError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error(f"on_error callback failed: {e}")

    @property
    def in_flight(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    @property
    def stats(self) -> dict:
        """Get delivery statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        stats["in_flight"] = self.in_flight
        return stats
