"""Shared test fixtures for token-trackr tests."""

import threading
import time

import pytest

from token_trackr.config import TrackrConfig
from token_trackr.delivery.transports.base import Transport
from token_trackr.events import HostMetadata, Provider, UsageEvent
from token_trackr.metadata import HostMetadataProvider


class FakeTransport(Transport):
    """
    Transport that records batches instead of sending them.

    `failures` is consumed one entry per send() call: an exception
    instance is raised, None means success. Once exhausted every call
    succeeds.
    """

    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.batches = []
        self.calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def send(self, batch):
        with self._lock:
            self.calls += 1
            failure = self.failures.pop(0) if self.failures else None
            if failure is None:
                self.batches.append(list(batch))
        if failure is not None:
            raise failure

    def close(self):
        self.closed = True

    @property
    def events(self):
        with self._lock:
            return [event for batch in self.batches for event in batch]


class StaticHostMetadata(HostMetadataProvider):
    """Host metadata provider that never touches the network or filesystem."""

    def get(self):
        return HostMetadata(hostname="test-host")

    def refresh(self):
        return self.get()


def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll predicate until true or timeout. Returns the final value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TOKEN_TRACKR_* variables from the host out of the tests."""
    import os
    for name in list(os.environ):
        if name.startswith("TOKEN_TRACKR_"):
            monkeypatch.delenv(name)


@pytest.fixture
def make_config():
    """Config factory with test-friendly defaults (no timer noise, no probes)."""
    def _make(**overrides):
        defaults = dict(
            backend_url="http://collector.test",
            tenant_id="tenant-a",
            batch_size=10,
            flush_interval=60.0,
            max_queue_size=100,
            retry_attempts=3,
            retry_backoff_seconds=0.0,
            detect_cloud=False,
            shutdown_on_exit=False,
        )
        defaults.update(overrides)
        return TrackrConfig(**defaults)
    return _make


@pytest.fixture
def make_event():
    """UsageEvent factory; `n` lands in prompt_tokens so order is checkable."""
    def _make(n=0, **overrides):
        fields = dict(
            provider=Provider.BEDROCK,
            model="anthropic.claude-3-haiku",
            prompt_tokens=n,
            completion_tokens=1,
        )
        fields.update(overrides)
        return UsageEvent.create(**fields)
    return _make


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def host_metadata():
    return StaticHostMetadata()


@pytest.fixture
def make_client(make_config, host_metadata):
    """Client factory; every client created is shut down after the test."""
    from token_trackr.client import TokenTrackrClient

    clients = []

    def _make(transport=None, on_error=None, sleep=lambda _: None, **config_overrides):
        client = TokenTrackrClient(
            make_config(**config_overrides),
            transport=transport if transport is not None else FakeTransport(),
            on_error=on_error,
            host_metadata=host_metadata,
            sleep=sleep,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.shutdown()
