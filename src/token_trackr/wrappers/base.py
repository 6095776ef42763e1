"""Shared pieces for provider wrappers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Callable,
    Iterable,
    Iterator,
    Protocol,
    TypeVar,
)

from ..events import Provider, UsageEvent

T = TypeVar("T")

# Returns (prompt_tokens, completion_tokens) seen in a chunk, None when absent
UsageExtractor = Callable[[Any], "tuple[int | None, int | None] | None"]


class UsageRecorder(Protocol):
    """Anything that accepts usage events - normally a TokenTrackrClient."""

    def record(self, event: UsageEvent) -> bool: ...


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - start) * 1000)


@dataclass
class UsageAccumulator:
    """
    Collects token counts across the chunks of one streamed response.

    Providers report cumulative usage (usually only in the last chunk),
    so each observation replaces the previous one. finalize() builds the
    terminal event and records it; it may only run once.
    """
    recorder: UsageRecorder
    provider: Provider
    model: str
    metadata: dict[str, Any] | None = None

    prompt_tokens: int = 0
    completion_tokens: int = 0

    _started: float = field(default_factory=time.perf_counter, init=False)
    _event: UsageEvent | None = field(default=None, init=False)

    def observe(self, prompt_tokens: int | None = None, completion_tokens: int | None = None) -> None:
        if self._event is not None:
            raise RuntimeError("Accumulator already finalized")
        if prompt_tokens is not None:
            self.prompt_tokens = prompt_tokens
        if completion_tokens is not None:
            self.completion_tokens = completion_tokens

    def finalize(self) -> UsageEvent:
        if self._event is not None:
            raise RuntimeError("Accumulator already finalized")
        self._event = UsageEvent.create(
            provider=self.provider,
            model=self.model,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            latency_ms=elapsed_ms(self._started),
            metadata=self.metadata,
        )
        self.recorder.record(self._event)
        return self._event

    @property
    def finalized(self) -> bool:
        return self._event is not None


def track_stream(
    chunks: Iterable[T],
    accumulator: UsageAccumulator,
    extract: UsageExtractor,
) -> Iterator[T]:
    """
    Pass chunks through unchanged, recording usage once exhausted.

    A stream abandoned before the end records nothing.
    """
    for chunk in chunks:
        usage = extract(chunk)
        if usage is not None:
            accumulator.observe(*usage)
        yield chunk
    accumulator.finalize()


async def track_async_stream(
    chunks: AsyncIterable[T],
    accumulator: UsageAccumulator,
    extract: UsageExtractor,
) -> AsyncIterator[T]:
    """Async counterpart of track_stream()."""
    async for chunk in chunks:
        usage = extract(chunk)
        if usage is not None:
            accumulator.observe(*usage)
        yield chunk
    accumulator.finalize()


def field_of(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from an SDK object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
