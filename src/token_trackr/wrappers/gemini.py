"""Google Gemini wrapper with automatic token tracking."""

from __future__ import annotations

import time
from typing import Any, Iterator

from ..events import Provider, UsageEvent
from .base import UsageAccumulator, UsageRecorder, elapsed_ms, field_of, track_stream


def _usage_of(response: Any) -> tuple[int | None, int | None] | None:
    usage = field_of(response, "usage_metadata")
    if usage is None:
        return None
    return field_of(usage, "prompt_token_count"), field_of(usage, "candidates_token_count")


def _finish_reason(response: Any) -> str | None:
    candidates = field_of(response, "candidates") or []
    if not candidates:
        return None
    reason = field_of(candidates[0], "finish_reason")
    return getattr(reason, "name", reason)


def _model_name(model: Any) -> str:
    name = field_of(model, "model_name") or field_of(model, "model") or "gemini-unknown"
    # google-generativeai reports "models/<name>"
    return name.split("/", 1)[1] if name.startswith("models/") else name


class _Recording:
    """Recording helpers shared by the model wrapper and chat sessions."""

    model_name: str
    recorder: UsageRecorder

    def _record_response(self, response: Any, start: float, with_finish_reason: bool = True) -> None:
        prompt_tokens, completion_tokens = _usage_of(response) or (0, 0)
        metadata = None
        if with_finish_reason:
            reason = _finish_reason(response)
            metadata = {"finish_reason": str(reason)} if reason is not None else None
        self.recorder.record(UsageEvent.create(
            provider=Provider.GEMINI,
            model=self.model_name,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            latency_ms=elapsed_ms(start),
            metadata=metadata,
        ))

    def _track(self, stream: Any, accumulator: UsageAccumulator) -> Iterator[Any]:
        return track_stream(stream, accumulator, _usage_of)


class GeminiWrapper(_Recording):
    """
    Wraps a ``google.generativeai.GenerativeModel`` and records token usage.

    Usage:
        model = genai.GenerativeModel("gemini-1.5-pro")
        wrapper = GeminiWrapper(model, recorder=client)

        response = wrapper.generate_content("Hello!")
    """

    def __init__(self, model: Any, recorder: UsageRecorder):
        self.model = model
        self.model_name = _model_name(model)
        self.recorder = recorder

    def generate_content(self, contents: Any, **kwargs) -> Any:
        start = time.perf_counter()
        response = self.model.generate_content(contents, **kwargs)
        self._record_response(response, start)
        return response

    def generate_content_stream(self, contents: Any, **kwargs) -> Iterator[Any]:
        """Stream response chunks; usage is recorded after the last one."""
        accumulator = UsageAccumulator(self.recorder, Provider.GEMINI, self.model_name)
        stream = self.model.generate_content(contents, stream=True, **kwargs)
        return self._track(stream, accumulator)

    def count_tokens(self, contents: Any) -> Any:
        """Count tokens in content (no usage tracking)."""
        return self.model.count_tokens(contents)

    def start_chat(self, **kwargs) -> GeminiChatSession:
        return GeminiChatSession(self.model.start_chat(**kwargs), self.model_name, self.recorder)


class GeminiChatSession(_Recording):
    """Chat session that records usage of every message."""

    def __init__(self, chat: Any, model_name: str, recorder: UsageRecorder):
        self.chat = chat
        self.model_name = model_name
        self.recorder = recorder

    def send_message(self, content: Any, **kwargs) -> Any:
        start = time.perf_counter()
        response = self.chat.send_message(content, **kwargs)
        self._record_response(response, start, with_finish_reason=False)
        return response

    def send_message_stream(self, content: Any, **kwargs) -> Iterator[Any]:
        accumulator = UsageAccumulator(self.recorder, Provider.GEMINI, self.model_name)
        stream = self.chat.send_message(content, stream=True, **kwargs)
        return self._track(stream, accumulator)

    @property
    def history(self) -> list[Any]:
        return list(self.chat.history)
