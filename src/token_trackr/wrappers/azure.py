"""Azure OpenAI wrapper with automatic token tracking."""

from __future__ import annotations

import time
from typing import Any, Iterator

from ..events import Provider, UsageEvent
from .base import UsageAccumulator, UsageRecorder, elapsed_ms, field_of, track_stream


def _usage_of(response: Any) -> tuple[int | None, int | None] | None:
    usage = field_of(response, "usage")
    if usage is None:
        return None
    return field_of(usage, "prompt_tokens"), field_of(usage, "completion_tokens")


class AzureOpenAIWrapper:
    """
    Wraps an ``openai.AzureOpenAI`` client and records token usage.

    The deployment name is recorded as the model.

    Usage:
        azure = AzureOpenAI(azure_endpoint=..., api_key=..., api_version="2024-06-01")
        wrapper = AzureOpenAIWrapper(azure, recorder=client)

        response = wrapper.chat_completions("gpt-4o", [{"role": "user", "content": "Hello!"}])
    """

    def __init__(self, azure_client: Any, recorder: UsageRecorder):
        self.azure = azure_client
        self.recorder = recorder

    def chat_completions(self, deployment: str, messages: list[dict[str, Any]], **kwargs) -> Any:
        """Create a chat completion."""
        start = time.perf_counter()
        response = self.azure.chat.completions.create(model=deployment, messages=messages, **kwargs)
        latency_ms = elapsed_ms(start)

        prompt_tokens, completion_tokens = _usage_of(response) or (0, 0)
        choices = field_of(response, "choices") or []
        self.recorder.record(UsageEvent.create(
            provider=Provider.AZURE_OPENAI,
            model=deployment,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            latency_ms=latency_ms,
            metadata={
                "id": field_of(response, "id"),
                "finish_reason": field_of(choices[0], "finish_reason") if choices else None,
            },
        ))
        return response

    def stream_chat_completions(
        self,
        deployment: str,
        messages: list[dict[str, Any]],
        **kwargs,
    ) -> Iterator[Any]:
        """Stream chat completion chunks; usage is recorded after the last one."""
        # Azure only reports usage on streams when asked to
        stream_options = {"include_usage": True, **kwargs.pop("stream_options", {})}
        accumulator = UsageAccumulator(self.recorder, Provider.AZURE_OPENAI, deployment)
        stream = self.azure.chat.completions.create(
            model=deployment,
            messages=messages,
            stream=True,
            stream_options=stream_options,
            **kwargs,
        )
        return track_stream(stream, accumulator, _usage_of)

    def embeddings(self, deployment: str, input: str | list[str], **kwargs) -> Any:
        """Create embeddings. Embeddings have no completion tokens."""
        start = time.perf_counter()
        response = self.azure.embeddings.create(model=deployment, input=input, **kwargs)
        latency_ms = elapsed_ms(start)

        usage = field_of(response, "usage")
        self.recorder.record(UsageEvent.create(
            provider=Provider.AZURE_OPENAI,
            model=deployment,
            prompt_tokens=field_of(usage, "prompt_tokens") or 0,
            completion_tokens=0,
            latency_ms=latency_ms,
        ))
        return response
