"""AWS Bedrock wrapper with automatic token tracking."""

from __future__ import annotations

import json
import time
from typing import Any, Iterator

from ..events import Provider, UsageEvent
from .base import UsageAccumulator, UsageRecorder, elapsed_ms, track_stream


def extract_bedrock_tokens(model_id: str, body: dict[str, Any]) -> tuple[int, int]:
    """
    Token counts from an invoke_model response body.

    Each model family on Bedrock reports usage in its own shape.
    Unknown families report (0, 0).
    """
    model = model_id.lower()

    if "anthropic" in model:
        usage = body.get("usage") or {}
        return usage.get("input_tokens") or 0, usage.get("output_tokens") or 0

    if "amazon.titan" in model:
        results = body.get("results") or [{}]
        return body.get("inputTextTokenCount") or 0, results[0].get("tokenCount") or 0

    if "meta.llama" in model:
        return body.get("prompt_token_count") or 0, body.get("generation_token_count") or 0

    if "cohere" in model:
        billed = (body.get("meta") or {}).get("billed_units") or {}
        return billed.get("input_tokens") or 0, billed.get("output_tokens") or 0

    if "mistral" in model or "ai21" in model:
        usage = body.get("usage") or {}
        return usage.get("prompt_tokens") or 0, usage.get("completion_tokens") or 0

    return 0, 0


def _invocation_metrics(chunk: dict[str, Any]) -> tuple[int, int] | None:
    # Bedrock appends invocation metrics to the final chunk
    if chunk.get("type") != "message_stop":
        return None
    metrics = chunk.get("amazon-bedrock-invocationMetrics")
    if not metrics:
        return None
    return metrics.get("inputTokenCount") or 0, metrics.get("outputTokenCount") or 0


class BedrockWrapper:
    """
    Wraps a boto3 ``bedrock-runtime`` client and records token usage.

    Usage:
        bedrock = boto3.client("bedrock-runtime", region_name="us-east-1")
        wrapper = BedrockWrapper(bedrock, recorder=client)

        body = wrapper.invoke_model(
            "anthropic.claude-3-sonnet-20240229-v1:0",
            {"messages": [{"role": "user", "content": "Hello!"}], "max_tokens": 100},
        )
    """

    def __init__(self, bedrock_runtime: Any, recorder: UsageRecorder):
        self.bedrock = bedrock_runtime
        self.recorder = recorder

    def invoke_model(
        self,
        model_id: str,
        body: str | bytes | dict[str, Any],
        content_type: str = "application/json",
        accept: str = "application/json",
        **kwargs,
    ) -> dict[str, Any]:
        """Invoke a model and return the parsed response body."""
        start = time.perf_counter()
        response = self.bedrock.invoke_model(
            modelId=model_id,
            body=_encode_body(body),
            contentType=content_type,
            accept=accept,
            **kwargs,
        )
        latency_ms = elapsed_ms(start)

        response_body = json.loads(response["body"].read())
        prompt_tokens, completion_tokens = extract_bedrock_tokens(model_id, response_body)

        request_id = (response.get("ResponseMetadata") or {}).get("RequestId")
        self.recorder.record(UsageEvent.create(
            provider=Provider.BEDROCK,
            model=model_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            metadata={"request_id": request_id} if request_id else None,
        ))
        return response_body

    def invoke_model_with_response_stream(
        self,
        model_id: str,
        body: str | bytes | dict[str, Any],
        content_type: str = "application/json",
        accept: str = "application/json",
        **kwargs,
    ) -> Iterator[dict[str, Any]]:
        """
        Stream decoded chunks; usage is recorded after the last one.
        """
        accumulator = UsageAccumulator(self.recorder, Provider.BEDROCK, model_id)
        response = self.bedrock.invoke_model_with_response_stream(
            modelId=model_id,
            body=_encode_body(body),
            contentType=content_type,
            accept=accept,
            **kwargs,
        )
        return track_stream(_decode_chunks(response["body"]), accumulator, _invocation_metrics)


def _encode_body(body: str | bytes | dict[str, Any]) -> str | bytes:
    if isinstance(body, dict):
        return json.dumps(body)
    return body


def _decode_chunks(events: Any) -> Iterator[dict[str, Any]]:
    for event in events:
        chunk = event.get("chunk")
        if chunk and chunk.get("bytes"):
            yield json.loads(chunk["bytes"])
