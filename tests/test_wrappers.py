"""Tests for the provider wrappers and stream accumulation."""

import io
import json
from types import SimpleNamespace

import pytest

from token_trackr.events import Provider
from token_trackr.wrappers import (
    AzureOpenAIWrapper,
    BedrockWrapper,
    GeminiWrapper,
    UsageAccumulator,
    extract_bedrock_tokens,
    track_async_stream,
    track_stream,
)


class Recorder:
    """Collects recorded events in memory."""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)
        return True


@pytest.fixture
def recorder():
    return Recorder()


class TestAccumulator:
    def test_latest_value_wins(self, recorder):
        acc = UsageAccumulator(recorder, Provider.GEMINI, "gemini-1.5-pro")

        acc.observe(10, 1)
        acc.observe(10, 5)
        acc.observe(None, 9)
        event = acc.finalize()

        assert (event.prompt_tokens, event.completion_tokens) == (10, 9)
        assert recorder.events == [event]
        assert event.latency_ms is not None

    def test_finalize_once(self, recorder):
        acc = UsageAccumulator(recorder, Provider.GEMINI, "m")
        acc.finalize()

        with pytest.raises(RuntimeError):
            acc.finalize()
        with pytest.raises(RuntimeError):
            acc.observe(1, 1)
        assert len(recorder.events) == 1
        assert acc.finalized

    def test_track_stream_records_on_exhaustion(self, recorder):
        acc = UsageAccumulator(recorder, Provider.AZURE_OPENAI, "gpt-4o")
        chunks = [{"n": 1}, {"n": 2, "usage": (5, 7)}]

        out = list(track_stream(chunks, acc, lambda c: c.get("usage")))

        assert out == chunks
        assert recorder.events[0].completion_tokens == 7

    def test_abandoned_stream_records_nothing(self, recorder):
        acc = UsageAccumulator(recorder, Provider.AZURE_OPENAI, "gpt-4o")
        stream = track_stream(iter([{"n": 1}, {"n": 2}]), acc, lambda c: None)

        next(stream)
        stream.close()

        assert recorder.events == []
        assert not acc.finalized

    @pytest.mark.asyncio
    async def test_track_async_stream(self, recorder):
        async def chunks():
            yield {"usage": (3, 1)}
            yield {"usage": (3, 4)}

        acc = UsageAccumulator(recorder, Provider.GEMINI, "gemini-1.5-flash")

        seen = [chunk async for chunk in track_async_stream(chunks(), acc, lambda c: c["usage"])]

        assert len(seen) == 2
        assert (recorder.events[0].prompt_tokens, recorder.events[0].completion_tokens) == (3, 4)


class TestBedrockExtraction:
    @pytest.mark.parametrize("model_id, body, expected", [
        ("anthropic.claude-3-haiku-20240307-v1:0",
         {"usage": {"input_tokens": 12, "output_tokens": 30}}, (12, 30)),
        ("amazon.titan-text-express-v1",
         {"inputTextTokenCount": 8, "results": [{"tokenCount": 21}]}, (8, 21)),
        ("meta.llama3-70b-instruct-v1:0",
         {"prompt_token_count": 15, "generation_token_count": 40}, (15, 40)),
        ("cohere.command-r-v1:0",
         {"meta": {"billed_units": {"input_tokens": 6, "output_tokens": 9}}}, (6, 9)),
        ("mistral.mistral-large-2402-v1:0",
         {"usage": {"prompt_tokens": 4, "completion_tokens": 11}}, (4, 11)),
        ("ai21.jamba-instruct-v1:0",
         {"usage": {"prompt_tokens": 2, "completion_tokens": 3}}, (2, 3)),
        ("stability.sd3-large-v1:0", {"images": []}, (0, 0)),
        ("anthropic.claude-v2", {}, (0, 0)),
    ])
    def test_families(self, model_id, body, expected):
        assert extract_bedrock_tokens(model_id, body) == expected


class FakeBedrock:
    def __init__(self, body=None, stream=None):
        self.body = body
        self.stream = stream
        self.calls = []

    def invoke_model(self, **kwargs):
        self.calls.append(kwargs)
        return {
            "body": io.BytesIO(json.dumps(self.body).encode()),
            "ResponseMetadata": {"RequestId": "req-123"},
        }

    def invoke_model_with_response_stream(self, **kwargs):
        self.calls.append(kwargs)
        return {"body": [{"chunk": {"bytes": json.dumps(c).encode()}} for c in self.stream]}


class TestBedrockWrapper:
    def test_invoke_model(self, recorder):
        bedrock = FakeBedrock(body={"content": "hi", "usage": {"input_tokens": 12, "output_tokens": 30}})
        wrapper = BedrockWrapper(bedrock, recorder)

        body = wrapper.invoke_model("anthropic.claude-3-haiku", {"messages": []})

        assert body["content"] == "hi"
        assert bedrock.calls[0]["modelId"] == "anthropic.claude-3-haiku"
        assert json.loads(bedrock.calls[0]["body"]) == {"messages": []}
        assert bedrock.calls[0]["contentType"] == "application/json"

        event = recorder.events[0]
        assert event.provider is Provider.BEDROCK
        assert (event.prompt_tokens, event.completion_tokens) == (12, 30)
        assert event.metadata == {"request_id": "req-123"}

    def test_stream(self, recorder):
        bedrock = FakeBedrock(stream=[
            {"type": "content_block_delta", "delta": {"text": "Hel"}},
            {"type": "content_block_delta", "delta": {"text": "lo"}},
            {"type": "message_stop",
             "amazon-bedrock-invocationMetrics": {"inputTokenCount": 9, "outputTokenCount": 2}},
        ])
        wrapper = BedrockWrapper(bedrock, recorder)

        chunks = list(wrapper.invoke_model_with_response_stream("anthropic.claude-3-haiku", "{}"))

        assert len(chunks) == 3
        assert bedrock.calls[0]["body"] == "{}"
        assert (recorder.events[0].prompt_tokens, recorder.events[0].completion_tokens) == (9, 2)

    def test_stream_without_metrics_records_zero(self, recorder):
        bedrock = FakeBedrock(stream=[{"type": "message_stop"}])

        list(BedrockWrapper(bedrock, recorder).invoke_model_with_response_stream("meta.llama3", {}))

        assert recorder.events[0].total_tokens == 0


class FakeCompletions:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def _azure(chat_response=None, embed_response=None):
    completions = FakeCompletions(chat_response)
    embeddings = FakeCompletions(embed_response)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions), embeddings=embeddings)


class TestAzureOpenAIWrapper:
    def test_chat_completions(self, recorder):
        response = SimpleNamespace(
            id="chatcmpl-1",
            choices=[SimpleNamespace(finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=25, completion_tokens=7),
        )
        azure = _azure(chat_response=response)

        result = AzureOpenAIWrapper(azure, recorder).chat_completions("gpt-4o", [{"role": "user", "content": "hi"}])

        assert result is response
        assert azure.chat.completions.calls[0]["model"] == "gpt-4o"
        event = recorder.events[0]
        assert event.provider is Provider.AZURE_OPENAI
        assert event.model == "gpt-4o"
        assert (event.prompt_tokens, event.completion_tokens) == (25, 7)
        assert event.metadata == {"id": "chatcmpl-1", "finish_reason": "stop"}

    def test_missing_usage_records_zero(self, recorder):
        azure = _azure(chat_response={"id": "x", "choices": []})

        AzureOpenAIWrapper(azure, recorder).chat_completions("gpt-4o", [])

        assert recorder.events[0].total_tokens == 0

    def test_stream(self, recorder):
        stream = [
            {"choices": [{"delta": {"content": "Hi"}}], "usage": None},
            {"choices": [], "usage": {"prompt_tokens": 11, "completion_tokens": 3}},
        ]
        azure = _azure(chat_response=iter(stream))

        chunks = list(AzureOpenAIWrapper(azure, recorder).stream_chat_completions("gpt-4o", []))

        call = azure.chat.completions.calls[0]
        assert call["stream"] is True
        assert call["stream_options"] == {"include_usage": True}
        assert len(chunks) == 2
        assert (recorder.events[0].prompt_tokens, recorder.events[0].completion_tokens) == (11, 3)

    def test_embeddings(self, recorder):
        azure = _azure(embed_response=SimpleNamespace(usage=SimpleNamespace(prompt_tokens=42)))

        AzureOpenAIWrapper(azure, recorder).embeddings("text-embedding-3-small", ["a", "b"])

        assert azure.embeddings.calls[0]["input"] == ["a", "b"]
        event = recorder.events[0]
        assert (event.prompt_tokens, event.completion_tokens) == (42, 0)


class FakeGeminiModel:
    def __init__(self, response=None, stream=None, model_name="models/gemini-1.5-pro"):
        self.model_name = model_name
        self.response = response
        self.stream = stream
        self.calls = []

    def generate_content(self, contents, **kwargs):
        self.calls.append(kwargs)
        return iter(self.stream) if kwargs.get("stream") else self.response

    def count_tokens(self, contents):
        return SimpleNamespace(total_tokens=17)

    def start_chat(self, **kwargs):
        return FakeGeminiChat(self.response, self.stream)


class FakeGeminiChat:
    def __init__(self, response, stream):
        self.response = response
        self.stream = stream
        self.history = []

    def send_message(self, content, **kwargs):
        self.history.append(content)
        return iter(self.stream) if kwargs.get("stream") else self.response


def _gemini_response(prompt, completion, finish_reason="STOP"):
    return SimpleNamespace(
        usage_metadata=SimpleNamespace(prompt_token_count=prompt, candidates_token_count=completion),
        candidates=[SimpleNamespace(finish_reason=SimpleNamespace(name=finish_reason))],
    )


class TestGeminiWrapper:
    def test_model_prefix_stripped(self, recorder):
        assert GeminiWrapper(FakeGeminiModel(), recorder).model_name == "gemini-1.5-pro"
        assert GeminiWrapper(FakeGeminiModel(model_name="gemini-1.5-flash"), recorder).model_name == "gemini-1.5-flash"

    def test_generate_content(self, recorder):
        model = FakeGeminiModel(response=_gemini_response(30, 12))

        GeminiWrapper(model, recorder).generate_content("Hello")

        event = recorder.events[0]
        assert event.provider is Provider.GEMINI
        assert event.model == "gemini-1.5-pro"
        assert (event.prompt_tokens, event.completion_tokens) == (30, 12)
        assert event.metadata == {"finish_reason": "STOP"}

    def test_stream(self, recorder):
        model = FakeGeminiModel(stream=[_gemini_response(30, 4), _gemini_response(30, 19)])

        chunks = list(GeminiWrapper(model, recorder).generate_content_stream("Hello"))

        assert model.calls[0]["stream"] is True
        assert len(chunks) == 2
        assert recorder.events[0].completion_tokens == 19

    def test_count_tokens_not_recorded(self, recorder):
        result = GeminiWrapper(FakeGeminiModel(), recorder).count_tokens("Hello")

        assert result.total_tokens == 17
        assert recorder.events == []

    def test_chat_session(self, recorder):
        model = FakeGeminiModel(response=_gemini_response(5, 6), stream=[_gemini_response(7, 8)])
        chat = GeminiWrapper(model, recorder).start_chat()

        chat.send_message("first")
        list(chat.send_message_stream("second"))

        assert [(e.prompt_tokens, e.completion_tokens) for e in recorder.events] == [(5, 6), (7, 8)]
        assert recorder.events[0].metadata is None
        assert chat.history == ["first", "second"]
