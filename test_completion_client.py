#!/usr/bin/env python3
"""
Tests for CompletionClient against a mocked OpenAI-compatible endpoint.

HTTP traffic goes through httpx.MockTransport; every handler records the
requests it saw so tests can assert on request shape and call counts.
"""

import json

import httpx
import pytest

from ai_completer.llm.client import CompletionClient
from ai_completer.llm.exceptions import (
    ConfigurationError,
    CredentialError,
    EmptyResponseError,
    ProtocolError,
    TransportError,
)
from ai_completer.llm.models import RewriteRequest
from ai_completer.providers.models import DEFAULT_SYSTEM_PROMPT, Provider, RewriteSettings

ENV_VAR = "OPENAI_API_KEY"


def sse_body(*contents: str, done: bool = True) -> bytes:
    frames = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}, "finish_reason": None}]})
        for c in contents
    ]
    if done:
        frames.append("data: [DONE]")
    return ("\n\n".join(frames) + "\n\n").encode()


def completion_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class MockProvider:
    """Routes streamed and blocking chat requests to separate responders."""

    def __init__(self, stream=None, blocking=None, models=None):
        self.stream = stream
        self.blocking = blocking
        self.models = models
        self.requests: list[httpx.Request] = []

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return self.models(request)
        payload = json.loads(request.content)
        if payload.get("stream"):
            return self.stream(request)
        return self.blocking(request)


class ResetStream(httpx.AsyncByteStream):
    """Response body whose first read fails like a dropped connection."""

    async def __aiter__(self):
        raise httpx.ReadError("connection reset")
        yield b""


class Updates:
    def __init__(self):
        self.calls: list[tuple[str, bool]] = []

    def __call__(self, partial: str, done: bool) -> None:
        self.calls.append((partial, done))

    @property
    def finals(self) -> list[str]:
        return [text for text, done in self.calls if done]


@pytest.fixture
def provider():
    return Provider(
        id="p1",
        name="Test Provider",
        base_url="https://llm.example.com/v1/",
        api_key="sk-provider",
        models=["model-a"],
    )


@pytest.fixture
def settings(provider):
    return RewriteSettings(
        providers=[provider],
        active_provider_id=provider.id,
        active_model="model-a",
        temperature=0.7,
    )


@pytest.fixture
def request_obj():
    return RewriteRequest(instructions="Shorter", selected_text="A long sentence.")


def make_client(settings, handler, **kwargs) -> CompletionClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CompletionClient(lambda: settings, http_client=http_client, **kwargs)


class TestStreamingRewrite:
    @pytest.mark.asyncio
    async def test_streams_partials_then_one_final(self, settings, provider, request_obj):
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body("Short", "er. ")))
        client = make_client(settings, handler)
        updates = Updates()

        result = await client.rewrite_streaming(request_obj, provider, " model-a ", updates)

        assert result == "Shorter."
        assert updates.calls == [("Short", False), ("Shorter. ", False), ("Shorter.", True)]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_request_shape(self, settings, provider, request_obj):
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body("ok")))
        client = make_client(settings, handler)

        await client.rewrite_streaming(request_obj, provider, "model-a", Updates())

        request = handler.requests[0]
        assert str(request.url) == "https://llm.example.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-provider"
        assert request.headers["Content-Type"] == "application/json"

        body = handler.bodies()[0]
        assert body["model"] == "model-a"
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 1024
        assert body["stream"] is True
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        assert body["messages"][0]["content"] == DEFAULT_SYSTEM_PROMPT
        assert body["messages"][1]["content"].startswith("Selected Markdown:\nA long sentence.")
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_blank_system_prompt_uses_default(self, settings, provider, request_obj):
        settings = settings.model_copy(update={"system_prompt": "   "})
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body("ok")))
        client = make_client(settings, handler)

        await client.rewrite_streaming(request_obj, provider, "model-a", Updates())

        assert handler.bodies()[0]["messages"][0]["content"] == DEFAULT_SYSTEM_PROMPT
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_chunked_body(self, settings, provider, request_obj):
        """Reads that split frames and characters still aggregate correctly."""
        body = sse_body("Grüße", " ✓")

        async def chunks():
            for i in range(0, len(body), 3):
                yield body[i:i + 3]

        handler = MockProvider(stream=lambda r: httpx.Response(200, content=chunks()))
        client = make_client(settings, handler)
        updates = Updates()

        result = await client.rewrite_streaming(request_obj, provider, "model-a", updates)

        assert result == "Grüße ✓"
        assert updates.finals == ["Grüße ✓"]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_blank_model_is_rejected_without_network(self, settings, provider, request_obj):
        handler = MockProvider()
        client = make_client(settings, handler)

        with pytest.raises(ConfigurationError, match="Select a model before requesting a rewrite."):
            await client.rewrite_streaming(request_obj, provider, "  ", Updates())

        assert handler.requests == []
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_empty_stream_fires_final_then_raises(self, settings, provider, request_obj):
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body()))
        client = make_client(settings, handler)
        updates = Updates()

        with pytest.raises(EmptyResponseError, match="The AI response was empty"):
            await client.rewrite_streaming(request_obj, provider, "model-a", updates)

        assert updates.calls == [("", True)]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_error_payload_raises_protocol_error(self, settings, provider, request_obj):
        body = sse_body("partial", done=False) + b'data: {"error": {"message": "Quota exceeded"}}\n\n'
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=body))
        client = make_client(settings, handler)
        updates = Updates()

        with pytest.raises(ProtocolError, match="Quota exceeded"):
            await client.rewrite_streaming(request_obj, provider, "model-a", updates)

        assert updates.finals == []
        assert len(handler.requests) == 1
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_snippet(self, settings, provider, request_obj):
        error_text = "x" * 500
        handler = MockProvider(stream=lambda r: httpx.Response(500, text=error_text))
        client = make_client(settings, handler)

        with pytest.raises(TransportError) as exc_info:
            await client.rewrite_streaming(request_obj, provider, "model-a", Updates())

        error = exc_info.value
        assert error.status_code == 500
        assert error.message == f"Request failed (500): {'x' * 160}"
        assert len(handler.requests) == 1
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_non_2xx_with_empty_body(self, settings, provider, request_obj):
        handler = MockProvider(stream=lambda r: httpx.Response(401))
        client = make_client(settings, handler)

        with pytest.raises(TransportError, match=r"Request failed \(401\): Unknown error"):
            await client.rewrite_streaming(request_obj, provider, "model-a", Updates())
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_non_2xx_with_unreadable_body(self, settings, provider, request_obj):
        handler = MockProvider(stream=lambda r: httpx.Response(500, stream=ResetStream()))
        client = make_client(settings, handler)

        with pytest.raises(TransportError) as exc_info:
            await client.rewrite_streaming(request_obj, provider, "model-a", Updates())

        error = exc_info.value
        assert error.status_code == 500
        assert error.message == "Request failed (500): Unknown error"
        assert isinstance(error.__cause__, httpx.ReadError)
        await client.client.aclose()
    @pytest.mark.asyncio
    async def test_read_failure_after_open_is_not_downgraded(self, settings, provider, request_obj):
        async def broken():
            yield sse_body("half", done=False)
            raise httpx.ReadError("connection reset")

        handler = MockProvider(
            stream=lambda r: httpx.Response(200, content=broken()),
            blocking=lambda r: httpx.Response(200, json=completion_body("unused")),
        )
        client = make_client(settings, handler)
        updates = Updates()

        with pytest.raises(TransportError, match="Stream interrupted"):
            await client.rewrite_streaming(request_obj, provider, "model-a", updates)

        assert updates.calls == [("half", False)]
        assert len(handler.requests) == 1
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_rewrite_without_callback(self, settings, provider, request_obj):
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body(" done ")))
        client = make_client(settings, handler)

        assert await client.rewrite(request_obj, provider, "model-a") == "done"
        await client.client.aclose()


class TestBlockingFallback:
    @pytest.mark.asyncio
    async def test_fallback_when_open_fails(self, settings, provider, request_obj):
        def refuse(request):
            raise httpx.ConnectError("streaming unsupported")

        handler = MockProvider(
            stream=refuse,
            blocking=lambda r: httpx.Response(200, json=completion_body("  Fallback text \n")),
        )
        client = make_client(settings, handler)
        updates = Updates()

        result = await client.rewrite_streaming(request_obj, provider, "model-a", updates)

        assert result == "Fallback text"
        assert updates.calls == [("Fallback text", True)]
        bodies = handler.bodies()
        assert len(bodies) == 2
        assert bodies[0]["stream"] is True
        assert "stream" not in bodies[1]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_timeout_on_open_does_not_fall_back(self, settings, provider, request_obj):
        def slow(request):
            raise httpx.ConnectTimeout("timed out")

        handler = MockProvider(stream=slow)
        client = make_client(settings, handler)

        with pytest.raises(TransportError, match="timed out"):
            await client.rewrite_streaming(request_obj, provider, "model-a", Updates())

        assert len(handler.requests) == 1
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_fallback_when_no_body(self, settings, provider, request_obj):
        handler = MockProvider(
            stream=lambda r: httpx.Response(204),
            blocking=lambda r: httpx.Response(200, json=completion_body("From blocking")),
        )
        client = make_client(settings, handler)
        updates = Updates()

        assert await client.rewrite_streaming(request_obj, provider, "model-a", updates) == "From blocking"
        assert updates.calls == [("From blocking", True)]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_streaming_disabled_uses_single_blocking_call(self, settings, provider, request_obj):
        handler = MockProvider(blocking=lambda r: httpx.Response(200, json=completion_body("Direct")))
        client = make_client(settings, handler, streaming=False)
        updates = Updates()

        assert await client.rewrite_streaming(request_obj, provider, "model-a", updates) == "Direct"
        assert updates.calls == [("Direct", True)]
        assert len(handler.requests) == 1
        assert "stream" not in handler.bodies()[0]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_fallback_empty_fires_final_then_raises(self, settings, provider, request_obj):
        handler = MockProvider(blocking=lambda r: httpx.Response(200, json=completion_body("   ")))
        client = make_client(settings, handler, streaming=False)
        updates = Updates()

        with pytest.raises(EmptyResponseError):
            await client.rewrite_streaming(request_obj, provider, "model-a", updates)

        assert updates.calls == [("", True)]
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_fallback_error_payload(self, settings, provider, request_obj):
        handler = MockProvider(
            blocking=lambda r: httpx.Response(200, json={"error": {"message": "Model not found"}})
        )
        client = make_client(settings, handler, streaming=False)

        with pytest.raises(ProtocolError, match="Model not found"):
            await client.rewrite_streaming(request_obj, provider, "model-a", Updates())
        await client.client.aclose()


class TestCredentials:
    @pytest.mark.asyncio
    async def test_provider_key_wins_over_environment(self, settings, provider, request_obj, monkeypatch):
        monkeypatch.setenv(ENV_VAR, "sk-env")
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body("ok")))
        client = make_client(settings, handler)

        await client.rewrite_streaming(request_obj, provider, "model-a", Updates())

        assert handler.requests[0].headers["Authorization"] == "Bearer sk-provider"
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_environment_key_used_when_provider_key_blank(self, settings, provider, request_obj, monkeypatch):
        keyless = provider.model_copy(update={"api_key": "  "})
        handler = MockProvider(stream=lambda r: httpx.Response(200, content=sse_body("ok")))
        client = make_client(settings, handler)
        monkeypatch.setenv(ENV_VAR, "sk-env")

        await client.rewrite_streaming(request_obj, keyless, "model-a", Updates())

        assert handler.requests[0].headers["Authorization"] == "Bearer sk-env"
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_missing_credential_makes_no_request(self, settings, provider, request_obj, monkeypatch):
        keyless = provider.model_copy(update={"api_key": ""})
        handler = MockProvider()
        client = make_client(settings, handler)
        monkeypatch.delenv(ENV_VAR, raising=False)

        with pytest.raises(CredentialError, match="Test Provider") as exc_info:
            await client.rewrite_streaming(request_obj, keyless, "model-a", Updates())

        assert ENV_VAR in exc_info.value.message
        assert handler.requests == []
        await client.client.aclose()


class TestConnectionTest:
    @pytest.mark.asyncio
    async def test_sends_hello_without_streaming(self, settings, provider):
        handler = MockProvider(blocking=lambda r: httpx.Response(200, json=completion_body("Hi!")))
        client = make_client(settings, handler)

        await client.test_connection(provider, "model-a")

        body = handler.bodies()[0]
        assert body["messages"][1]["content"] == "Hello"
        assert "stream" not in body
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_blank_model(self, settings, provider):
        client = make_client(settings, MockProvider())
        with pytest.raises(ConfigurationError, match="Select a model before testing the connection."):
            await client.test_connection(provider, "")
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_empty_answer(self, settings, provider):
        handler = MockProvider(blocking=lambda r: httpx.Response(200, json=completion_body("")))
        client = make_client(settings, handler)
        with pytest.raises(EmptyResponseError):
            await client.test_connection(provider, "model-a")
        await client.client.aclose()


class TestListModels:
    @pytest.mark.asyncio
    async def test_unique_ids_in_order(self, settings, provider):
        catalog = {"data": [{"id": "b"}, {"id": "a"}, {"id": "b"}, {"id": " "}, {"object": "model"}]}
        handler = MockProvider(models=lambda r: httpx.Response(200, json=catalog))
        client = make_client(settings, handler)

        assert await client.list_models(provider) == ["b", "a"]

        request = handler.requests[0]
        assert str(request.url) == "https://llm.example.com/v1/models"
        assert request.headers["Authorization"] == "Bearer sk-provider"
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_empty_catalog(self, settings, provider):
        handler = MockProvider(models=lambda r: httpx.Response(200, json={"data": []}))
        client = make_client(settings, handler)
        with pytest.raises(EmptyResponseError, match="did not return any models"):
            await client.list_models(provider)
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_error_payload(self, settings, provider):
        handler = MockProvider(
            models=lambda r: httpx.Response(200, json={"error": {"message": "Invalid key"}})
        )
        client = make_client(settings, handler)
        with pytest.raises(ProtocolError, match="Invalid key"):
            await client.list_models(provider)
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_status_failure(self, settings, provider):
        handler = MockProvider(models=lambda r: httpx.Response(404, text="not here"))
        client = make_client(settings, handler)
        with pytest.raises(TransportError, match=r"Model listing failed \(404\): not here"):
            await client.list_models(provider)
        await client.client.aclose()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, settings):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(MockProvider()))
        async with CompletionClient(lambda: settings, http_client=http_client):
            pass
        assert not http_client.is_closed
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self, settings):
        async with CompletionClient(lambda: settings) as client:
            inner = client.client
        assert inner.is_closed
