"""Tests for the httpx transport adapter."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from core.config import DecoderConfig
from core.exceptions import ServerError, StallTimeout, TransportError, UnparsableResponse
from core.scheduler import scheduler_lifespan
from schemas.ollama import ChatMessage, ChatRequest, GenerateRequest, GenerationOptions
from services.stream_decoder.transport import OllamaStreamClient, decode_stream
from services.stream_decoder.types import Cancelled, Finished


def _client(handler) -> OllamaStreamClient:
    return OllamaStreamClient(
        "ollama.test:11434",
        transport=httpx.MockTransport(handler),
    )


async def _collect(stream) -> list[str]:
    return [text async for text in stream]


class TestOllamaStreamClient:
    """Test streaming requests against a mocked server."""

    @pytest.mark.asyncio
    async def test_stream_generate(self) -> None:
        """Generate lines are decoded and the payload is normalised."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = '{"response":"Hello"}\n{"response":" world"}\n{"response":"","done":true}\n'
            return httpx.Response(200, content=body.encode())

        request = GenerateRequest(
            model="Llama 3",
            prompt="Say hello",
            options=GenerationOptions(num_predict=32, stop=["\n\n"]),
        )
        async with _client(handler) as client:
            stream = client.stream_generate(request)
            fragments = await _collect(stream)

        assert fragments == ["Hello", " world"]
        assert stream.outcome == Finished("normal", "Hello world")
        assert str(seen[0].url) == "http://ollama.test:11434/api/generate"
        payload = json.loads(seen[0].content)
        assert payload["model"] == "llama-3"
        assert payload["stream"] is True
        assert payload["options"] == {"num_predict": 32, "stop": ["\n\n"]}
        assert "system" not in payload

    @pytest.mark.asyncio
    async def test_stream_chat(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/chat"
            body = (
                '{"message":{"role":"assistant","content":"Part1"}}'
                '{"message":{"role":"assistant","content":"Part2"}}'
            )
            return httpx.Response(200, content=body.encode())

        request = ChatRequest(
            model="llama3",
            messages=[ChatMessage(role="user", content="Hi")],
        )
        async with _client(handler) as client:
            fragments = await _collect(client.stream_chat(request))

        assert fragments == ["Part1", "Part2"]

    @pytest.mark.asyncio
    async def test_http_error_raises_server_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "model not loaded"})

        async with _client(handler) as client:
            stream = client.stream_generate(GenerateRequest(model="llama3", prompt="Hi"))
            with pytest.raises(ServerError) as exc_info:
                await _collect(stream)

        assert exc_info.value.message == "model not loaded"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_redirect_status_raises_server_error(self) -> None:
        """A non-2xx status that is not an error code still fails the request."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                302, headers={"location": "/elsewhere"}, content=b"Redirecting..."
            )

        async with _client(handler) as client:
            stream = client.stream_generate(GenerateRequest(model="llama3", prompt="Hi"))
            with pytest.raises(ServerError) as exc_info:
                await _collect(stream)

        assert exc_info.value.message == "HTTP error 302"
        assert exc_info.value.status_code == 302

    @pytest.mark.asyncio
    async def test_connection_error_raises_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransportError):
                await _collect(client.stream_generate(GenerateRequest(model="llama3", prompt="Hi")))

    def test_base_url_normalised(self) -> None:
        client = OllamaStreamClient("127.0.0.1:11434/")
        assert client.base_url == "http://127.0.0.1:11434"


class TestDecodeStream:
    """Test decoding arbitrary async body sources."""

    @pytest.mark.asyncio
    async def test_text_parts(self) -> None:
        async def source():
            yield '{"respo'
            yield 'nse":"a"}\n{"response":"b"}'

        assert await _collect(decode_stream(source())) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unparsable_body_raises(self) -> None:
        async def source():
            yield b"{oops}"

        with pytest.raises(UnparsableResponse):
            await _collect(decode_stream(source()))

    @pytest.mark.asyncio
    async def test_cancel_aborts_source(self) -> None:
        """Cancelling mid-stream ends iteration and stops reading the body."""
        gate = asyncio.Event()
        closed: list[bool] = []

        async def source():
            try:
                yield b'{"response":"a"}\n'
                await gate.wait()
                yield b'{"response":"b"}\n'
            finally:
                closed.append(True)

        stream = decode_stream(source())
        received: list[str] = []
        async for text in stream:
            received.append(text)
            assert stream.cancel()

        assert received == ["a"]
        assert stream.outcome == Cancelled()
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_iterates_once(self) -> None:
        async def source():
            yield "plain words"

        stream = decode_stream(source())
        assert await _collect(stream) == ["plain words"]
        with pytest.raises(RuntimeError):
            stream.__aiter__()


class TestStreamLiveness:
    """A silent body still ends the stream without an external tick."""

    FAST = DecoderConfig(heartbeat_interval=0.05, stall_warn_after=0.1)

    @pytest.mark.asyncio
    async def test_stalled_source_forced_without_scheduler(self) -> None:
        async def source():
            yield b"partial answer"
            await asyncio.Event().wait()

        stream = decode_stream(source(), config=self.FAST)
        fragments = await asyncio.wait_for(_collect(stream), timeout=5.0)

        assert fragments[0] == "partial answer"
        assert fragments[1].startswith("\n\n[Response was stopped after")
        assert isinstance(stream.outcome, Finished)
        assert stream.outcome.reason == "stall-forced"

    @pytest.mark.asyncio
    async def test_silent_source_times_out_on_shared_scheduler(self) -> None:
        """Ticks from the scheduler's worker threads reach the iterating loop."""

        async def source():
            await asyncio.Event().wait()
            yield b""

        async with scheduler_lifespan() as sched:
            stream = decode_stream(source(), config=self.FAST, scheduler=sched)
            with pytest.raises(StallTimeout):
                await asyncio.wait_for(_collect(stream), timeout=5.0)
            assert sched.get_job(f"liveness-{stream.decoder.session_id}") is None
