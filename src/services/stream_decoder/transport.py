"""httpx driver that feeds a model server's streaming body into a decoder."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

import httpx
from apscheduler.schedulers.base import BaseScheduler  # type: ignore[import-untyped]

from core.config import DecoderConfig, Settings, get_settings, normalize_base_url
from schemas.ollama import ChatRequest, GenerateRequest, normalize_model_name
from schemas.stream import DecoderEvent
from services.stream_decoder.decoder import StreamDecoder
from services.stream_decoder.types import Failed, Outcome


logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
CHAT_PATH = "/api/chat"

BodySource = Callable[[StreamDecoder], AsyncIterable[bytes | str]]


class DecodeStream:
    """Async iterator of fragment strings for one request.

    Iterating drives the body into a `StreamDecoder` on a background task
    and yields each fragment as it is emitted. Iteration ends after the
    terminal event; a failed session raises its `StreamDecodeError`. The
    stream is not restartable.

    Without a scheduler, liveness ticks come from a heartbeat task on the
    iterating event loop, so a stalled body always reaches a stall outcome.
    """

    def __init__(
        self,
        source: BodySource,
        *,
        model: str | None = None,
        config: DecoderConfig | None = None,
        scheduler: BaseScheduler | None = None,
        session_id: str | None = None,
    ):
        self._source = source
        self._queue: asyncio.Queue[DecoderEvent] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started = False
        self._heartbeat = scheduler is None
        self.decoder = StreamDecoder(
            self._on_event,
            model=model,
            config=config,
            scheduler=scheduler,
            session_id=session_id,
        )

    @property
    def outcome(self) -> Outcome | None:
        return self.decoder.outcome

    def cancel(self) -> bool:
        return self.decoder.cancel()

    def _on_event(self, event: DecoderEvent) -> None:
        # Liveness ticks arrive on a scheduler worker thread
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("DecodeStream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        self._loop = asyncio.get_running_loop()
        session = self.decoder.start()
        task = asyncio.create_task(self._drive())
        heartbeat = asyncio.create_task(self._beat()) if self._heartbeat else None
        session.cancel_token.add_callback(
            lambda: self._loop.call_soon_threadsafe(task.cancel)  # type: ignore[union-attr]
        )
        try:
            while True:
                event = await self._queue.get()
                if event.event == "fragment":
                    yield event.data["text"]
                    continue
                break
        finally:
            self.decoder.cancel()
            # A stall can end the session while the body is still open
            task.cancel()
            if heartbeat is not None:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
            await asyncio.gather(task, return_exceptions=True)

        outcome = self.decoder.outcome
        if isinstance(outcome, Failed):
            raise outcome.error

    async def _beat(self) -> None:
        decoder = self.decoder
        while not decoder.state.is_terminal:
            await asyncio.sleep(decoder.config.heartbeat_interval)
            decoder.tick()

    async def _drive(self) -> None:
        decoder = self.decoder
        try:
            async for data in self._source(decoder):
                decoder.feed(data)
                if decoder.state.is_terminal:
                    return
            decoder.complete()
        except asyncio.CancelledError:
            decoder.cancel()
            raise
        except httpx.HTTPError as e:
            logger.warning(f"Transport error while streaming: {type(e).__name__}")
            decoder.fail_transport(e)
        except Exception as e:
            logger.exception(f"Unexpected error while streaming: {e}")
            decoder.fail_transport(e)


def decode_stream(
    source: AsyncIterable[bytes | str],
    *,
    model: str | None = None,
    config: DecoderConfig | None = None,
    scheduler: BaseScheduler | None = None,
) -> DecodeStream:
    """Decode any async iterable of body parts (bytes or text)."""
    return DecodeStream(lambda _decoder: source, model=model, config=config, scheduler=scheduler)


class OllamaStreamClient:
    """Streaming client for `/api/generate` and `/api/chat`.

    Usage:
        async with scheduler_lifespan() as sched:
            async with OllamaStreamClient(scheduler=sched) as client:
                request = GenerateRequest(model="llama3", prompt="Hi")
                async for text in client.stream_generate(request):
                    print(text, end="")
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        settings: Settings | None = None,
        config: DecoderConfig | None = None,
        scheduler: BaseScheduler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.base_url = (
            normalize_base_url(base_url) if base_url else settings.OLLAMA_BASE_URL
        )
        self.config = config or DecoderConfig.from_settings(settings)
        self._scheduler = scheduler
        # No read timeout: long silences are the liveness monitor's call
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(None, connect=settings.REQUEST_CONNECT_TIMEOUT_SECONDS),
            transport=transport,
        )

    async def __aenter__(self) -> OllamaStreamClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def stream_generate(self, request: GenerateRequest) -> DecodeStream:
        payload = request.model_dump(exclude_none=True)
        return self._stream(GENERATE_PATH, payload)

    def stream_chat(self, request: ChatRequest) -> DecodeStream:
        payload = request.model_dump(exclude_none=True)
        return self._stream(CHAT_PATH, payload)

    def _stream(self, path: str, payload: dict[str, Any]) -> DecodeStream:
        payload["model"] = normalize_model_name(payload["model"])
        payload["stream"] = True
        return DecodeStream(
            lambda decoder: self._body(path, payload, decoder),
            model=payload["model"],
            config=self.config,
            scheduler=self._scheduler,
        )

    async def _body(
        self, path: str, payload: dict[str, Any], decoder: StreamDecoder
    ) -> AsyncIterator[bytes]:
        async with self._client.stream("POST", path, json=payload) as response:
            if not response.is_success:
                body = await response.aread()
                logger.warning(f"Model server returned HTTP {response.status_code} for {path}")
                decoder.fail_http(response.status_code, body)
                return
            async for part in response.aiter_bytes():
                yield part
