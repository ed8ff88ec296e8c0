"""Shared test fixtures for pytest.

ENVIRONMENT is pinned to `test` before anything imports settings so no env
file is read and logging stays in the readable development format.
"""

import os

import pytest


os.environ.setdefault("ENVIRONMENT", "test")

from core.config import DecoderConfig, get_settings
from schemas.stream import DecoderEvent
from services.stream_decoder.decoder import StreamDecoder


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingSink:
    """Collects every event a decoder emits, in order."""

    def __init__(self):
        self.events: list[DecoderEvent] = []

    def __call__(self, event: DecoderEvent) -> None:
        self.events.append(event)

    @property
    def fragments(self) -> list[str]:
        return [e.text for e in self.events if e.text is not None]

    @property
    def terminal(self) -> list[DecoderEvent]:
        return [e for e in self.events if e.is_terminal]


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def config() -> DecoderConfig:
    return DecoderConfig()


@pytest.fixture
def decoder(sink: RecordingSink, clock: FakeClock, config: DecoderConfig) -> StreamDecoder:
    """A started decoder with no scheduler; tests drive ticks by hand."""
    d = StreamDecoder(sink, model="llama3", config=config, clock=clock, session_id="s-1")
    d.start()
    return d
