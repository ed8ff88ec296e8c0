"""Tests for the caller-facing event envelope and wire schemas."""

import json

import pytest
from pydantic import ValidationError

from schemas.ollama import (
    ChatChunk,
    GenerateRequest,
    GenerationOptions,
    normalize_model_name,
)
from schemas.stream import MAX_SSE_EVENT_BYTES, DecoderEvent


class TestDecoderEvent:
    """Test DecoderEvent helpers."""

    def test_fragment_to_sse(self) -> None:
        event = DecoderEvent(event="fragment", session_id="s", data={"text": "Hi"})
        sse = event.to_sse()
        assert sse.startswith("data: ")
        assert sse.endswith("\n\n")
        assert json.loads(sse[len("data: ") :]) == {
            "event": "fragment",
            "session_id": "s",
            "data": {"text": "Hi"},
        }
        assert event.text == "Hi"
        assert not event.is_terminal

    def test_terminal_event(self) -> None:
        event = DecoderEvent(event="finished", session_id="s", data={"reason": "normal"})
        assert event.is_terminal
        assert event.text is None

    def test_oversized_payload_rejected(self) -> None:
        event = DecoderEvent(
            event="fragment", session_id="s", data={"text": "x" * MAX_SSE_EVENT_BYTES}
        )
        with pytest.raises(ValueError):
            event.to_sse()

    def test_unknown_event_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DecoderEvent(event="progress", session_id="s")


class TestWireSchemas:
    """Test request and response schemas."""

    def test_chat_chunk_ignores_extra_keys(self) -> None:
        chunk = ChatChunk.model_validate_json(
            '{"model":"m","created_at":"t","message":{"role":"assistant","content":"x",'
            '"images":null},"done":false,"eval_count":3}'
        )
        assert chunk.message.content == "x"

    def test_request_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            GenerateRequest(model="m", prompt="p", keep_alive="5m")  # type: ignore[call-arg]

    def test_options_bounds(self) -> None:
        with pytest.raises(ValidationError):
            GenerationOptions(temperature=3.0)

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("Llama 3", "llama-3"), ("  DeepSeek R1 ", "deepseek-r1"), ("qwen2:7b", "qwen2:7b")],
    )
    def test_normalize_model_name(self, name: str, expected: str) -> None:
        assert normalize_model_name(name) == expected
