"""Caller-facing events emitted by a decode session."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


MAX_SSE_EVENT_BYTES: int = 16_384


class DecoderEvent(BaseModel):
    """Canonical envelope for everything a StreamDecoder tells its caller.

    A session emits zero or more `fragment` events followed by exactly one of
    `finished`, `failed` or `cancelled`.
    """

    event: Literal["fragment", "finished", "failed", "cancelled"]
    session_id: str
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @property
    def is_terminal(self) -> bool:
        return self.event != "fragment"

    @property
    def text(self) -> str | None:
        """Fragment text, if this is a fragment event."""
        if self.event != "fragment":
            return None
        return self.data.get("text")

    def to_sse(self) -> str:
        """Serialize event to SSE format with size validation."""
        payload = self.model_dump_json()
        if len(payload.encode("utf-8")) > MAX_SSE_EVENT_BYTES:
            raise ValueError(
                "SSE payload exceeded MAX_SSE_EVENT_BYTES; fragments should be "
                "emitted incrementally rather than as one accumulated blob."
            )
        return f"data: {payload}\n\n"
