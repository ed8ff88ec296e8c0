"""Wire schemas for the Ollama-style generate and chat endpoints.

Response models are deliberately lenient about extra keys (servers add timing
and context fields freely) but strict about the payload field types, so a
structured decode either yields real text or fails cleanly and lets the
extraction cascade move on.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------------------------------------------------------
# Streaming response lines
# -----------------------------------------------------------------------------


class GenerateChunk(BaseModel):
    """One line of `/api/generate` output: flat `response` field."""

    response: str
    done: bool = False
    model: str | None = None

    model_config = ConfigDict(extra="ignore")


class ChatMessage(BaseModel):
    """A single chat message, used both in requests and in `/api/chat` lines."""

    role: str = "assistant"
    content: str

    model_config = ConfigDict(extra="ignore")


class ChatChunk(BaseModel):
    """One line of `/api/chat` output: nested `message.content`."""

    message: ChatMessage
    done: bool = False
    model: str | None = None

    model_config = ConfigDict(extra="ignore")


class ContentChunk(BaseModel):
    """Bare `{"content": ...}` objects some OpenAI-compatible shims emit."""

    content: str
    done: bool = False

    model_config = ConfigDict(extra="ignore")


class ServerErrorBody(BaseModel):
    """Error envelope returned with non-2xx statuses (and occasionally 200)."""

    error: str

    model_config = ConfigDict(extra="ignore")


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class GenerationOptions(BaseModel):
    """Sampling options forwarded under the request's `options` key."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    num_predict: int | None = Field(default=None, gt=0)
    num_ctx: int | None = Field(default=None, gt=0)
    stop: list[str] | None = None

    model_config = ConfigDict(extra="forbid")


class GenerateRequest(BaseModel):
    """Request payload for `/api/generate`."""

    model: str = Field(..., min_length=1)
    prompt: str
    system: str | None = None
    format: Literal["json"] | dict | None = None
    options: GenerationOptions | None = None
    stream: bool = True

    model_config = ConfigDict(extra="forbid")


class ChatRequest(BaseModel):
    """Request payload for `/api/chat`."""

    model: str = Field(..., min_length=1)
    messages: list[ChatMessage] = Field(..., min_length=1)
    format: Literal["json"] | dict | None = None
    options: GenerationOptions | None = None
    stream: bool = True

    model_config = ConfigDict(extra="forbid")


def normalize_model_name(name: str) -> str:
    """Map a display name ("Llama 3") to the server's tag form ("llama-3")."""
    return name.strip().replace(" ", "-").lower()
