"""Pull generated text out of a classified chunk.

Extraction is an explicit cascade of small, pure strategies tried in a fixed
order; the first one that produces something wins:

1. structured decode against the known line schemas (pydantic)
2. targeted `"content"` / `"response"` field scan (escape-aware)
3. partial field recovery, only for chunks classified as truncated
4. brute-force artifact stripping (`remove_json_artifacts`)

Plain-text chunks short-circuit the cascade and are returned untouched. No
strategy raises; a failure just hands the chunk to the next one.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, ValidationError

from core.config import DecoderConfig
from schemas.ollama import ChatChunk, ContentChunk, GenerateChunk, ServerErrorBody
from services.stream_decoder import json_text
from services.stream_decoder.json_text import top_level_object_spans
from services.stream_decoder.sniffer import classify
from services.stream_decoder.types import (
    ChunkKind,
    ExtractionResult,
    Fragment,
    Malformed,
    NoContent,
    ResponseChunk,
)


# Tried in order; chat lines are checked first since they also carry `model`
LINE_SCHEMAS: tuple[type[BaseModel], ...] = (ChatChunk, GenerateChunk, ContentChunk)

CODE_FENCE = "```"

# Model family names that leak into stripped text alongside the requested model
KNOWN_MODEL_TOKENS = ("deepseek",)

# `"key": <scalar>` pairs that are pure metadata (durations, counts, flags)
_SCALAR_PAIR = re.compile(
    r'"[A-Za-z_][\w-]*"\s*:\s*(?:true|false|null|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)'
)
# `"key": "value"` pairs whose value is never generated text
_METADATA_STRING_PAIR = re.compile(
    r'"(?:model|created_at|role|done_reason|object|id)"\s*:\s*"[^"\\]*(?:\\.[^"\\]*)*"'
)
_NUMBER_ARRAY_PAIR = re.compile(r'"[A-Za-z_][\w-]*"\s*:\s*\[[\d\s,.-]*\]')
_FIELD_TOKEN = re.compile(
    r'"?\b(?:model|message|role|content|response|done|created_at)\b"?\s*:'
)
_ROLE_LITERAL = re.compile(r'"assistant"')
_JSON_COMMA = re.compile(r'\s*,\s*(?=["{}\[\]])|(?<=["{}\[\]])\s*,\s*')
_SYNTAX_CHARS = re.compile(r'[{}\[\]"]')
_INLINE_SPACE = re.compile(r"[ \t]+")
_SPACE_AROUND_NEWLINE = re.compile(r" *\n *")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


# -----------------------------------------------------------------------------
# Strategy 1: structured decode
# -----------------------------------------------------------------------------


def _content_of(model: BaseModel) -> tuple[str, bool]:
    if isinstance(model, ChatChunk):
        return model.message.content, model.done
    if isinstance(model, GenerateChunk):
        return model.response, model.done
    if isinstance(model, ContentChunk):
        return model.content, model.done
    raise TypeError(f"No content field on {type(model).__name__}")


def _unwrap_envelope(content: str) -> str:
    """Some models echo a whole server line inside `response`; unwrap it once."""
    stripped = content.strip()
    if not (stripped.startswith("{") and '"model"' in stripped):
        return content
    try:
        data = json.loads(stripped)
    except ValueError:
        return content
    if not isinstance(data, dict) or "model" not in data:
        return content
    for schema in (ChatChunk, GenerateChunk):
        try:
            inner, _done = _content_of(schema.model_validate(data))
        except ValidationError:
            continue
        return inner
    return content


def structured_decode(text: str) -> ExtractionResult | None:
    """Decode `text` as one server line; None if it is not a JSON object.

    A well-formed object that matches no known schema is metadata, so it
    yields `NoContent` rather than falling through to the heuristics.
    """
    try:
        data: Any = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    for schema in LINE_SCHEMAS:
        try:
            parsed = schema.model_validate(data)
        except ValidationError:
            continue
        content, done = _content_of(parsed)
        content = _unwrap_envelope(content)
        if not content:
            return NoContent(done=done)
        return Fragment(content, done=done, strategy="structured")

    try:
        err = ServerErrorBody.model_validate(data)
    except ValidationError:
        return NoContent(done=bool(data.get("done", False)))
    return NoContent(error=err.error)


# -----------------------------------------------------------------------------
# Strategies 2 and 3: field scans
# -----------------------------------------------------------------------------


def targeted_field(text: str) -> Fragment | None:
    """Escape-aware scan for a closed `"content"` or `"response"` value."""
    for name in ("content", "response"):
        value = json_text.find_field_value(text, name)
        if value is not None:
            done = re.search(r'"done"\s*:\s*true', text) is not None
            return Fragment(value, done=done, strategy="field")
    return None


def partial_field(text: str) -> Fragment | None:
    """Everything after the first `"content":"` up to a quote or end of text."""
    for name in ("content", "response"):
        value = json_text.find_partial_field_value(text, name)
        if value:
            return Fragment(value, strategy="partial")
    return None


# -----------------------------------------------------------------------------
# Strategy 4: brute-force stripping
# -----------------------------------------------------------------------------


def _strip_segment(segment: str, model_names: tuple[str, ...]) -> str:
    s = _METADATA_STRING_PAIR.sub(" ", segment)
    s = _NUMBER_ARRAY_PAIR.sub(" ", s)
    s = _SCALAR_PAIR.sub(" ", s)
    s = _ROLE_LITERAL.sub(" ", s)
    s = _FIELD_TOKEN.sub(" ", s)
    for name in model_names:
        s = s.replace(name, " ")
    s = _JSON_COMMA.sub(" ", s)
    s = _SYNTAX_CHARS.sub(" ", s)
    s = _INLINE_SPACE.sub(" ", s)
    s = _SPACE_AROUND_NEWLINE.sub("\n", s)
    return _EXTRA_NEWLINES.sub("\n\n", s)


def _strip_pass(text: str, model_names: tuple[str, ...]) -> str:
    parts = text.split(CODE_FENCE)
    out: list[str] = []
    for idx, part in enumerate(parts):
        # Odd-numbered parts sit between a pair of fences; an unterminated
        # trailing fence is treated as code too.
        in_code = idx % 2 == 1
        out.append(part if in_code else _strip_segment(part, model_names))
    return CODE_FENCE.join(out).strip()


def _has_json_syntax(text: str) -> bool:
    """True if a brace appears outside fenced code blocks."""
    prose = text.split(CODE_FENCE)[0::2]
    return any("{" in part or "}" in part for part in prose)


def remove_json_artifacts(text: str, model: str | None = None) -> str:
    """Strip JSON syntax and server metadata, leaving human-readable residue.

    JSON string escapes are decoded exactly once, before any stripping, so an
    escaped backslash in the source survives as a literal backslash. Fenced
    code blocks are otherwise kept verbatim. Text with no braces outside code
    fences is returned unchanged, which makes the function idempotent: its
    own output never carries braces outside code.
    """
    if not _has_json_syntax(text):
        return text
    model_names = tuple(n for n in (model, *KNOWN_MODEL_TOKENS) if n)
    current = json_text.unescape(text)
    while True:
        cleaned = _strip_pass(current, model_names)
        if cleaned == current:
            return cleaned
        current = cleaned


# -----------------------------------------------------------------------------
# Cascade
# -----------------------------------------------------------------------------


class ContentExtractor:
    """Runs the strategy cascade for one session's chunks."""

    def __init__(self, config: DecoderConfig | None = None, model: str | None = None):
        self.config = config or DecoderConfig()
        self.model = model

    def extract(self, chunk: ResponseChunk) -> ExtractionResult:
        if chunk.kind is ChunkKind.PLAIN_TEXT:
            return self._checked(Fragment(chunk.text, strategy="plain"))

        if chunk.kind in (ChunkKind.CONCATENATED_OBJECTS, ChunkKind.NDJSON):
            return self._extract_each(chunk.text)

        text = chunk.text.strip()
        structured = structured_decode(text)
        if structured is not None:
            return self._checked(structured)

        result = targeted_field(text)
        if result is None and chunk.kind is ChunkKind.TRUNCATED:
            result = partial_field(text)
        if result is not None:
            return self._checked(result)

        residue = remove_json_artifacts(text, self.model)
        if residue != text and len(residue) > self.config.brute_force_min_chars:
            return self._checked(Fragment(residue, strategy="stripped"))

        if chunk.kind is ChunkKind.UNKNOWN:
            return Malformed("no extraction strategy matched")
        return NoContent()

    def _extract_each(self, text: str) -> ExtractionResult:
        """Run the cascade over each object of a multi-object chunk and join."""
        pieces: list[str] = []
        done = False
        for start, end in top_level_object_spans(text):
            piece = text[start:end]
            result = self.extract(ResponseChunk(piece, classify(piece)))
            if isinstance(result, Fragment):
                pieces.append(result.text)
            done = done or getattr(result, "done", False)
        if pieces:
            return self._checked(Fragment("".join(pieces), done=done, strategy="multi"))
        return NoContent(done=done)

    def _checked(self, result: ExtractionResult) -> ExtractionResult:
        """Apply the minimum fragment length policy."""
        if (
            isinstance(result, Fragment)
            and len(result.text) < self.config.min_fragment_chars
        ):
            return NoContent(done=result.done)
        return result
