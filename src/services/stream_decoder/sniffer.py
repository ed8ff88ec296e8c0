"""Classify a chunk of response text into one of the known shapes."""

from __future__ import annotations

import json

from services.stream_decoder.json_text import brace_depth, top_level_object_spans
from services.stream_decoder.types import ChunkKind


# Substrings that mark text as server JSON even when it doesn't start with `{`
JSON_FIELD_MARKERS = ('"model":', '"message":', '"role":')


def _is_single_object(text: str) -> bool:
    try:
        return isinstance(json.loads(text), dict)
    except ValueError:
        return False


def looks_like_json(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith("{") or any(m in text for m in JSON_FIELD_MARKERS)


def classify(text: str) -> ChunkKind:
    """Classify `text`. Rules are checked in priority order; never raises."""
    if not text.strip():
        return ChunkKind.UNKNOWN

    if not looks_like_json(text):
        return ChunkKind.PLAIN_TEXT

    stripped = text.strip()
    if _is_single_object(stripped):
        return ChunkKind.SINGLE_OBJECT

    if (
        '"message":' in text
        and '"content":' in text
        and brace_depth(stripped) > 0
    ):
        return ChunkKind.TRUNCATED

    if len(top_level_object_spans(stripped)) >= 2:
        lines = [line for line in stripped.splitlines() if line.strip()]
        if len(lines) > 1 and all(_is_single_object(line) for line in lines):
            return ChunkKind.NDJSON
        return ChunkKind.CONCATENATED_OBJECTS

    return ChunkKind.UNKNOWN
