"""Split a raw response body into classified chunks."""

from __future__ import annotations

import re

from services.stream_decoder.json_text import top_level_object_spans
from services.stream_decoder.sniffer import classify
from services.stream_decoder.types import ChunkKind, ResponseChunk


# `}` followed, across optional whitespace, by `{`
OBJECT_BOUNDARY = re.compile(r"\}\s*\{")
NESTED_MESSAGE = re.compile(r'\{[^{]*"message"\s*:\s*\{[^}]*\}[^}]*\}')


def _chunk(text: str) -> ResponseChunk:
    return ResponseChunk(text, classify(text))


def _is_glued(text: str) -> bool:
    """True when a single line holds two or more objects with no separator."""
    return len(top_level_object_spans(text.strip())) >= 2


def split_on_boundaries(text: str) -> list[str]:
    """Cut at every `}{` and pad the pieces back into `{...}` form.

    A heuristic: braces inside string values that happen to sit next to each
    other are cut too.
    """
    pieces = OBJECT_BOUNDARY.split(text.strip())
    out: list[str] = []
    for piece in pieces:
        piece = piece.strip()
        if not piece:
            continue
        if not piece.startswith("{"):
            piece = "{" + piece
        if not piece.endswith("}"):
            piece = piece + "}"
        out.append(piece)
    return out


def split_lines(text: str) -> list[str]:
    """Non-blank lines of `text`, tolerating `\\r\\n`."""
    return [line for line in text.replace("\r\n", "\n").split("\n") if line.strip()]


def split(raw_body: str) -> list[ResponseChunk]:
    """Split `raw_body` into chunks. Always returns at least one chunk."""
    if not raw_body.strip():
        return [ResponseChunk(raw_body, ChunkKind.UNKNOWN)]

    lines = split_lines(raw_body)
    if len(lines) > 1:
        return [c for line in lines for c in split(line)]
    if not _is_glued(lines[0]):
        return [_chunk(lines[0])]

    if OBJECT_BOUNDARY.search(raw_body):
        return [_chunk(piece) for piece in split_on_boundaries(raw_body)]

    nested = NESTED_MESSAGE.findall(raw_body)
    if nested:
        return [_chunk(match) for match in nested]

    return [_chunk(raw_body)]
