"""Resilient decoder for streaming responses from a local model server."""

from .decoder import StreamDecoder, decode_body
from .extractor import ContentExtractor, remove_json_artifacts
from .sniffer import classify
from .splitter import split
from .transport import DecodeStream, OllamaStreamClient, decode_stream
from .types import (
    Cancelled,
    ChunkKind,
    Failed,
    Finished,
    Fragment,
    Malformed,
    NoContent,
    ResponseChunk,
    SessionState,
    StallStage,
)


__all__ = [
    "StreamDecoder",
    "decode_body",
    "ContentExtractor",
    "remove_json_artifacts",
    "classify",
    "split",
    "DecodeStream",
    "OllamaStreamClient",
    "decode_stream",
    "Cancelled",
    "ChunkKind",
    "Failed",
    "Finished",
    "Fragment",
    "Malformed",
    "NoContent",
    "ResponseChunk",
    "SessionState",
    "StallStage",
]
