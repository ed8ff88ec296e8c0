"""Last-resort recovery over the whole raw body.

Runs only when a response completed without a single fragment having been
emitted. Each step is cheaper and less precise than the one before it.
"""

from __future__ import annotations

import logging
import re

from core.config import DecoderConfig
from services.stream_decoder import json_text
from services.stream_decoder.extractor import remove_json_artifacts, structured_decode
from services.stream_decoder.splitter import split_lines
from services.stream_decoder.types import Fragment


logger = logging.getLogger(__name__)

_ERROR_MARKER = "error"


def _aggressive_pattern(min_chars: int) -> re.Pattern[str]:
    return re.compile(r'content"?\s*:?\s*"?([^}\\"]{' + str(min_chars) + r',})"?')


def _structured(body: str) -> str | None:
    pieces: list[str] = []
    for line in split_lines(body) or [body]:
        result = structured_decode(line.strip())
        if isinstance(result, Fragment):
            pieces.append(result.text)
    return "".join(pieces) or None


def _field_values(body: str) -> str | None:
    values = json_text.find_all_field_values(body, "content")
    if not values:
        values = json_text.find_all_field_values(body, "response")
    joined = "".join(values)
    return joined or None


def recover(
    body: str,
    config: DecoderConfig | None = None,
    model: str | None = None,
) -> str | None:
    """Best-effort text from a body that yielded nothing; None if hopeless."""
    config = config or DecoderConfig()
    if not body.strip():
        return None

    text = _structured(body)
    if text:
        logger.debug("Recovered response via structured decode")
        return text

    text = _field_values(body)
    if text:
        logger.debug("Recovered response via field scan")
        return text

    match = _aggressive_pattern(config.aggressive_match_min_chars).search(body)
    if match:
        logger.debug("Recovered response via aggressive match")
        return match.group(1).strip()

    stripped = remove_json_artifacts(body, model).strip()
    if (
        len(stripped) > config.recovery_strip_min_chars
        and _ERROR_MARKER not in stripped.lower()
    ):
        logger.debug("Recovered response via artifact stripping")
        return stripped

    return None
