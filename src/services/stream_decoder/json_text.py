"""Escape-aware helpers for JSON text that may not parse.

`json.loads` is the first choice everywhere, but the decoder regularly sees
objects that are cut off or glued together. These helpers walk the text with
the same string/escape rules a JSON parser uses so field values and object
boundaries can still be found.
"""

from __future__ import annotations

import re


_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

_ESCAPE_OUT = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


def _field_pattern(name: str) -> re.Pattern[str]:
    return re.compile(r'"' + re.escape(name) + r'"\s*:\s*"')


def scan_string(text: str, start: int) -> tuple[str, int, bool]:
    """Read a JSON string body beginning just after its opening quote.

    Returns the still-escaped body, the index of the closing quote (or
    `len(text)` when the string never closes) and whether it closed.
    """
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return text[start:i], i, True
        i += 1
    return text[start:], n, False


def unescape(raw: str) -> str:
    """Decode JSON string escapes; unknown or cut-off escapes are kept as-is."""
    if "\\" not in raw:
        return raw
    out: list[str] = []
    i = 0
    n = len(raw)
    while i < n:
        ch = raw[i]
        if ch != "\\" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = raw[i + 1]
        if nxt in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[nxt])
            i += 2
            continue
        if nxt == "u" and i + 6 <= n:
            code = _hex(raw[i + 2 : i + 6])
            if code is not None:
                # A high surrogate followed by a low one is one astral char
                if 0xD800 <= code <= 0xDBFF and raw[i + 6 : i + 8] == "\\u":
                    low = _hex(raw[i + 8 : i + 12])
                    if low is not None and 0xDC00 <= low <= 0xDFFF:
                        out.append(
                            chr(0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00))
                        )
                        i += 12
                        continue
                out.append(chr(code))
                i += 6
                continue
        out.append(ch)
        out.append(nxt)
        i += 2
    return "".join(out)


def _hex(digits: str) -> int | None:
    if len(digits) != 4:
        return None
    try:
        return int(digits, 16)
    except ValueError:
        return None


def escape(value: str) -> str:
    """Encode a string body the way `unescape` expects to read it back."""
    out: list[str] = []
    for ch in value:
        if ch in _ESCAPE_OUT:
            out.append(_ESCAPE_OUT[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    return "".join(out)


def find_field_value(text: str, name: str) -> str | None:
    """Return the unescaped value of the first properly closed `"name":"..."`."""
    for match in _field_pattern(name).finditer(text):
        raw, _end, closed = scan_string(text, match.end())
        if closed:
            return unescape(raw)
    return None


def find_all_field_values(text: str, name: str) -> list[str]:
    """Every properly closed `"name":"..."` value, in order of appearance."""
    values: list[str] = []
    pos = 0
    pattern = _field_pattern(name)
    while True:
        match = pattern.search(text, pos)
        if match is None:
            return values
        raw, end, closed = scan_string(text, match.end())
        if not closed:
            return values
        values.append(unescape(raw))
        pos = end + 1


def find_partial_field_value(text: str, name: str = "content") -> str | None:
    """Value of the first `"name":"` up to its closing quote or end of text."""
    match = _field_pattern(name).search(text)
    if match is None:
        return None
    raw, _end, closed = scan_string(text, match.end())
    if not closed and raw.endswith("\\") and not raw.endswith("\\\\"):
        # Stream cut inside an escape sequence
        raw = raw[:-1]
    return unescape(raw)


def brace_depth(text: str) -> int:
    """Net `{`/`}` depth outside of strings; > 0 means the text was cut off."""
    depth = 0
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        i += 1
    return depth


def top_level_object_spans(text: str) -> list[tuple[int, int]]:
    """(start, end) slices of each balanced top-level `{...}` in `text`.

    Stray closing braces at depth zero are ignored; an object still open at
    the end of the text is not reported.
    """
    spans: list[tuple[int, int]] = []
    depth = 0
    start = -1
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            # Quotes only delimit strings inside an object
            in_string = depth > 0
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((start, i + 1))
        i += 1
    return spans
