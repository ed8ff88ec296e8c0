"""Unit tests for splitting a raw body into chunks."""

from services.stream_decoder.splitter import split, split_on_boundaries
from services.stream_decoder.types import ChunkKind


PART1 = '{"message":{"role":"assistant","content":"Part1"}}'
PART2 = '{"message":{"role":"assistant","content":"Part2"}}'


class TestSplit:
    """Test split preference order."""

    def test_empty_body(self) -> None:
        chunks = split("  \n")
        assert len(chunks) == 1
        assert chunks[0].kind is ChunkKind.UNKNOWN
        assert chunks[0].text == "  \n"

    def test_ndjson_lines(self) -> None:
        chunks = split('{"response":"Hello"}\n\n{"response":" world"}\n')
        assert [c.text for c in chunks] == ['{"response":"Hello"}', '{"response":" world"}']
        assert all(c.kind is ChunkKind.SINGLE_OBJECT for c in chunks)

    def test_crlf_lines(self) -> None:
        chunks = split('{"response":"a"}\r\n{"response":"b"}\r\n')
        assert [c.text for c in chunks] == ['{"response":"a"}', '{"response":"b"}']

    def test_concatenated_objects(self) -> None:
        chunks = split(PART1 + PART2)
        assert [c.text for c in chunks] == [PART1, PART2]
        assert all(c.kind is ChunkKind.SINGLE_OBJECT for c in chunks)

    def test_concatenated_with_trailing_newline(self) -> None:
        """A single glued line is still separated."""
        chunks = split(PART1 + " " + PART2 + "\n")
        assert [c.text for c in chunks] == [PART1, PART2]

    def test_glued_objects_inside_ndjson(self) -> None:
        chunks = split('{"response":"a"}{"response":"b"}\n{"response":"c"}\n')
        assert [c.text for c in chunks] == [
            '{"response":"a"}',
            '{"response":"b"}',
            '{"response":"c"}',
        ]

    def test_nested_message_matches(self) -> None:
        body = '{"message":{"content":"a"}}x{"message":{"content":"b"}}'
        chunks = split(body)
        assert [c.text for c in chunks] == [
            '{"message":{"content":"a"}}',
            '{"message":{"content":"b"}}',
        ]

    def test_whole_body_fallback(self) -> None:
        body = '{"a":1}x{"b":2}'
        assert [c.text for c in split(body)] == [body]

    def test_plain_text(self) -> None:
        chunks = split("Just some words.")
        assert len(chunks) == 1
        assert chunks[0].kind is ChunkKind.PLAIN_TEXT


class TestSplitOnBoundaries:
    """Test the `}{` boundary heuristic."""

    def test_pads_pieces(self) -> None:
        assert split_on_boundaries('{"a":1}\r\n{"b":2} {"c":3}') == [
            '{"a":1}',
            '{"b":2}',
            '{"c":3}',
        ]

    def test_cuts_inside_strings(self) -> None:
        """Known approximation: `}{` inside a value is cut too."""
        pieces = split_on_boundaries('{"content":"x}{y"}')
        assert pieces == ['{"content":"x}', '{y"}']
