"""Tests for incremental JSON framing of the webhook stream."""

import json

import pytest

from webhook_bridge.core.chunk_extractor import (
    ChunkExtractor,
    extract_json_chunks,
    is_turn_end,
    parse_fragment,
)
from webhook_bridge.core.errors import WebhookResponseTooLargeError


def feed_all(pieces: list[bytes]) -> list[str]:
    extractor = ChunkExtractor()
    fragments = []
    for piece in pieces:
        fragments.extend(extractor.feed(piece))
    fragments.extend(extractor.flush())
    return fragments


class TestExtractJsonChunks:

    def test_single_object(self):
        extracted, remainder = extract_json_chunks("", '{"content":"Hello"}')
        assert extracted == ['{"content":"Hello"}']
        assert remainder == ""

    def test_multiple_objects(self):
        extracted, remainder = extract_json_chunks("", '{"content":"Hello"}{"content":"World"}')
        assert extracted == ['{"content":"Hello"}', '{"content":"World"}']
        assert remainder == ""

    def test_nested_objects(self):
        buffer = '{"a":{"b":{"c":{"d":"value"}}}}'
        extracted, _ = extract_json_chunks("", buffer)
        assert extracted == [buffer]

    def test_arrays(self):
        buffer = '{"items":[1,2,3,{"nested":"value"}]}'
        extracted, _ = extract_json_chunks("", buffer)
        assert extracted == [buffer]

    def test_empty_objects(self):
        extracted, remainder = extract_json_chunks("", "{}{}{}")
        assert extracted == ["{}", "{}", "{}"]
        assert remainder == ""

    def test_incomplete_object_kept_as_remainder(self):
        extracted, remainder = extract_json_chunks("", '{"content":"Hello"}{"incomplete":')
        assert extracted == ['{"content":"Hello"}']
        assert remainder == '{"incomplete":'

    def test_remainder_completed_by_next_call(self):
        extracted, remainder = extract_json_chunks('{"incomplete":', '"done"}')
        assert extracted == ['{"incomplete":"done"}']
        assert remainder == ""

    def test_stray_prefix_and_suffix_dropped(self):
        extracted, remainder = extract_json_chunks("", 'prefix{"valid":true}suffix{"also":"valid"}')
        assert extracted == ['{"valid":true}', '{"also":"valid"}']
        assert remainder == ""

    def test_plain_text_not_buffered(self):
        extracted, remainder = extract_json_chunks("", "plain text")
        assert extracted == []
        assert remainder == ""

    def test_no_input_no_remainder(self):
        extracted, remainder = extract_json_chunks("", "")
        assert extracted == []
        assert remainder == ""

    def test_complete_buffer_leaves_empty_remainder_on_next_call(self):
        _, remainder = extract_json_chunks("", '{"a":1}{"b":2}')
        extracted, remainder = extract_json_chunks(remainder, "")
        assert extracted == []
        assert remainder == ""

    def test_braces_inside_strings_ignored(self):
        buffer = '{"content":"a { b } c"}'
        extracted, remainder = extract_json_chunks("", buffer)
        assert extracted == [buffer]
        assert json.loads(extracted[0])["content"] == "a { b } c"
        assert remainder == ""

    def test_unbalanced_braces_inside_strings(self):
        buffer = '{"content":"body { color: red;"}{"content":"}}}"}'
        extracted, _ = extract_json_chunks("", buffer)
        assert len(extracted) == 2

    def test_escaped_quotes(self):
        buffer = r'{"content":"say \"hi\" {"}'
        extracted, remainder = extract_json_chunks("", buffer)
        assert extracted == [buffer]
        assert json.loads(extracted[0])["content"] == 'say "hi" {'
        assert remainder == ""

    def test_escaped_backslash_before_quote(self):
        buffer = r'{"content":"path\\"}{"content":"next"}'
        extracted, _ = extract_json_chunks("", buffer)
        assert len(extracted) == 2
        assert json.loads(extracted[0])["content"] == "path\\"


class TestChunkExtractorSplitting:

    STREAM = (
        '{"type":"begin"}'
        '{"type":"item","content":"Hello { world"}'
        '{"type":"item","content":"with \\"quotes\\" and }"}'
        '{"type":"item","content":"nächste Größe 😀"}'
        '{"type":"end"}'
    )

    def expected(self) -> list[str]:
        extracted, _ = extract_json_chunks("", self.STREAM)
        return extracted

    def test_whole_stream(self):
        assert feed_all([self.STREAM.encode()]) == self.expected()
        assert len(self.expected()) == 5

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13])
    def test_fixed_size_chunks(self, size):
        data = self.STREAM.encode()
        pieces = [data[i:i + size] for i in range(0, len(data), size)]
        assert feed_all(pieces) == self.expected()

    def test_every_two_way_split(self):
        data = self.STREAM.encode()
        for cut in range(1, len(data)):
            assert feed_all([data[:cut], data[cut:]]) == self.expected(), cut

    def test_multibyte_split_mid_character(self):
        data = '{"content":"nächste"}'.encode()
        cut = data.index("ä".encode()) + 1
        fragments = feed_all([data[:cut], data[cut:]])
        assert [parse_fragment(f) for f in fragments] == ["nächste"]

    def test_emoji_split_across_three_chunks(self):
        data = '{"content":"😀"}'.encode()
        start = data.index("😀".encode())
        pieces = [data[:start + 1], data[start + 1:start + 3], data[start + 3:]]
        fragments = feed_all(pieces)
        assert parse_fragment(fragments[0]) == "😀"

    def test_remainder_tracks_partial_fragment(self):
        extractor = ChunkExtractor()
        assert extractor.feed(b'noise{"content":"par') == []
        assert extractor.remainder == '{"content":"par'
        assert extractor.feed(b'tial"}trailing') == ['{"content":"partial"}']
        assert extractor.remainder == ""

    def test_flush_drops_incomplete_fragment(self):
        extractor = ChunkExtractor()
        extractor.feed(b'{"content":"never closed')
        assert extractor.flush() == []
        assert extractor.remainder == ""

    def test_accepts_text_input(self):
        extractor = ChunkExtractor()
        assert extractor.feed('{"a":1}') == ['{"a":1}']

    def test_buffer_limit(self):
        extractor = ChunkExtractor(max_buffer_size=16)
        with pytest.raises(WebhookResponseTooLargeError, match="16"):
            extractor.feed(b'{"content":"' + b"x" * 64)

    def test_buffer_limit_counts_bytes(self):
        # 18 characters but 30 UTF-8 bytes.
        extractor = ChunkExtractor(max_buffer_size=20)
        with pytest.raises(WebhookResponseTooLargeError):
            extractor.feed(('{"c":"' + "ä" * 12).encode())

    def test_buffer_within_limit(self):
        extractor = ChunkExtractor(max_buffer_size=20)
        assert extractor.feed(('{"c":"' + "ä" * 6).encode()) == []
        assert extractor.state.size == 18
        assert extractor.state.position == 12

    def test_large_fragment_in_small_pieces(self):
        text = "y" * 200_000
        data = json.dumps({"content": text}).encode()
        extractor = ChunkExtractor()
        fragments = []
        for i in range(0, len(data), 7):
            fragments.extend(extractor.feed(data[i:i + 7]))
            if not fragments:
                assert extractor.state.position == min(i + 7, len(data))
        assert [parse_fragment(f) for f in fragments] == [text]
        assert extractor.state.pieces == []
        assert extractor.state.size == 0


class TestParseFragment:

    def test_content(self):
        assert parse_fragment('{"content":"Hello world"}') == "Hello world"

    @pytest.mark.parametrize("field", ["text", "output", "message"])
    def test_fallback_fields(self, field):
        assert parse_fragment(json.dumps({field: "Hello world"})) == "Hello world"

    def test_content_preferred_over_fallbacks(self):
        assert parse_fragment('{"output":"b","content":"a"}') == "a"

    @pytest.mark.parametrize("chunk_type", ["begin", "end", "error", "metadata"])
    def test_metadata_chunks_skipped(self, chunk_type):
        assert parse_fragment(json.dumps({"type": chunk_type, "content": "ignored"})) is None

    def test_item_type_kept(self):
        assert parse_fragment('{"type":"item","content":"hi"}') == "hi"

    def test_no_content_field(self):
        assert parse_fragment('{"valid":true}') is None

    def test_non_string_content(self):
        assert parse_fragment('{"content":{"nested":"x"}}') is None

    def test_malformed_json(self):
        assert parse_fragment("{corrupted json}") is None

    def test_empty(self):
        assert parse_fragment("") is None
        assert parse_fragment("   ") is None


class TestIsTurnEnd:

    def test_end_marker(self):
        assert is_turn_end('{"type":"end","metadata":{}}')

    def test_begin_marker(self):
        assert not is_turn_end('{"type":"begin","metadata":{}}')

    def test_content_chunk(self):
        assert not is_turn_end('{"type":"item","content":"hello"}')

    def test_malformed(self):
        assert not is_turn_end("{not json}")
        assert not is_turn_end("")
