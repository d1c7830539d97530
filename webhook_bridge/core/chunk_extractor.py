"""Incremental framing of JSON objects inside an upstream byte stream.

The webhook answers with an unbounded stream of concatenated JSON objects,
sometimes wrapped in stray text, that the transport may split anywhere,
including inside a multi-byte UTF-8 sequence or a quoted string. The
ChunkExtractor keeps one request's parser state and returns every complete
top-level object as soon as its closing brace arrives.
"""

import codecs
import json
from dataclasses import dataclass, field

import structlog

from webhook_bridge.core.errors import WebhookResponseTooLargeError

logger = structlog.get_logger(__name__)

CONTENT_FIELDS = ("content", "text", "output", "message")
METADATA_TYPES = frozenset({"begin", "end", "error", "metadata"})


def _utf8_size(text: str) -> int:
    return len(text.encode("utf-8", errors="surrogatepass"))


@dataclass
class ParserState:
    """Scan cursor for the partial fragment held between chunks.

    The partial fragment is kept as the list of pieces it arrived in and is
    joined once, when its closing brace shows up.

    Attributes:
        pieces: Already-scanned text of the fragment under construction.
        position: Number of characters held in pieces; scanning resumes after them.
        size: UTF-8 size of the held text in bytes.
        depth: Brace nesting depth outside string literals.
        in_string: Whether the cursor is inside a JSON string literal.
        escape_next: Whether the previous character was an unescaped backslash.
    """
    pieces: list[str] = field(default_factory=list)
    position: int = 0
    size: int = 0
    depth: int = 0
    in_string: bool = False
    escape_next: bool = False

    @property
    def buffer(self) -> str:
        return "".join(self.pieces)

    def hold(self, piece: str) -> None:
        if piece:
            self.pieces.append(piece)
            self.position += len(piece)
            self.size += _utf8_size(piece)

    def take(self, tail: str) -> str:
        """Return the held pieces plus tail as one fragment and clear the hold."""
        self.pieces.append(tail)
        fragment = "".join(self.pieces)
        self.pieces = []
        self.position = 0
        self.size = 0
        return fragment


def _scan(state: ParserState, text: str) -> list[str]:
    """Advance the state over new text and return completed fragments."""
    fragments: list[str] = []
    depth = state.depth
    in_string = state.in_string
    escape_next = state.escape_next
    length = len(text)
    start = 0
    i = 0

    while i < length:
        if depth == 0:
            # Between fragments: discard everything until the next '{'.
            brace = text.find("{", i)
            if brace == -1:
                break
            start = i = brace

        ch = text[i]
        if escape_next:
            escape_next = False
        elif in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                fragments.append(state.take(text[start:i + 1]))
        i += 1

    if depth:
        state.hold(text[start:])
    state.depth = depth
    state.in_string = in_string
    state.escape_next = escape_next
    return fragments


def extract_json_chunks(previous_remainder: str, new_text: str) -> tuple[list[str], str]:
    """Split complete top-level JSON objects out of remainder + new text.

    Args:
        previous_remainder: Remainder returned by the previous call ("" initially).
        new_text: Newly arrived text.

    Returns:
        Tuple of (complete fragments in order, remainder to pass to the next call).
        Text before an object's opening brace is dropped; only an unfinished
        object is kept as remainder.
    """
    state = ParserState()
    fragments = _scan(state, previous_remainder)
    fragments.extend(_scan(state, new_text))
    return fragments, state.buffer


class ChunkExtractor:
    """Per-request byte-level front end for the JSON framer.

    Bytes are fed through an incremental UTF-8 decoder, so a character split
    across two network chunks is held back until its last byte arrives.
    """

    def __init__(self, max_buffer_size: int = 10 * 1024 * 1024):
        self.max_buffer_size = max_buffer_size
        self.state = ParserState()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def remainder(self) -> str:
        return self.state.buffer

    def feed(self, data: bytes | str) -> list[str]:
        """Consume one network chunk and return fragments completed by it.

        Raises:
            WebhookResponseTooLargeError: If an unfinished fragment outgrows max_buffer_size.
        """
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        fragments = _scan(self.state, text)
        if self.state.size > self.max_buffer_size:
            logger.error("extractor.buffer_overflow", size=self.state.size,
                         limit=self.max_buffer_size)
            raise WebhookResponseTooLargeError(
                f"Response buffer exceeded maximum size of {self.max_buffer_size} bytes"
            )
        return fragments

    def flush(self) -> list[str]:
        """Finish the stream: decode any held-back bytes and return what completes."""
        fragments = _scan(self.state, self._decoder.decode(b"", final=True))
        if self.state.pieces:
            logger.debug("extractor.incomplete_fragment_dropped", size=self.state.size)
            self.state = ParserState()
        return fragments


def _load(fragment: str) -> dict | None:
    if not fragment or not fragment.strip():
        return None
    try:
        data = json.loads(fragment)
    except ValueError:
        logger.debug("extractor.fragment_dropped", preview=fragment[:80])
        return None
    return data if isinstance(data, dict) else None


def parse_fragment(fragment: str) -> str | None:
    """Return the content carried by one fragment, or None.

    Metadata-only fragments (type begin/end/error/metadata, or no content
    field) and malformed JSON yield None.
    """
    data = _load(fragment)
    if data is None:
        return None

    if data.get("type") in METADATA_TYPES:
        return None

    for key in CONTENT_FIELDS:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def is_turn_end(fragment: str) -> bool:
    """True if the fragment is the webhook agent's end-of-turn marker."""
    data = _load(fragment)
    return data is not None and data.get("type") == "end"
