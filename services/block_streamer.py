"""Incremental block streamer — streaming JSON array parser.

Parses a streaming JSON array of generated blocks and emits typed events
while the text is still arriving:

Text blocks (heading, paragraph, callout, blockquote):
    block_start → content_delta (one per decoded character) → block_end

List blocks (bulletList, orderedList, taskList):
    block_start → content_delta (synthetic text) → block_end
    Synthesized once the object parses, so clients treat lists like text.

Everything else (divider, codeBlock, table, database):
    block (whole object)

The scanner is a single left-to-right pass per ``feed`` call.  All state
lives on the instance, so a chunk may end anywhere: mid-key, mid-string,
mid-escape.  Only top-level ``type``, ``level`` and ``content`` keys are
interpreted while scanning; the finished object is decoded with ``json``.
For a streamed block the first ``type``, ``level`` and ``content`` seen
are what reached the client, so they override duplicates in the decoded
object and ``block_end`` always matches the deltas.
"""

from __future__ import annotations

import json
import logging
from enum import Enum, auto

from pydantic import ValidationError

from models.blocks import (
    LIST_TYPES,
    STREAMABLE_TYPES,
    BlockType,
    GeneratedBlock,
    ParagraphBlock,
    parse_block,
)
from models.events import (
    BlockEndEvent,
    BlockEvent,
    BlockStartEvent,
    ContentDeltaEvent,
    StreamEvent,
)

logger = logging.getLogger(__name__)

# Raw prefix kept when an entry is not valid JSON.
FALLBACK_PREFIX_CHARS = 200

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    '"': '"',
    "\\": "\\",
    "/": "/",
}

_WHITESPACE = frozenset(" \t\r\n")


class ParsePhase(Enum):
    OUTSIDE_ARRAY = auto()  # before the opening '['
    IN_ARRAY = auto()  # between top-level entries
    IN_OBJECT = auto()  # inside an entry, outside any string
    IN_KEY = auto()  # reading a top-level key
    AFTER_KEY = auto()  # top-level key closed, expecting ':'
    BEFORE_VALUE = auto()  # after ':' of a top-level key
    IN_TYPE_STRING = auto()  # value of the top-level "type" key
    IN_CONTENT_STRING = auto()  # value of the top-level "content" key
    IN_LEVEL_STRING = auto()  # quoted value of the top-level "level" key
    IN_VALUE_STRING = auto()  # any other string
    IN_SCALAR = auto()  # top-level number / literal value
    DONE = auto()  # closing ']' seen


_STRING_PHASES = frozenset({
    ParsePhase.IN_KEY,
    ParsePhase.IN_TYPE_STRING,
    ParsePhase.IN_CONTENT_STRING,
    ParsePhase.IN_LEVEL_STRING,
    ParsePhase.IN_VALUE_STRING,
})


def synthesize_list_text(block: GeneratedBlock) -> str:
    """Flatten a list block into the text replayed as its content delta."""
    if block.type == BlockType.BULLET_LIST.value:
        return "\n".join(f"- {item}" for item in block.items)
    if block.type == BlockType.ORDERED_LIST.value:
        return "\n".join(f"{i}. {item}" for i, item in enumerate(block.items, start=1))
    if block.type == BlockType.TASK_LIST.value:
        return "\n".join(
            f"{'[x]' if task.checked else '[ ]'} {task.text}" for task in block.tasks
        )
    return ""


def _readable_text(data: dict, raw: str) -> str:
    content = data.get("content")
    if isinstance(content, str):
        return content
    items = data.get("items")
    if isinstance(items, list):
        return "\n".join(str(item) for item in items)
    return raw[:FALLBACK_PREFIX_CHARS]


class IncrementalBlockStreamer:
    """Turn a chunked JSON array of blocks into stream events.

    Args:
        section_index: Section stamped on block events.
        start_block_index: Index given to the first block; indices then
            increase by one per top-level entry, valid or not.
    """

    def __init__(self, section_index: int = 0, start_block_index: int = 0) -> None:
        self._section_index = section_index
        self._block_index = start_block_index
        self._pending: list[StreamEvent] = []

        self._phase = ParsePhase.OUTSIDE_ARRAY
        self._depth = 0  # open containers inside the current entry

        # String decoding
        self._escape_pending = False
        self._unicode_digits: str | None = None
        self._high_surrogate: int | None = None

        # Current entry
        self._key: list[str] = []
        self._last_key = ""
        self._value: list[str] = []
        self._raw: list[str] = []
        self._reset_entry()

    # ── Public API ───────────────────────────────────────────

    @property
    def block_index(self) -> int:
        """Index the next top-level entry will receive."""
        return self._block_index

    @property
    def phase(self) -> ParsePhase:
        return self._phase

    def feed(self, chunk: str) -> None:
        """Scan a chunk of model output, queueing any events it completes."""
        for ch in chunk:
            if self._depth > 0:
                self._raw.append(ch)
            self._step(ch)

    def flush(self) -> list[StreamEvent]:
        """Return queued events and clear the queue."""
        events, self._pending = self._pending, []
        return events

    def finish(self) -> None:
        """Close a truncated entry at end of input.

        An entry still open when the stream ends is decoded like any other
        completed entry, which for truncated JSON means the fallback path.
        """
        if self._depth > 0:
            self._complete_entry()
        self._phase = ParsePhase.DONE

    # ── Character dispatch ───────────────────────────────────

    def _step(self, ch: str) -> None:
        phase = self._phase
        if phase in _STRING_PHASES:
            self._step_string(ch)
        elif phase is ParsePhase.OUTSIDE_ARRAY:
            if ch == "[":
                self._phase = ParsePhase.IN_ARRAY
        elif phase is ParsePhase.IN_ARRAY:
            self._step_array(ch)
        elif phase is ParsePhase.IN_OBJECT:
            self._step_object(ch)
        elif phase is ParsePhase.AFTER_KEY:
            if ch == ":":
                self._phase = ParsePhase.BEFORE_VALUE
            elif ch not in _WHITESPACE:
                self._phase = ParsePhase.IN_OBJECT
                self._step_object(ch)
        elif phase is ParsePhase.BEFORE_VALUE:
            self._step_before_value(ch)
        elif phase is ParsePhase.IN_SCALAR:
            self._step_scalar(ch)

    def _step_array(self, ch: str) -> None:
        if ch == "{":
            self._reset_entry()
            self._depth = 1
            self._raw = ["{"]
            self._phase = ParsePhase.IN_OBJECT
        elif ch == '"':
            self._phase = ParsePhase.IN_VALUE_STRING
        elif ch == "]":
            self._phase = ParsePhase.DONE

    def _step_object(self, ch: str) -> None:
        if ch == '"':
            if self._depth == 1:
                self._key = []
                self._phase = ParsePhase.IN_KEY
            else:
                self._phase = ParsePhase.IN_VALUE_STRING
        elif ch in "{[":
            self._depth += 1
        elif ch in "}]":
            self._depth -= 1
            if self._depth == 0:
                self._complete_entry()
                self._phase = ParsePhase.IN_ARRAY

    def _step_before_value(self, ch: str) -> None:
        if ch in _WHITESPACE:
            return
        reading_level = self._last_key == "level" and not self._level_seen
        if reading_level:
            self._level_seen = True
        if ch == '"':
            if self._last_key == "type":
                self._value = []
                self._phase = ParsePhase.IN_TYPE_STRING
            elif self._last_key == "content" and not self._content_opened:
                self._phase = ParsePhase.IN_CONTENT_STRING
                self._open_content()
            elif reading_level:
                self._value = []
                self._phase = ParsePhase.IN_LEVEL_STRING
            else:
                self._phase = ParsePhase.IN_VALUE_STRING
        elif ch in "{[":
            self._depth += 1
            self._phase = ParsePhase.IN_OBJECT
        elif ch in "}],":
            self._phase = ParsePhase.IN_OBJECT
            self._step_object(ch)
        else:
            self._value = [ch]
            self._reading_level = reading_level
            self._phase = ParsePhase.IN_SCALAR

    def _step_scalar(self, ch: str) -> None:
        if ch not in _WHITESPACE and ch not in ",}]":
            self._value.append(ch)
            return
        if self._reading_level:
            self._reading_level = False
            self._read_level()
        self._phase = ParsePhase.IN_OBJECT
        if ch not in _WHITESPACE:
            self._step_object(ch)

    def _read_level(self) -> None:
        # Numeric text as pydantic would coerce it: "3", 3 and 3.0 are level 3.
        try:
            number = float("".join(self._value))
        except ValueError:
            self._heading_level = None
        else:
            self._heading_level = int(number) if number.is_integer() else None
        self._maybe_start_block()

    # ── Strings ──────────────────────────────────────────────

    def _step_string(self, ch: str) -> None:
        if self._unicode_digits is not None:
            self._unicode_digits += ch
            if len(self._unicode_digits) == 4:
                digits, self._unicode_digits = self._unicode_digits, None
                try:
                    self._emit_code_point(int(digits, 16))
                except ValueError:
                    pass  # invalid \u escape; the entry fails to decode later
            return
        if self._escape_pending:
            self._escape_pending = False
            if ch == "u":
                self._unicode_digits = ""
            else:
                self._emit_char(_ESCAPES.get(ch, ch))
            return
        if ch == "\\":
            self._escape_pending = True
        elif ch == '"':
            self._close_string()
        else:
            self._emit_char(ch)

    def _emit_code_point(self, code: int) -> None:
        if 0xD800 <= code <= 0xDBFF:
            self._release_surrogate()
            self._high_surrogate = code
        elif 0xDC00 <= code <= 0xDFFF and self._high_surrogate is not None:
            high, self._high_surrogate = self._high_surrogate, None
            self._route_char(chr(0x10000 + ((high - 0xD800) << 10) + (code - 0xDC00)))
        else:
            self._emit_char(chr(code))

    def _emit_char(self, ch: str) -> None:
        self._release_surrogate()
        self._route_char(ch)

    def _release_surrogate(self) -> None:
        # A high surrogate not followed by its low half decodes on its own.
        if self._high_surrogate is not None:
            high, self._high_surrogate = self._high_surrogate, None
            self._route_char(chr(high))

    def _route_char(self, ch: str) -> None:
        phase = self._phase
        if phase is ParsePhase.IN_KEY:
            self._key.append(ch)
        elif phase is ParsePhase.IN_TYPE_STRING or phase is ParsePhase.IN_LEVEL_STRING:
            self._value.append(ch)
        elif phase is ParsePhase.IN_CONTENT_STRING and self._block_started:
            self._streamed.append(ch)
            self._pending.append(
                ContentDeltaEvent(block_index=self._block_index, text=ch)
            )

    def _close_string(self) -> None:
        self._release_surrogate()
        phase = self._phase
        if phase is ParsePhase.IN_KEY:
            self._last_key = "".join(self._key)
            self._phase = ParsePhase.AFTER_KEY
        elif phase is ParsePhase.IN_TYPE_STRING:
            if self._block_type is None:
                self._block_type = "".join(self._value)
            self._phase = ParsePhase.IN_OBJECT
            self._maybe_start_block()
        elif phase is ParsePhase.IN_LEVEL_STRING:
            self._phase = ParsePhase.IN_OBJECT
            self._read_level()
        elif self._depth > 0:
            self._phase = ParsePhase.IN_OBJECT
        else:
            self._phase = ParsePhase.IN_ARRAY

    # ── Block lifecycle ──────────────────────────────────────

    def _open_content(self) -> None:
        self._content_opened = True
        if self._block_type is None:
            # Content arrived before the type: the block cannot stream.
            self._content_before_type = True
        else:
            self._maybe_start_block(force=True)

    def _maybe_start_block(self, force: bool = False) -> None:
        """Emit ``block_start`` once the streamable type is known.

        Headings wait for their level unless ``force`` (content opening or
        the entry closing) says the wait is over.
        """
        if self._block_started or self._content_before_type:
            return
        if self._block_type not in STREAMABLE_TYPES:
            return
        is_heading = self._block_type == BlockType.HEADING.value
        if is_heading and self._heading_level is None and not force:
            return

        attrs = None
        if is_heading and self._heading_level is not None:
            attrs = {"level": self._heading_level}
        self._block_started = True
        self._pending.append(
            BlockStartEvent(
                block_index=self._block_index,
                section_index=self._section_index,
                block_type=self._block_type,
                attrs=attrs,
            )
        )

    def _complete_entry(self) -> None:
        self._maybe_start_block(force=True)
        block = self._build_block("".join(self._raw))

        index = self._block_index
        section = self._section_index
        if self._block_started:
            self._pending.append(
                BlockEndEvent(block_index=index, section_index=section, block=block)
            )
        elif block.type in LIST_TYPES:
            self._pending.append(
                BlockStartEvent(
                    block_index=index, section_index=section, block_type=block.type
                )
            )
            text = synthesize_list_text(block)
            if text:
                self._pending.append(ContentDeltaEvent(block_index=index, text=text))
            self._pending.append(
                BlockEndEvent(block_index=index, section_index=section, block=block)
            )
        else:
            self._pending.append(
                BlockEvent(block_index=index, section_index=section, block=block)
            )

        self._block_index += 1
        self._depth = 0
        self._reset_entry()

    def _build_block(self, raw: str) -> GeneratedBlock:
        """Decode a finished entry, falling back to a paragraph.

        Text that is not JSON keeps its raw prefix.  JSON that is not a
        valid block keeps its readable text.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(
                "Malformed block at index %d; emitting fallback paragraph",
                self._block_index,
            )
            return ParagraphBlock(content=raw[:FALLBACK_PREFIX_CHARS])

        if self._block_started:
            data = {**data, "type": self._block_type, "content": "".join(self._streamed)}
            if self._block_type == BlockType.HEADING.value:
                data["level"] = self._heading_level

        try:
            return parse_block(data)
        except ValidationError as exc:
            logger.warning(
                "Invalid %r block at index %d (%d errors); keeping its text",
                data.get("type"), self._block_index, exc.error_count(),
            )
            return ParagraphBlock(content=_readable_text(data, raw))

    def _reset_entry(self) -> None:
        self._raw = []
        self._key = []
        self._last_key = ""
        self._value = []
        self._block_type: str | None = None
        self._heading_level: int | None = None
        self._block_started = False
        self._content_before_type = False
        self._content_opened = False
        self._level_seen = False
        self._reading_level = False
        self._streamed: list[str] = []
        self._escape_pending = False
        self._unicode_digits = None
        self._high_surrogate = None
