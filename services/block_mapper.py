"""Block mapper — generated blocks → rich-text document JSON.

Pure, deterministic conversion of the LLM's simplified block format into
editor document nodes (ProseMirror / Tiptap ``JSONContent`` shape).  The
same block and database id always produce an equal, freshly built tree.

Inline formatting:
    **bold**  → bold mark
    *italic*  → italic mark
    `code`    → code mark
    [N]       → inlineCitation mark (N ≥ 1)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from models.blocks import (
    BlockquoteBlock,
    BulletListBlock,
    CalloutBlock,
    CodeBlock,
    DividerBlock,
    GeneratedBlock,
    HeadingBlock,
    OrderedListBlock,
    ParagraphBlock,
    TableBlock,
    TaskListBlock,
    parse_block,
)

DocNode = dict[str, Any]

DEFAULT_HEADING_LEVEL = 2
DEFAULT_CALLOUT_EMOJI = "ℹ️"
_VALID_HEADING_LEVELS = (1, 2, 3)


# ── Public API ───────────────────────────────────────────────


def map_blocks_to_document(
    blocks: Sequence[GeneratedBlock],
    database_id_map: Mapping[int, str] | None = None,
) -> DocNode:
    """Convert a list of blocks to a ``doc`` node.

    ``database_id_map`` is keyed by block position; database blocks whose
    entity already exists get the real id injected.
    """
    ids = database_id_map or {}
    content: list[DocNode] = []
    for index, block in enumerate(blocks):
        content.extend(map_single_block(block, ids.get(index)))
    return {"type": "doc", "content": content}


def map_single_block(
    block: GeneratedBlock | Mapping[str, Any],
    database_id: str | None = None,
) -> list[DocNode]:
    """Map one block to one or more document nodes.

    Accepts a typed block or its decoded JSON object.  Used for incremental
    insertion while a generation is still streaming.
    """
    if isinstance(block, Mapping):
        block = parse_block(dict(block))

    if isinstance(block, HeadingBlock):
        return [_map_heading(block)]
    if isinstance(block, ParagraphBlock):
        return [_map_paragraph(block.content)]
    if isinstance(block, BulletListBlock):
        return [{"type": "bulletList", "content": [_list_item(i) for i in block.items]}]
    if isinstance(block, OrderedListBlock):
        return [{
            "type": "orderedList",
            "attrs": {"start": 1},
            "content": [_list_item(i) for i in block.items],
        }]
    if isinstance(block, TaskListBlock):
        return [_map_task_list(block)]
    if isinstance(block, BlockquoteBlock):
        return [{"type": "blockquote", "content": [_paragraph(block.content)]}]
    if isinstance(block, CalloutBlock):
        return [_map_callout(block)]
    if isinstance(block, DividerBlock):
        return [{"type": "horizontalRule"}]
    if isinstance(block, CodeBlock):
        return [_map_code_block(block)]
    if isinstance(block, TableBlock):
        return [_map_table(block)]
    return [_map_database(database_id)]


# ── Block mappers ────────────────────────────────────────────


def _map_heading(block: HeadingBlock) -> DocNode:
    level = block.level if block.level in _VALID_HEADING_LEVELS else DEFAULT_HEADING_LEVEL
    return {
        "type": "heading",
        "attrs": {"level": level},
        "content": parse_inline_content(block.content),
    }


def _map_paragraph(text: str) -> DocNode:
    node: DocNode = {"type": "paragraph"}
    inline = parse_inline_content(text)
    if inline:
        node["content"] = inline
    return node


def _paragraph(text: str) -> DocNode:
    return {"type": "paragraph", "content": parse_inline_content(text)}


def _list_item(text: str) -> DocNode:
    return {"type": "listItem", "content": [_paragraph(text)]}


def _map_task_list(block: TaskListBlock) -> DocNode:
    return {
        "type": "taskList",
        "content": [
            {
                "type": "taskItem",
                "attrs": {"checked": task.checked},
                "content": [_paragraph(task.text)],
            }
            for task in block.tasks
        ],
    }


def _map_callout(block: CalloutBlock) -> DocNode:
    # No native callout node: a blockquote led by the emoji.
    emoji = block.emoji or DEFAULT_CALLOUT_EMOJI
    return {
        "type": "blockquote",
        "content": [{
            "type": "paragraph",
            "content": [{"type": "text", "text": f"{emoji} "}]
            + parse_inline_content(block.content),
        }],
    }


def _map_code_block(block: CodeBlock) -> DocNode:
    node: DocNode = {"type": "codeBlock", "attrs": {"language": block.language or None}}
    if block.content:
        node["content"] = [{"type": "text", "text": block.content}]
    return node


def _table_cell(cell_type: str, content: list[DocNode]) -> DocNode:
    paragraph: DocNode = {"type": "paragraph"}
    if content:
        paragraph["content"] = content
    return {
        "type": cell_type,
        "attrs": {"colspan": 1, "rowspan": 1},
        "content": [paragraph],
    }


def _map_table(block: TableBlock) -> DocNode:
    if block.table is None:
        return {"type": "paragraph"}

    header_row = {
        "type": "tableRow",
        "content": [
            _table_cell("tableHeader", [{"type": "text", "text": h}] if h else [])
            for h in block.table.headers
        ],
    }
    body_rows = [
        {
            "type": "tableRow",
            "content": [_table_cell("tableCell", parse_inline_content(cell)) for cell in row],
        }
        for row in block.table.rows
    ]
    return {"type": "table", "content": [header_row, *body_rows]}


def _map_database(database_id: str | None) -> DocNode:
    return {
        "type": "databaseViewBlock",
        "attrs": {
            "databaseId": database_id or None,
            "viewType": "table",
            "filters": [],
            "sortBy": None,
            "groupBy": None,
            "hiddenColumns": [],
        },
    }


# ── Inline tokenizer ─────────────────────────────────────────


@dataclass(frozen=True)
class TextRun:
    """A span of inline text and the formatting applied to it."""

    text: str
    bold: bool = False
    italic: bool = False
    code: bool = False
    citation: int | None = None


def _closing(text: str, marker: str, start: int) -> int:
    """Index of the marker closing a span opened just before ``start``.

    Returns -1 when there is none or the span would be empty.
    """
    end = text.find(marker, start)
    return end if end > start else -1


def tokenize_inline(text: str) -> list[TextRun]:
    """Split inline markdown into formatted runs in one left-to-right scan.

    Precedence at each position: bold, italic, code, citation.  Markup
    without a matching close is kept as literal text.
    """
    runs: list[TextRun] = []
    plain: list[str] = []

    def push(run: TextRun) -> None:
        if plain:
            runs.append(TextRun("".join(plain)))
            plain.clear()
        runs.append(run)

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "*":
            if text.startswith("**", i):
                end = _closing(text, "**", i + 2)
                if end != -1:
                    push(TextRun(text[i + 2:end], bold=True))
                    i = end + 2
                    continue
            end = _closing(text, "*", i + 1)
            if end != -1:
                push(TextRun(text[i + 1:end], italic=True))
                i = end + 1
                continue
        elif ch == "`":
            end = _closing(text, "`", i + 1)
            if end != -1:
                push(TextRun(text[i + 1:end], code=True))
                i = end + 1
                continue
        elif ch == "[":
            end = _closing(text, "]", i + 1)
            digits = text[i + 1:end] if end != -1 else ""
            if digits.isascii() and digits.isdigit() and int(digits) > 0:
                number = int(digits)
                push(TextRun(str(number), citation=number))
                i = end + 1
                continue
        plain.append(ch)
        i += 1

    if plain:
        runs.append(TextRun("".join(plain)))
    return runs


def _run_to_node(run: TextRun) -> DocNode:
    marks: list[DocNode] = []
    if run.bold:
        marks.append({"type": "bold"})
    if run.italic:
        marks.append({"type": "italic"})
    if run.code:
        marks.append({"type": "code"})
    if run.citation is not None:
        marks.append({
            "type": "inlineCitation",
            "attrs": {
                "citationIndex": run.citation,
                "factId": None,
                "documentId": None,
                "chunkId": None,
                "sourceText": "",
            },
        })

    node: DocNode = {"type": "text", "text": run.text}
    if marks:
        node["marks"] = marks
    return node


def parse_inline_content(text: str) -> list[DocNode]:
    """Parse inline-formatted text into document text nodes."""
    if not text:
        return []
    return [_run_to_node(run) for run in tokenize_inline(text)]
