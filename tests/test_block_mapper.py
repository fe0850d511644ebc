"""Tests for services/block_mapper.py — blocks → rich-text document nodes."""

import pytest
from pydantic import ValidationError

from models.blocks import (
    BulletListBlock,
    CalloutBlock,
    CodeBlock,
    ColumnSpec,
    DatabaseBlock,
    DatabaseSpec,
    DividerBlock,
    HeadingBlock,
    OrderedListBlock,
    ParagraphBlock,
    TableBlock,
    TableData,
    TaskItem,
    TaskListBlock,
)
from services.block_mapper import (
    DEFAULT_CALLOUT_EMOJI,
    TextRun,
    map_blocks_to_document,
    map_single_block,
    parse_inline_content,
    tokenize_inline,
)


# ── Inline tokenizer ─────────────────────────────────────────


class TestTokenizeInline:
    def test_four_formats_in_one_line(self):
        runs = tokenize_inline("**a** *b* `c` [3]")
        formatted = [r for r in runs if r.bold or r.italic or r.code or r.citation]
        assert formatted == [
            TextRun("a", bold=True),
            TextRun("b", italic=True),
            TextRun("c", code=True),
            TextRun("3", citation=3),
        ]
        for run in runs:
            assert not set(run.text) & set("*`[]")

    def test_plain_text_is_one_run(self):
        assert tokenize_inline("no markup here") == [TextRun("no markup here")]

    def test_unmatched_markup_is_literal(self):
        assert tokenize_inline("2 * 3") == [TextRun("2 * 3")]
        assert tokenize_inline("**open") == [TextRun("**open")]
        assert tokenize_inline("`tick") == [TextRun("`tick")]

    def test_zero_and_non_numeric_brackets_are_not_citations(self):
        runs = tokenize_inline("[0] [abc] [12]")
        citations = [r.citation for r in runs if r.citation is not None]
        assert citations == [12]
        assert "".join(r.text for r in runs) == "[0] [abc] 12"

    def test_bold_wins_over_italic(self):
        runs = tokenize_inline("**x**")
        assert runs == [TextRun("x", bold=True)]

    def test_empty_spans_stay_literal(self):
        assert tokenize_inline("****") == [TextRun("****")]
        assert tokenize_inline("``") == [TextRun("``")]


class TestParseInlineContent:
    def test_empty_text_has_no_nodes(self):
        assert parse_inline_content("") == []

    def test_citation_mark(self):
        nodes = parse_inline_content("Revenue grew [2]")
        assert nodes[0] == {"type": "text", "text": "Revenue grew "}
        citation = nodes[1]
        assert citation["text"] == "2"
        assert citation["marks"][0]["type"] == "inlineCitation"
        assert citation["marks"][0]["attrs"]["citationIndex"] == 2

    def test_bold_mark(self):
        assert parse_inline_content("**key**") == [
            {"type": "text", "text": "key", "marks": [{"type": "bold"}]}
        ]


# ── Single blocks ────────────────────────────────────────────


class TestMapSingleBlock:
    def test_heading_level_defaults_to_two(self):
        node = map_single_block(HeadingBlock(content="Intro"))[0]
        assert node["attrs"] == {"level": 2}

    @pytest.mark.parametrize("level", [0, 4, 7])
    def test_out_of_range_heading_level_defaults_to_two(self, level):
        node = map_single_block(HeadingBlock(level=level, content="x"))[0]
        assert node["attrs"]["level"] == 2

    def test_heading_keeps_valid_level(self):
        node = map_single_block(HeadingBlock(level=1, content="Title"))[0]
        assert node["attrs"]["level"] == 1
        assert node["content"] == [{"type": "text", "text": "Title"}]

    def test_empty_paragraph_has_no_content(self):
        assert map_single_block(ParagraphBlock()) == [{"type": "paragraph"}]

    def test_bullet_and_ordered_lists_expand_per_item(self):
        bullet = map_single_block(BulletListBlock(items=["a", "b"]))[0]
        assert bullet["type"] == "bulletList"
        assert len(bullet["content"]) == 2
        assert bullet["content"][0]["type"] == "listItem"

        ordered = map_single_block(OrderedListBlock(items=["one"]))[0]
        assert ordered["type"] == "orderedList"
        assert ordered["attrs"] == {"start": 1}

    def test_task_items_carry_checked(self):
        node = map_single_block(TaskListBlock(tasks=[
            TaskItem(text="Sign NDA", checked=True),
            TaskItem(text="Review"),
        ]))[0]
        assert [item["attrs"]["checked"] for item in node["content"]] == [True, False]

    def test_callout_becomes_blockquote_with_emoji(self):
        node = map_single_block(CalloutBlock(content="Watch out", emoji="⚠️"))[0]
        assert node["type"] == "blockquote"
        para = node["content"][0]
        assert para["content"][0] == {"type": "text", "text": "⚠️ "}
        assert para["content"][1]["text"] == "Watch out"

    def test_callout_default_emoji(self):
        node = map_single_block(CalloutBlock(content="FYI"))[0]
        assert node["content"][0]["content"][0]["text"] == f"{DEFAULT_CALLOUT_EMOJI} "

    def test_code_block_keeps_raw_text(self):
        node = map_single_block(CodeBlock(content="x = **y**", language="python"))[0]
        assert node["attrs"] == {"language": "python"}
        assert node["content"] == [{"type": "text", "text": "x = **y**"}]

    def test_divider(self):
        assert map_single_block(DividerBlock()) == [{"type": "horizontalRule"}]

    def test_table_header_and_rows(self):
        node = map_single_block(TableBlock(table=TableData(
            headers=["Metric", "FY24"],
            rows=[["Revenue", "$10M"], ["EBITDA", "$2M"]],
        )))[0]
        assert node["type"] == "table"
        rows = node["content"]
        assert len(rows) == 3
        assert [c["type"] for c in rows[0]["content"]] == ["tableHeader", "tableHeader"]
        assert [c["type"] for c in rows[1]["content"]] == ["tableCell", "tableCell"]
        assert rows[1]["content"][0]["attrs"] == {"colspan": 1, "rowspan": 1}

    def test_missing_table_is_empty_paragraph(self):
        assert map_single_block(TableBlock()) == [{"type": "paragraph"}]

    def test_database_with_and_without_id(self):
        block = DatabaseBlock(database=DatabaseSpec(name="Risks", columns=[ColumnSpec(name="Risk")]))
        with_id = map_single_block(block, "db-123")[0]
        assert with_id["type"] == "databaseViewBlock"
        assert with_id["attrs"]["databaseId"] == "db-123"

        without_id = map_single_block(block)[0]
        assert without_id["attrs"]["databaseId"] is None

    def test_accepts_decoded_json(self):
        node = map_single_block({"type": "heading", "level": 3, "content": "Risks"})[0]
        assert node["attrs"]["level"] == 3

    def test_rejects_unknown_json_type(self):
        with pytest.raises(ValidationError):
            map_single_block({"type": "hologram"})

    def test_repeated_calls_are_equal_and_independent(self):
        block = ParagraphBlock(content="**Bold** claim [1]")
        first = map_single_block(block)
        second = map_single_block(block)
        assert first == second
        first[0]["content"].clear()
        assert map_single_block(block) == second


# ── Document ─────────────────────────────────────────────────


def test_document_injects_database_ids_by_position():
    blocks = [
        HeadingBlock(level=2, content="Financials"),
        DatabaseBlock(database=DatabaseSpec(name="Metrics")),
        DatabaseBlock(database=DatabaseSpec(name="Risks")),
    ]
    doc = map_blocks_to_document(blocks, {1: "db-metrics"})
    assert doc["type"] == "doc"
    assert [n["type"] for n in doc["content"]] == ["heading", "databaseViewBlock", "databaseViewBlock"]
    assert doc["content"][1]["attrs"]["databaseId"] == "db-metrics"
    assert doc["content"][2]["attrs"]["databaseId"] is None


def test_empty_document():
    assert map_blocks_to_document([]) == {"type": "doc", "content": []}
