"""Generated block models — the LLM's simplified page output format.

The model emits a JSON array of these objects.  The streaming parser turns
that array into progress events, and the block mapper converts finished
blocks into rich-text document nodes.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from models.base import CamelModel


class BlockType(str, Enum):
    """Block types the LLM can produce."""

    HEADING = "heading"
    PARAGRAPH = "paragraph"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    TASK_LIST = "taskList"
    CALLOUT = "callout"
    BLOCKQUOTE = "blockquote"
    DIVIDER = "divider"
    CODE_BLOCK = "codeBlock"
    TABLE = "table"
    DATABASE = "database"


# Text blocks whose "content" string is streamed character by character.
STREAMABLE_TYPES = frozenset({
    BlockType.HEADING.value,
    BlockType.PARAGRAPH.value,
    BlockType.CALLOUT.value,
    BlockType.BLOCKQUOTE.value,
})

# Item-shaped blocks, parsed whole and then replayed as a synthetic stream.
LIST_TYPES = frozenset({
    BlockType.BULLET_LIST.value,
    BlockType.ORDERED_LIST.value,
    BlockType.TASK_LIST.value,
})

# Blocks that need a persistent entity created before they can render.
ENTITY_BACKED_TYPES = frozenset({BlockType.DATABASE.value})


class ColumnType(str, Enum):
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    SELECT = "SELECT"
    MULTI_SELECT = "MULTI_SELECT"
    DATE = "DATE"
    CHECKBOX = "CHECKBOX"
    URL = "URL"
    STATUS = "STATUS"


# ── Nested payloads ──────────────────────────────────────────


class TaskItem(CamelModel):
    text: str
    checked: bool = False


class TableData(CamelModel):
    headers: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)


class ColumnSpec(CamelModel):
    """One column of a generated database."""

    name: str
    type: ColumnType = ColumnType.TEXT
    options: list[str] | None = None


class DatabaseSpec(CamelModel):
    """Database the LLM asked for; materialized by the persistence layer."""

    name: str
    columns: list[ColumnSpec] = Field(default_factory=list)
    entries: list[dict[str, Any]] = Field(default_factory=list)


# ── Block variants ───────────────────────────────────────────


class _BlockBase(CamelModel):
    citations: list[int] | None = None  # RAG citation indices used in this block


class HeadingBlock(_BlockBase):
    type: Literal["heading"] = "heading"
    level: int | None = None
    content: str = ""


class ParagraphBlock(_BlockBase):
    type: Literal["paragraph"] = "paragraph"
    content: str = ""


class BulletListBlock(_BlockBase):
    type: Literal["bulletList"] = "bulletList"
    items: list[str] = Field(default_factory=list)


class OrderedListBlock(_BlockBase):
    type: Literal["orderedList"] = "orderedList"
    items: list[str] = Field(default_factory=list)


class TaskListBlock(_BlockBase):
    type: Literal["taskList"] = "taskList"
    tasks: list[TaskItem] = Field(default_factory=list)


class CalloutBlock(_BlockBase):
    type: Literal["callout"] = "callout"
    content: str = ""
    emoji: str | None = None


class BlockquoteBlock(_BlockBase):
    type: Literal["blockquote"] = "blockquote"
    content: str = ""


class DividerBlock(_BlockBase):
    type: Literal["divider"] = "divider"


class CodeBlock(_BlockBase):
    type: Literal["codeBlock"] = "codeBlock"
    content: str = ""
    language: str | None = None


class TableBlock(_BlockBase):
    type: Literal["table"] = "table"
    table: TableData | None = None


class DatabaseBlock(_BlockBase):
    type: Literal["database"] = "database"
    database: DatabaseSpec | None = None


GeneratedBlock = Annotated[
    Union[
        HeadingBlock,
        ParagraphBlock,
        BulletListBlock,
        OrderedListBlock,
        TaskListBlock,
        CalloutBlock,
        BlockquoteBlock,
        DividerBlock,
        CodeBlock,
        TableBlock,
        DatabaseBlock,
    ],
    Field(discriminator="type"),
]

_block_adapter: TypeAdapter[GeneratedBlock] = TypeAdapter(GeneratedBlock)


def parse_block(data: Any) -> GeneratedBlock:
    """Validate a decoded JSON object into a typed block.

    Raises ``pydantic.ValidationError`` for unknown types or bad fields.
    """
    return _block_adapter.validate_python(data)


# ── Outline (phase 1 of the two-phase strategy) ──────────────


class OutlineSection(CamelModel):
    title: str
    description: str = ""
    block_types: list[str] = Field(default_factory=list)


class PageOutline(CamelModel):
    title: str
    sections: list[OutlineSection] = Field(default_factory=list)


class GenerationTemplate(str, Enum):
    """Predefined generation templates for M&A workflows."""

    DD_REPORT = "dd-report"
    COMPETITOR_ANALYSIS = "competitor-analysis"
    MARKET_REPORT = "market-report"
    COMPANY_OVERVIEW = "company-overview"
    CUSTOM = "custom"
