"""Page generation event protocol.

Events produced by the streaming parser, the generation agent and the
orchestrator, delivered to clients through polling.

Consumers render progressively:

- ``block_start``:   insert an empty placeholder for ``blockIndex``.
- ``content_delta``: append text to that placeholder.
- ``block_end``:     replace the placeholder with the fully typed block.
- ``block``:         insert a finished block directly (no placeholder).
- ``database_created``: resolve the entity backing ``blockIndex``.
- ``complete`` / fatal ``error``: terminal, nothing follows.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field

from models.base import CamelModel
from models.blocks import GeneratedBlock
from models.errors import ErrorCode


class OutlineSectionSummary(CamelModel):
    title: str
    block_types: list[str] = Field(default_factory=list)


class OutlineEvent(CamelModel):
    """Outline generated — the client can show skeleton UI."""

    type: Literal["outline"] = "outline"
    title: str = ""
    sections: list[OutlineSectionSummary] = Field(default_factory=list)


class SectionStartEvent(CamelModel):
    type: Literal["section_start"] = "section_start"
    index: int
    title: str


class SectionCompleteEvent(CamelModel):
    type: Literal["section_complete"] = "section_complete"
    index: int


class BlockStartEvent(CamelModel):
    """A streamed block has begun; ``attrs`` holds attributes known so far."""

    type: Literal["block_start"] = "block_start"
    block_index: int
    section_index: int = 0
    block_type: str
    attrs: dict[str, Any] | None = None


class ContentDeltaEvent(CamelModel):
    type: Literal["content_delta"] = "content_delta"
    block_index: int
    text: str


class BlockEndEvent(CamelModel):
    """A streamed block is finished; ``block`` is the parsed object."""

    type: Literal["block_end"] = "block_end"
    block_index: int
    section_index: int = 0
    block: GeneratedBlock


class BlockEvent(CamelModel):
    """A block delivered whole, without a streaming phase."""

    type: Literal["block"] = "block"
    block_index: int
    section_index: int = 0
    block: GeneratedBlock


class DatabaseCreatedEvent(CamelModel):
    type: Literal["database_created"] = "database_created"
    database_id: str
    name: str
    block_index: int


class GenerationMetadata(CamelModel):
    tokens_used: int = 0
    sections_generated: int = 0
    databases_created: int = 0
    processing_time_ms: int = 0


class CompleteEvent(CamelModel):
    type: Literal["complete"] = "complete"
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)


class ErrorEvent(CamelModel):
    """Generation error.

    ``fatal`` errors end the session.  Non-fatal errors are scoped to
    ``block_index`` and the run continues.
    """

    type: Literal["error"] = "error"
    message: str
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    block_index: int | None = None
    fatal: bool = True


StreamEvent = Annotated[
    Union[
        OutlineEvent,
        SectionStartEvent,
        SectionCompleteEvent,
        BlockStartEvent,
        ContentDeltaEvent,
        BlockEndEvent,
        BlockEvent,
        DatabaseCreatedEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]


def is_terminal(event: StreamEvent) -> bool:
    """True for events after which a session produces nothing more."""
    if isinstance(event, CompleteEvent):
        return True
    return isinstance(event, ErrorEvent) and event.fatal
