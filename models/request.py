"""API request / response models."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from models.base import CamelModel
from models.blocks import GeneratedBlock, GenerationTemplate
from models.events import ErrorEvent, StreamEvent


class GenerationContext(CamelModel):
    """Optional RAG scope for a generation request."""

    deal_id: str | None = None
    company_id: str | None = None
    document_ids: list[str] = Field(default_factory=list)


class PageGenerationRequest(CamelModel):
    """POST /api/page-generation/start — request body."""

    prompt: str = Field(..., min_length=1, max_length=2000)
    template: GenerationTemplate | None = None
    page_id: str
    deal_id: str | None = None
    organization_id: str = ""
    user_id: str = ""
    context: GenerationContext | None = None


class StartGenerationResponse(CamelModel):
    """POST /api/page-generation/start — response body."""

    generation_id: str


class PollResponse(CamelModel):
    """GET /api/page-generation/{id}/progress — events since the last poll."""

    events: list[StreamEvent] = Field(default_factory=list)
    is_complete: bool = False
    database_id_map: dict[int, str] = Field(default_factory=dict)


class CancelResponse(CamelModel):
    """POST /api/page-generation/{id}/cancel — response body."""

    success: bool
    error: ErrorEvent | None = None


class GenerationResult(CamelModel):
    """GET /api/page-generation/{id}/result — finished blocks + document."""

    blocks: list[GeneratedBlock] = Field(default_factory=list)
    database_ids: list[str] = Field(default_factory=list)
    document: dict[str, Any] = Field(default_factory=dict)
    is_complete: bool = False
