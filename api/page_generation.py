"""Page generation API — start / poll / cancel / result.

Polling-based delivery: ``start`` returns a generation id immediately and
the client polls ``progress`` for events accumulated since its last poll
until ``isComplete`` is true.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from errors.exceptions import GenerationCapacityError
from models.request import (
    CancelResponse,
    GenerationResult,
    PageGenerationRequest,
    PollResponse,
    StartGenerationResponse,
)
from services.generation_service import PageGenerationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/page-generation", tags=["page-generation"])

RETRY_AFTER_SECONDS = 5


def get_generation_service(request: Request) -> PageGenerationService:
    """The service instance built by the app lifespan."""
    service = getattr(request.app.state, "generation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Generation service not initialized")
    return service


@router.post("/start", response_model=StartGenerationResponse)
async def start_generation(
    req: PageGenerationRequest,
    service: PageGenerationService = Depends(get_generation_service),
):
    """Start an async page generation and return its id."""
    try:
        generation_id = await service.start(req)
    except GenerationCapacityError as e:
        logger.warning("Rejecting generation for page %s: %s", req.page_id, e)
        raise HTTPException(
            status_code=503,
            detail=str(e),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    return StartGenerationResponse(generation_id=generation_id)


@router.get(
    "/{generation_id}/progress",
    response_model=PollResponse,
    response_model_exclude_none=True,
)
async def generation_progress(
    generation_id: str,
    service: PageGenerationService = Depends(get_generation_service),
):
    """Events since the last poll.  Unknown ids yield a terminal error event."""
    return service.poll(generation_id)


@router.post(
    "/{generation_id}/cancel",
    response_model=CancelResponse,
    response_model_exclude_none=True,
)
async def cancel_generation(
    generation_id: str,
    service: PageGenerationService = Depends(get_generation_service),
):
    return service.cancel(generation_id)


@router.get(
    "/{generation_id}/result",
    response_model=GenerationResult,
    response_model_exclude_none=True,
)
async def generation_result(
    generation_id: str,
    service: PageGenerationService = Depends(get_generation_service),
):
    """Blocks generated so far plus their mapped document."""
    result = service.result(generation_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Generation {generation_id} not found")
    return result
