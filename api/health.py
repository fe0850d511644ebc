"""Health check endpoint."""

from fastapi import APIRouter, Request

from config.settings import get_settings

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(request: Request):
    service = getattr(request.app.state, "generation_service", None)
    return {
        "status": "healthy",
        "defaultModel": get_settings().default_model,
        "activeGenerations": service.active_count if service is not None else 0,
    }
