"""FastAPI entry point for the structured page generation service."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agents.page_generator import PageGenerationAgent
from api.health import router as health_router
from api.page_generation import router as page_generation_router
from config.settings import get_settings
from services.context_provider import create_context_provider
from services.database_store import create_database_creator
from services.generation_service import PageGenerationService, periodic_cleanup

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle — build and tear down the generation registry."""
    creator = create_database_creator(settings)
    await creator.start()

    context_provider = create_context_provider(settings)
    await context_provider.start()

    agent = PageGenerationAgent(context_provider=context_provider)
    service = PageGenerationService(
        source=agent.generate_page,
        database_creator=creator,
        retention_seconds=settings.generation_retention_seconds,
        max_active=settings.max_active_generations,
    )
    app.state.generation_service = service
    cleanup_task = asyncio.create_task(
        periodic_cleanup(service, interval_seconds=settings.generation_cleanup_interval)
    )
    logger.info("Page generation service ready (max_active=%d)", settings.max_active_generations)

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    await service.close()
    await creator.close()
    await context_provider.close()
    app.state.generation_service = None


app = FastAPI(
    title="Structured Page Generation",
    description="Streams LLM-generated block pages to polling clients",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(page_generation_router)


if __name__ == "__main__":
    if settings.debug:
        # Development: single worker with reload
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            reload=True,
        )
    else:
        # Sessions live in process memory; polls must reach the worker that started them.
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            workers=1,
            timeout_keep_alive=120,
        )
