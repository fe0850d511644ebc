"""Page generation orchestrator — session registry + background producers.

Each ``start`` creates a :class:`GenerationSession` and launches one
producer task that drains the generation source into the session's
:class:`EventLog`.  Clients pull with ``poll``; each poll returns exactly
the events appended since the previous one.

Side effects:
- ``database`` blocks are materialized through a :class:`DatabaseCreator`
  before the block event is appended, so ``database_created`` for an index
  always precedes the block it resolves.  A failed creation becomes a
  non-fatal error scoped to that block.

Cancellation is cooperative: ``cancel`` closes the log with a cancellation
error, and the producer stops at its next step.  A database creation
already in flight is allowed to finish.

The registry is an explicit object built once in the app lifespan and
torn down with :meth:`PageGenerationService.close`.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from errors.exceptions import GenerationCapacityError
from models.blocks import ENTITY_BACKED_TYPES, DatabaseSpec, GeneratedBlock
from models.errors import (
    ErrorCode,
    classify_generation_error,
    format_database_error,
    format_error,
)
from models.events import (
    BlockEndEvent,
    BlockEvent,
    CompleteEvent,
    DatabaseCreatedEvent,
    ErrorEvent,
    GenerationMetadata,
    SectionCompleteEvent,
    StreamEvent,
    is_terminal,
)
from models.request import CancelResponse, GenerationResult, PageGenerationRequest, PollResponse
from services.block_mapper import map_blocks_to_document
from services.database_store import DatabaseCreator
from services.event_log import EventLog

logger = logging.getLogger(__name__)

GenerationSource = Callable[[PageGenerationRequest], AsyncIterator[StreamEvent]]

DEFAULT_RETENTION_SECONDS = 600
DEFAULT_MAX_ACTIVE = 20


def generate_generation_id() -> str:
    return f"gen-{uuid.uuid4().hex[:12]}"


def _not_found(generation_id: str) -> ErrorEvent:
    return ErrorEvent(
        message=format_error(
            ErrorCode.GENERATION_NOT_FOUND, f"Generation {generation_id} not found"
        ),
        code=ErrorCode.GENERATION_NOT_FOUND,
    )


@dataclass
class GenerationSession:
    """State of one generation run.  ``log.closed`` is the completion flag."""

    id: str
    request: PageGenerationRequest
    log: EventLog[StreamEvent] = field(default_factory=EventLog)
    blocks: dict[int, GeneratedBlock] = field(default_factory=dict)
    database_id_map: dict[int, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.monotonic)
    task: asyncio.Task | None = None
    materialized: set[int] = field(default_factory=set)

    @property
    def is_complete(self) -> bool:
        return self.log.closed

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()


class PageGenerationService:
    """Registry of generation sessions.

    Args:
        source: Called once per session; yields the run's events.
        database_creator: Persists ``database`` blocks.
        retention_seconds: Age after which complete sessions are swept.
        max_active: Running producers allowed at once; further starts are refused.
    """

    def __init__(
        self,
        source: GenerationSource,
        database_creator: DatabaseCreator,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        max_active: int = DEFAULT_MAX_ACTIVE,
    ) -> None:
        self._source = source
        self._database_creator = database_creator
        self._retention = retention_seconds
        self._max_active = max_active
        self._sessions: dict[str, GenerationSession] = {}

    # ── Public API ───────────────────────────────────────────

    async def start(self, request: PageGenerationRequest) -> str:
        """Register a session, launch its producer and return the generation id.

        Raises:
            GenerationCapacityError: ``max_active`` producers are already running.
        """
        if self.active_count >= self._max_active:
            raise GenerationCapacityError(self._max_active)

        session = GenerationSession(id=generate_generation_id(), request=request)
        self._sessions[session.id] = session
        session.task = asyncio.create_task(
            self._run(session), name=f"page-generation-{session.id}"
        )
        logger.info("Generation %s started for page %s", session.id, request.page_id)

        self.cleanup_stale()
        return session.id

    def poll(self, generation_id: str) -> PollResponse:
        """Events since the previous poll, the completion flag and the entity map."""
        session = self._sessions.get(generation_id)
        if session is None:
            return PollResponse(events=[_not_found(generation_id)], is_complete=True)

        events, closed = session.log.read_new()
        return PollResponse(
            events=events,
            is_complete=closed,
            database_id_map=dict(session.database_id_map),
        )

    def cancel(self, generation_id: str) -> CancelResponse:
        """Mark a session complete and append one cancellation error.

        Unknown ids and already-complete sessions report ``success=False``;
        nothing is appended to a complete session.
        """
        session = self._sessions.get(generation_id)
        if session is None:
            return CancelResponse(success=False, error=_not_found(generation_id))

        cancelled = session.log.close(
            ErrorEvent(
                message=format_error(
                    ErrorCode.GENERATION_CANCELLED, "Generation cancelled by user"
                ),
                code=ErrorCode.GENERATION_CANCELLED,
            )
        )
        if cancelled:
            logger.info("Generation %s cancelled", generation_id)
        return CancelResponse(success=cancelled)

    def result(self, generation_id: str) -> GenerationResult | None:
        """Finished blocks in index order plus the mapped document, or None if unknown."""
        session = self._sessions.get(generation_id)
        if session is None:
            return None

        indices = sorted(session.blocks)
        blocks = [session.blocks[i] for i in indices]
        positions = {
            pos: session.database_id_map[i]
            for pos, i in enumerate(indices)
            if i in session.database_id_map
        }
        return GenerationResult(
            blocks=blocks,
            database_ids=[session.database_id_map[i] for i in sorted(session.database_id_map)],
            document=map_blocks_to_document(blocks, positions),
            is_complete=session.is_complete,
        )

    def cleanup_stale(self, now: float | None = None) -> int:
        """Remove complete sessions older than the retention window.  Returns count removed."""
        now = time.monotonic() if now is None else now
        expired = [
            sid for sid, s in self._sessions.items()
            if s.is_complete and (now - s.created_at) > self._retention
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Cleaned up %d stale generation sessions", len(expired))
        return len(expired)

    async def close(self) -> None:
        """Cancel outstanding producers and wait for them to exit."""
        tasks = [s.task for s in self._sessions.values() if s.is_running]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Stopped %d running generations", len(tasks))

    def get_session(self, generation_id: str) -> GenerationSession | None:
        return self._sessions.get(generation_id)

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.is_running)

    @property
    def size(self) -> int:
        return len(self._sessions)

    # ── Producer ─────────────────────────────────────────────

    async def _run(self, session: GenerationSession) -> None:
        t0 = time.monotonic()
        log = session.log
        databases_created = 0
        sections_completed = 0
        stream: AsyncIterator[StreamEvent] | None = None

        try:
            stream = self._source(session.request)
            async for event in stream:
                if log.closed:
                    logger.info("Generation %s: producer stopping after cancel", session.id)
                    break

                if isinstance(event, DatabaseCreatedEvent):
                    # Entity ids come from materialization below, not from the source.
                    continue

                if isinstance(event, (BlockEvent, BlockEndEvent)):
                    session.blocks[event.block_index] = event.block
                    block = event.block
                    spec = getattr(block, "database", None)
                    if block.type in ENTITY_BACKED_TYPES and spec is not None:
                        if await self._materialize(session, event.block_index, spec):
                            databases_created += 1
                elif isinstance(event, SectionCompleteEvent):
                    sections_completed += 1

                if is_terminal(event):
                    if isinstance(event, CompleteEvent):
                        event = CompleteEvent(metadata=event.metadata.model_copy(update={
                            "databases_created": databases_created,
                            "processing_time_ms": int((time.monotonic() - t0) * 1000),
                        }))
                    log.close(event)
                    break
                log.append(event)
            else:
                if log.close(CompleteEvent(metadata=GenerationMetadata(
                    sections_generated=sections_completed,
                    databases_created=databases_created,
                    processing_time_ms=int((time.monotonic() - t0) * 1000),
                ))):
                    logger.warning(
                        "Generation %s: source ended without completing", session.id
                    )
        except asyncio.CancelledError:
            log.close(ErrorEvent(
                message=format_error(
                    ErrorCode.GENERATION_CANCELLED, "Generation stopped during shutdown"
                ),
                code=ErrorCode.GENERATION_CANCELLED,
            ))
            raise
        except Exception as exc:
            logger.exception("Generation %s failed", session.id)
            detail = str(exc) or type(exc).__name__
            code = classify_generation_error(detail)
            log.close(ErrorEvent(message=format_error(code, detail), code=code))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        logger.info(
            "Generation %s finished in %.0fms (%d databases)",
            session.id, (time.monotonic() - t0) * 1000, databases_created,
        )

    async def _materialize(
        self, session: GenerationSession, block_index: int, spec: DatabaseSpec
    ) -> bool:
        """Create the entity behind a database block, once per index."""
        if block_index in session.materialized:
            return False
        session.materialized.add(block_index)

        request = session.request
        try:
            created = await self._database_creator.create_database(
                spec,
                page_id=request.page_id,
                deal_id=request.deal_id,
                organization_id=request.organization_id,
                user_id=request.user_id,
                order=block_index,
            )
        except Exception as exc:
            logger.warning(
                "Generation %s: database %r at block %d failed: %s",
                session.id, spec.name, block_index, exc,
            )
            session.log.append(ErrorEvent(
                message=format_database_error(spec.name, str(exc)),
                code=ErrorCode.DATABASE_CREATION_FAILED,
                block_index=block_index,
                fatal=False,
            ))
            return False

        session.database_id_map[block_index] = created.database_id
        session.log.append(DatabaseCreatedEvent(
            database_id=created.database_id,
            name=spec.name,
            block_index=block_index,
        ))
        return True


async def periodic_cleanup(service: PageGenerationService, interval_seconds: float = 60) -> None:
    """Background task that sweeps stale sessions.

    Should be started as an ``asyncio.Task`` in the FastAPI lifespan.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            service.cleanup_stale()
        except Exception:
            logger.exception("Generation session cleanup failed")
