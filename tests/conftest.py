"""Shared pytest fixtures for page generation tests.

Provides:
- ``page_request``: a minimal valid PageGenerationRequest
- ``database_store``: fresh InMemoryDatabaseStore per test
- ``make_source``: builds a generation source replaying scripted events
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable

import pytest

from models.events import StreamEvent
from models.request import PageGenerationRequest
from services.database_store import InMemoryDatabaseStore


@pytest.fixture
def page_request() -> PageGenerationRequest:
    return PageGenerationRequest(
        prompt="Due diligence report on Acme Corp",
        page_id="page-test-001",
        deal_id="deal-test-001",
        organization_id="org-test-001",
        user_id="user-test-001",
    )


@pytest.fixture
def database_store() -> InMemoryDatabaseStore:
    """Fresh database store — isolated per test."""
    return InMemoryDatabaseStore()


@pytest.fixture
def make_source():
    """Factory for sources that replay ``events`` and optionally raise at the end.

    ``gate`` (an ``asyncio.Event``) pauses the source before its first event
    until the test sets it.
    """

    def factory(
        events: Iterable[StreamEvent],
        *,
        raise_exc: Exception | None = None,
        gate: asyncio.Event | None = None,
    ):
        scripted = list(events)

        async def source(request: PageGenerationRequest) -> AsyncIterator[StreamEvent]:
            if gate is not None:
                await gate.wait()
            for event in scripted:
                await asyncio.sleep(0)
                yield event
            if raise_exc is not None:
                raise raise_exc

        return source

    return factory
