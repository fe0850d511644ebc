"""Database materialization — turns a generated database spec into a real entity.

When the model emits a ``database`` block, the orchestrator asks a
:class:`DatabaseCreator` to persist it.  The creator builds the column
schema (stable column ids, default widths per type), re-keys each entry
from column *names* to column *ids*, and returns the new entity id that
the block mapper injects into the ``databaseViewBlock`` node.

Backends:
- :class:`InMemoryDatabaseStore` — process-local, for development and tests.
- :class:`HttpDatabaseCreator` — POSTs to the application backend over
  ``httpx`` with retry and exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from config.settings import Settings, get_settings
from errors.exceptions import DatabaseCreationError
from models.blocks import ColumnType, DatabaseSpec

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.5  # seconds, doubles each attempt

DATABASE_PAGE_ICON = "📊"
DEFAULT_COLUMN_WIDTH = 150

_COLUMN_WIDTHS: dict[ColumnType, int] = {
    ColumnType.TEXT: 200,
    ColumnType.NUMBER: 120,
    ColumnType.SELECT: 140,
    ColumnType.STATUS: 140,
    ColumnType.DATE: 140,
    ColumnType.CHECKBOX: 80,
    ColumnType.URL: 200,
    ColumnType.MULTI_SELECT: 180,
}


def default_column_width(column_type: ColumnType) -> int:
    return _COLUMN_WIDTHS.get(column_type, DEFAULT_COLUMN_WIDTH)


def build_schema(spec: DatabaseSpec) -> list[dict[str, Any]]:
    """Column schema with fresh ids and default widths."""
    columns = []
    for col in spec.columns:
        column: dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "name": col.name,
            "type": col.type.value,
            "width": default_column_width(col.type),
        }
        if col.options:
            column["options"] = list(col.options)
        columns.append(column)
    return columns


def map_entry_properties(
    entry: dict[str, Any], columns: list[dict[str, Any]]
) -> dict[str, Any]:
    """Re-key an entry from column names to column ids; unknown keys are dropped."""
    name_to_id = {col["name"]: col["id"] for col in columns}
    return {name_to_id[key]: value for key, value in entry.items() if key in name_to_id}


@dataclass
class CreatedDatabase:
    database_id: str
    page_id: str
    entry_count: int


@dataclass
class StoredDatabase:
    """A database as held by :class:`InMemoryDatabaseStore`."""

    id: str
    page_id: str
    parent_page_id: str
    name: str
    description: str
    columns: list[dict[str, Any]]
    entries: list[dict[str, Any]]
    deal_id: str | None
    organization_id: str
    created_by: str
    order: int
    created_at: float = field(default_factory=time.time)


# ── Abstract Interface ───────────────────────────────────────


class DatabaseCreator(ABC):
    """Persists generated databases.  Implement for different backends."""

    @abstractmethod
    async def create_database(
        self,
        spec: DatabaseSpec,
        *,
        page_id: str,
        deal_id: str | None,
        organization_id: str,
        user_id: str,
        order: int,
    ) -> CreatedDatabase:
        """Create the entity for ``spec`` under ``page_id``.

        Raises:
            DatabaseCreationError: the backend rejected or could not be reached.
        """
        ...

    async def start(self) -> None:
        """Acquire connections.  No-op by default."""

    async def close(self) -> None:
        """Release connections.  No-op by default."""


# ── In-Memory Implementation ────────────────────────────────


class InMemoryDatabaseStore(DatabaseCreator):
    """Process-local store.  Entries are re-keyed by column id like the backend does."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._databases: dict[str, StoredDatabase] = {}

    async def create_database(
        self,
        spec: DatabaseSpec,
        *,
        page_id: str,
        deal_id: str | None,
        organization_id: str,
        user_id: str,
        order: int,
    ) -> CreatedDatabase:
        if not spec.name.strip():
            raise DatabaseCreationError(spec.name, "database name is empty")

        columns = build_schema(spec)
        stored = StoredDatabase(
            id=f"db-{uuid.uuid4().hex[:12]}",
            page_id=f"page-{uuid.uuid4().hex[:12]}",
            parent_page_id=page_id,
            name=spec.name,
            description=f"AI-generated database: {spec.name}",
            columns=columns,
            entries=[map_entry_properties(entry, columns) for entry in spec.entries],
            deal_id=deal_id,
            organization_id=organization_id,
            created_by=user_id,
            order=order,
        )
        with self._lock:
            self._databases[stored.id] = stored

        logger.info(
            "Created database %s (%r, %d columns, %d entries)",
            stored.id, spec.name, len(columns), len(stored.entries),
        )
        return CreatedDatabase(
            database_id=stored.id,
            page_id=stored.page_id,
            entry_count=len(stored.entries),
        )

    def get(self, database_id: str) -> StoredDatabase | None:
        with self._lock:
            return self._databases.get(database_id)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._databases)


# ── HTTP Implementation ──────────────────────────────────────


class HttpDatabaseCreator(DatabaseCreator):
    """Creates databases through the application backend's internal API.

    ``POST {base_url}{prefix}/databases`` with the schema already built,
    so column ids are stable between the view block and the stored entries.
    Network errors and 5xx responses are retried with exponential backoff;
    4xx responses fail immediately.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._base_url = (
            f"{settings.database_api_base_url.rstrip('/')}{settings.database_api_prefix}"
        )
        self._timeout = settings.database_api_timeout
        self._token = settings.database_api_token
        self._http: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._http is not None:
            return
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        logger.info("HttpDatabaseCreator started — base_url=%s", self._base_url)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("HttpDatabaseCreator closed")

    # -- public API ----------------------------------------------------------

    async def create_database(
        self,
        spec: DatabaseSpec,
        *,
        page_id: str,
        deal_id: str | None,
        organization_id: str,
        user_id: str,
        order: int,
    ) -> CreatedDatabase:
        columns = build_schema(spec)
        body = {
            "parentPageId": page_id,
            "dealId": deal_id,
            "organizationId": organization_id,
            "userId": user_id,
            "order": order,
            "name": spec.name,
            "description": f"AI-generated database: {spec.name}",
            "icon": DATABASE_PAGE_ICON,
            "schema": {"columns": columns},
            "entries": [map_entry_properties(entry, columns) for entry in spec.entries],
        }
        payload = await self._post_with_retry("/databases", body, spec.name)
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        database_id = data.get("databaseId") or data.get("id")
        if not database_id:
            raise DatabaseCreationError(spec.name, "response missing databaseId")
        return CreatedDatabase(
            database_id=str(database_id),
            page_id=str(data.get("pageId", "")),
            entry_count=int(data.get("entryCount", len(spec.entries))),
        )

    # -- retry logic ---------------------------------------------------------

    async def _post_with_retry(self, path: str, body: dict[str, Any], name: str) -> Any:
        client = self._ensure_started()
        last_exc: DatabaseCreationError | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.monotonic()
            try:
                response = await client.post(path, json=body)
            except httpx.TransportError as exc:
                elapsed_ms = (time.monotonic() - t0) * 1000
                logger.warning(
                    "POST %s → network error (%.0fms): %s [attempt %d/%d]",
                    path, elapsed_ms, exc, attempt, MAX_RETRIES,
                )
                last_exc = DatabaseCreationError(name, f"network error: {exc}")
            else:
                elapsed_ms = (time.monotonic() - t0) * 1000
                logger.info(
                    "POST %s → %d (%.0fms)", path, response.status_code, elapsed_ms
                )
                detail = response.text[:300] if response.text else f"HTTP {response.status_code}"
                if 400 <= response.status_code < 500:
                    raise DatabaseCreationError(name, detail, response.status_code)
                if response.status_code < 400:
                    return response.json() if response.text else {}
                last_exc = DatabaseCreationError(name, detail, response.status_code)

            if attempt < MAX_RETRIES:
                delay = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("HttpDatabaseCreator not started — call await creator.start() first")
        return self._http


def create_database_creator(settings: Settings | None = None) -> DatabaseCreator:
    """Build the creator selected by ``DATABASE_STORE_TYPE``."""
    settings = settings or get_settings()
    if settings.database_store_type == "http":
        logger.info("Using HttpDatabaseCreator")
        return HttpDatabaseCreator(settings)
    logger.info("Using InMemoryDatabaseStore")
    return InMemoryDatabaseStore()
