"""Retrieval context for page generation.

Before the outline call the agent asks a :class:`ContextProvider` for the
material a request is scoped to: document chunks matching the prompt
(restricted to ``context.documentIds`` when given) and verified facts for
``context.companyId``.  The result is rendered twice:

- ``text``: numbered passages injected into section prompts, cited as
  ``[1]``, ``[2]`` ...
- ``summary``: a one-line description given to the outline prompt.

Backends:
- :class:`NullContextProvider` — no retrieval.
- :class:`HttpContextProvider` — chunk search and company facts from the
  application backend over ``httpx`` with retry and exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import Field, ValidationError

from config.settings import Settings, get_settings
from errors.exceptions import ContextRetrievalError
from models.base import CamelModel
from models.request import GenerationContext, PageGenerationRequest

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.5  # seconds, doubles each attempt

CONTEXT_SEPARATOR = "\n\n---\n\n"


# ── Models ───────────────────────────────────────────────────


class RetrievedChunk(CamelModel):
    """One document passage returned by the chunk search."""

    id: str = ""
    content: str
    score: float = 0.0
    document_id: str | None = None
    document_name: str | None = None
    page_number: int | None = None


class FactRecord(CamelModel):
    """A verified subject / predicate / object fact about a company."""

    id: str = ""
    subject: str
    predicate: str
    object: str
    confidence: float = 0.0
    source_text: str | None = None
    document_name: str | None = None


class ChunkSearchRequest(CamelModel):
    query: str
    organization_id: str
    deal_id: str | None = None
    document_ids: list[str] = Field(default_factory=list)
    top_k: int = 10
    min_score: float = 0.5


@dataclass
class RetrievedContext:
    """Context gathered for one request.

    ``text`` is the numbered context injected into section prompts;
    ``summary`` is the short description given to the outline prompt.
    """

    text: str = ""
    summary: str = ""


# ── Rendering ────────────────────────────────────────────────


def build_context_text(chunks: list[RetrievedChunk], facts: list[FactRecord]) -> str:
    """Number chunks then facts from ``[1]`` in one citation sequence."""
    entries: list[str] = []
    for chunk in chunks:
        source = chunk.document_name or "Unknown document"
        if chunk.page_number:
            source += f" (Page {chunk.page_number})"
        entries.append(f"{chunk.content}\nSource: {source}")
    for fact in facts:
        entries.append(
            f"{fact.subject} {fact.predicate} {fact.object}\n"
            f"Confidence: {fact.confidence * 100:.0f}%\n"
            f"Source: {fact.document_name or 'Unknown'}"
        )
    return CONTEXT_SEPARATOR.join(
        f"[{i}] {entry}" for i, entry in enumerate(entries, start=1)
    )


def summarize_context(chunks: list[RetrievedChunk], facts: list[FactRecord]) -> str:
    parts: list[str] = []
    if chunks:
        names = dict.fromkeys(c.document_name or "Unknown document" for c in chunks)
        parts.append(f"{len(chunks)} document chunks from: {', '.join(names)}")
    if facts:
        parts.append(f"{len(facts)} verified facts")
    return "\n".join(parts)


# ── Providers ────────────────────────────────────────────────


class ContextProvider(Protocol):
    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def gather(self, request: PageGenerationRequest) -> RetrievedContext: ...


class NullContextProvider:
    """No retrieval: the model writes from general knowledge."""

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def gather(self, request: PageGenerationRequest) -> RetrievedContext:
        return RetrievedContext()


class HttpContextProvider:
    """Fetches context from the application backend's internal API.

    - ``POST {base_url}{prefix}/retrieval/search`` for document chunks
    - ``GET {base_url}{prefix}/companies/{companyId}/facts`` for facts

    A failed lookup is logged and the request continues with whatever
    context the other lookup produced.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._base_url = (
            f"{settings.context_api_base_url.rstrip('/')}{settings.context_api_prefix}"
        )
        self._timeout = settings.context_api_timeout
        self._token = settings.context_api_token
        self._top_k = settings.context_top_k
        self._min_score = settings.context_min_score
        self._max_facts = settings.context_max_facts
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
        logger.info("HttpContextProvider started — base_url=%s", self._base_url)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("HttpContextProvider closed")

    # -- public API ----------------------------------------------------------

    async def gather(self, request: PageGenerationRequest) -> RetrievedContext:
        scope = request.context or GenerationContext()
        chunks: list[RetrievedChunk] = []
        facts: list[FactRecord] = []

        try:
            chunks = await self.search_chunks(
                request.prompt,
                organization_id=request.organization_id,
                deal_id=scope.deal_id or request.deal_id,
                document_ids=scope.document_ids,
            )
        except (ContextRetrievalError, ValidationError) as exc:
            logger.warning("Chunk search failed for page %s: %s", request.page_id, exc)

        if scope.company_id:
            try:
                facts = await self.fetch_facts(scope.company_id, request.organization_id)
            except (ContextRetrievalError, ValidationError) as exc:
                logger.warning(
                    "Fact lookup failed for company %s: %s", scope.company_id, exc
                )

        logger.info(
            "Context for page %s: %d chunks, %d facts", request.page_id, len(chunks), len(facts)
        )
        if not chunks and not facts:
            return RetrievedContext()
        return RetrievedContext(
            text=build_context_text(chunks, facts),
            summary=summarize_context(chunks, facts),
        )

    async def search_chunks(
        self,
        query: str,
        *,
        organization_id: str,
        deal_id: str | None = None,
        document_ids: list[str] | None = None,
    ) -> list[RetrievedChunk]:
        body = ChunkSearchRequest(
            query=query,
            organization_id=organization_id,
            deal_id=deal_id,
            document_ids=document_ids or [],
            top_k=self._top_k,
            min_score=self._min_score,
        ).to_wire()
        payload = await self._request_with_retry("POST", "/retrieval/search", json_body=body)
        return [RetrievedChunk.model_validate(item) for item in _items(payload, "chunks")]

    async def fetch_facts(self, company_id: str, organization_id: str) -> list[FactRecord]:
        payload = await self._request_with_retry(
            "GET",
            f"/companies/{company_id}/facts",
            params={"organizationId": organization_id, "limit": self._max_facts},
        )
        facts = [FactRecord.model_validate(item) for item in _items(payload, "facts")]
        facts.sort(key=lambda f: f.confidence, reverse=True)
        return facts[: self._max_facts]

    # -- retry logic ---------------------------------------------------------

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        client = self._ensure_started()
        last_exc: ContextRetrievalError | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.monotonic()
            try:
                if method == "GET":
                    response = await client.get(path, params=params)
                else:
                    response = await client.post(path, json=json_body)
            except httpx.TransportError as exc:
                elapsed_ms = (time.monotonic() - t0) * 1000
                logger.warning(
                    "%s %s → network error (%.0fms): %s [attempt %d/%d]",
                    method, path, elapsed_ms, exc, attempt, MAX_RETRIES,
                )
                last_exc = ContextRetrievalError(f"network error: {exc}")
            else:
                elapsed_ms = (time.monotonic() - t0) * 1000
                logger.info(
                    "%s %s → %d (%.0fms)", method, path, response.status_code, elapsed_ms
                )
                detail = response.text[:300] if response.text else f"HTTP {response.status_code}"
                if 400 <= response.status_code < 500:
                    raise ContextRetrievalError(detail, response.status_code)
                if response.status_code < 400:
                    return response.json() if response.text else {}
                last_exc = ContextRetrievalError(detail, response.status_code)

            if attempt < MAX_RETRIES:
                await asyncio.sleep(RETRY_BASE_DELAY * (2 ** (attempt - 1)))

        raise last_exc  # type: ignore[misc]

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("HttpContextProvider not started — call await provider.start() first")
        return self._http


def _items(payload: Any, key: str) -> list[Any]:
    """List under ``data.<key>``, ``data`` or ``<key>``, whichever the backend used."""
    data = payload.get("data", payload) if isinstance(payload, dict) else payload
    if isinstance(data, dict):
        data = data.get(key, [])
    return data if isinstance(data, list) else []


def create_context_provider(settings: Settings | None = None) -> ContextProvider:
    """Build the provider selected by ``CONTEXT_PROVIDER_TYPE``."""
    settings = settings or get_settings()
    if settings.context_provider_type == "http":
        logger.info("Using HttpContextProvider")
        return HttpContextProvider(settings)
    logger.info("Using NullContextProvider")
    return NullContextProvider()
