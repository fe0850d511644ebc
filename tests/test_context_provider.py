"""Tests for services/context_provider.py — retrieval context for generation."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic_ai.messages import ModelResponse, TextPart
from pydantic_ai.models.function import FunctionModel

from agents.page_generator import PageGenerationAgent
from config.settings import Settings
from models.request import GenerationContext, PageGenerationRequest
from services import context_provider
from services.context_provider import (
    FactRecord,
    HttpContextProvider,
    NullContextProvider,
    RetrievedChunk,
    RetrievedContext,
    build_context_text,
    create_context_provider,
    summarize_context,
)

CHUNKS_BODY = json.dumps({"data": {"chunks": [
    {"id": "c1", "content": "Revenue grew 20% in FY24.", "score": 0.91,
     "documentId": "doc-1", "documentName": "CIM.pdf", "pageNumber": 4},
    {"id": "c2", "content": "Churn fell to 3%.", "score": 0.84,
     "documentId": "doc-2", "documentName": "Board deck.pdf"},
]}})

FACTS_BODY = json.dumps({"data": [
    {"id": "f1", "subject": "Acme", "predicate": "employs", "object": "120 people",
     "confidence": 0.7, "documentName": "CIM.pdf"},
    {"id": "f2", "subject": "Acme", "predicate": "is headquartered in", "object": "Austin",
     "confidence": 0.95},
]})


def _settings(**overrides) -> Settings:
    values = {
        "context_provider_type": "http",
        "context_api_base_url": "http://backend.test/",
        "context_api_prefix": "/api/internal",
        "context_api_token": "secret",
        "context_top_k": 5,
        "context_min_score": 0.6,
        "context_max_facts": 10,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _response(status: int, body: str = "") -> MagicMock:
    r = MagicMock()
    r.status_code = status
    r.text = body
    r.json.return_value = json.loads(body) if body[:1] in ("{", "[") else {}
    return r


def _request(**context) -> PageGenerationRequest:
    return PageGenerationRequest(
        prompt="Due diligence on Acme",
        page_id="page-1",
        deal_id="deal-1",
        organization_id="org-1",
        user_id="user-1",
        context=GenerationContext(**context) if context else None,
    )


@pytest.fixture
async def provider():
    p = HttpContextProvider(_settings())
    await p.start()
    p._http.post = AsyncMock(return_value=_response(200, CHUNKS_BODY))
    p._http.get = AsyncMock(return_value=_response(200, FACTS_BODY))
    yield p
    await p.close()


# ── Rendering ────────────────────────────────────────────────


def test_context_text_numbers_chunks_then_facts():
    chunks = [
        RetrievedChunk(content="Revenue grew.", document_name="CIM.pdf", page_number=4),
        RetrievedChunk(content="Churn fell."),
    ]
    facts = [FactRecord(subject="Acme", predicate="employs", object="120 people", confidence=0.7)]

    assert build_context_text(chunks, facts) == (
        "[1] Revenue grew.\nSource: CIM.pdf (Page 4)"
        "\n\n---\n\n"
        "[2] Churn fell.\nSource: Unknown document"
        "\n\n---\n\n"
        "[3] Acme employs 120 people\nConfidence: 70%\nSource: Unknown"
    )


def test_summary_lists_each_document_once():
    chunks = [
        RetrievedChunk(content="a", document_name="CIM.pdf"),
        RetrievedChunk(content="b", document_name="CIM.pdf"),
        RetrievedChunk(content="c", document_name="Deck.pdf"),
    ]
    facts = [FactRecord(subject="s", predicate="p", object="o")]
    assert summarize_context(chunks, facts) == (
        "3 document chunks from: CIM.pdf, Deck.pdf\n1 verified facts"
    )
    assert summarize_context([], []) == ""


# ── HTTP provider ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_gather_sends_request_scope(provider):
    await provider.gather(_request(document_ids=["doc-1", "doc-2"], company_id="co-9"))

    path = provider._http.post.call_args.args[0]
    body = provider._http.post.call_args.kwargs["json"]
    assert path == "/retrieval/search"
    assert body == {
        "query": "Due diligence on Acme",
        "organizationId": "org-1",
        "dealId": "deal-1",
        "documentIds": ["doc-1", "doc-2"],
        "topK": 5,
        "minScore": 0.6,
    }

    assert provider._http.get.call_args.args[0] == "/companies/co-9/facts"
    assert provider._http.get.call_args.kwargs["params"] == {
        "organizationId": "org-1",
        "limit": 10,
    }


@pytest.mark.asyncio
async def test_context_deal_overrides_request_deal(provider):
    await provider.gather(_request(deal_id="deal-ctx"))
    assert provider._http.post.call_args.kwargs["json"]["dealId"] == "deal-ctx"


@pytest.mark.asyncio
async def test_gather_renders_chunks_and_facts_by_confidence(provider):
    context = await provider.gather(_request(company_id="co-9"))

    assert context.text.startswith("[1] Revenue grew 20% in FY24.\nSource: CIM.pdf (Page 4)")
    assert "[2] Churn fell to 3%.\nSource: Board deck.pdf" in context.text
    assert "[3] Acme is headquartered in Austin\nConfidence: 95%" in context.text
    assert "[4] Acme employs 120 people" in context.text
    assert context.summary == (
        "2 document chunks from: CIM.pdf, Board deck.pdf\n2 verified facts"
    )


@pytest.mark.asyncio
async def test_facts_skipped_without_company(provider):
    context = await provider.gather(_request(document_ids=["doc-1"]))
    provider._http.get.assert_not_awaited()
    assert "verified facts" not in context.summary


@pytest.mark.asyncio
async def test_failed_search_keeps_facts(provider, monkeypatch):
    monkeypatch.setattr(context_provider, "RETRY_BASE_DELAY", 0)
    provider._http.post = AsyncMock(return_value=_response(503, "unavailable"))

    context = await provider.gather(_request(company_id="co-9"))

    assert provider._http.post.await_count == context_provider.MAX_RETRIES
    assert context.text.startswith("[1] Acme is headquartered in Austin")
    assert context.summary == "2 verified facts"


@pytest.mark.asyncio
async def test_network_error_recovers(provider, monkeypatch):
    monkeypatch.setattr(context_provider, "RETRY_BASE_DELAY", 0)
    provider._http.post = AsyncMock(side_effect=[
        httpx.ConnectError("refused"),
        _response(200, CHUNKS_BODY),
    ])
    context = await provider.gather(_request())
    assert context.text.startswith("[1] Revenue grew")


@pytest.mark.asyncio
async def test_client_error_is_not_retried(provider):
    provider._http.post = AsyncMock(return_value=_response(404, "no index"))
    context = await provider.gather(_request())
    assert provider._http.post.await_count == 1
    assert context == RetrievedContext()


@pytest.mark.asyncio
async def test_gather_requires_start():
    with pytest.raises(RuntimeError, match="not started"):
        await HttpContextProvider(_settings()).gather(_request())


def test_factory_selects_backend():
    assert isinstance(create_context_provider(_settings()), HttpContextProvider)
    assert isinstance(
        create_context_provider(_settings(context_provider_type="none")), NullContextProvider
    )


# ── Agent integration ────────────────────────────────────────


@pytest.mark.asyncio
async def test_retrieved_context_reaches_prompts(provider):
    prompts: list[str] = []

    def outline_fn(messages, info):
        prompts.append(str(messages[-1].parts[-1].content))
        return ModelResponse(parts=[TextPart(content=json.dumps({
            "title": "Acme", "sections": [{"title": "Overview", "description": "d", "blockTypes": ["paragraph"]}],
        }))])

    async def section_fn(messages, info):
        prompts.append(str(messages[-1].parts[-1].content))
        yield '[{"type":"paragraph","content":"Revenue grew [1]."}]'

    agent = PageGenerationAgent(
        model=FunctionModel(outline_fn, stream_function=section_fn),
        context_provider=provider,
    )
    events = [e async for e in agent.generate_page(_request(document_ids=["doc-1"], company_id="co-9"))]

    assert events[-1].type == "complete"
    assert provider._http.post.call_args.kwargs["json"]["documentIds"] == ["doc-1"]
    assert "2 document chunks from: CIM.pdf, Board deck.pdf" in prompts[0]
    assert "[1] Revenue grew 20% in FY24." in prompts[1]
    assert "[3] Acme is headquartered in Austin" in prompts[1]
