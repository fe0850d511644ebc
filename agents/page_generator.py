"""PageGenerationAgent — two-phase structured page generation.

1. Outline: a single ``agent.run()`` call returns a JSON outline
   (title + sections with expected block types).
2. Expansion: each section is streamed with ``agent.run_stream()`` and fed
   through an :class:`IncrementalBlockStreamer`, so block events reach the
   caller while the model is still writing.

The agent only produces events.  Database materialization, completion
bookkeeping and error classification belong to the orchestrator
(``services/generation_service.py``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator

from pydantic import ValidationError
from pydantic_ai import Agent
from pydantic_ai.models import Model

from agents.provider import create_model
from config.generation_config import GenerationConfig
from config.prompts.page_generation import (
    PAGE_GENERATION_SYSTEM_PROMPT,
    build_outline_prompt,
    build_section_prompt,
)
from config.settings import get_settings
from errors.exceptions import OutlineGenerationError
from models.blocks import CalloutBlock, HeadingBlock, OutlineSection, PageOutline, ParagraphBlock
from models.events import (
    BlockEvent,
    CompleteEvent,
    GenerationMetadata,
    OutlineEvent,
    OutlineSectionSummary,
    SectionCompleteEvent,
    SectionStartEvent,
    StreamEvent,
)
from models.request import PageGenerationRequest
from services.block_streamer import IncrementalBlockStreamer
from services.context_provider import ContextProvider, NullContextProvider, RetrievedContext

logger = logging.getLogger(__name__)

NO_CONTEXT_SUMMARY = "No specific context available — generate based on general knowledge."
NO_CONTEXT_TEXT = "No context documents available."
UNPARSED_SECTION_TEXT = "Content could not be parsed from the response."
SECTION_FAILURE_EMOJI = "⚠️"


# ── Outline parsing ──────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def parse_outline(raw_output: str) -> PageOutline:
    """Parse the outline call's text output.

    Handles markdown fences and prose around the JSON object.

    Raises:
        OutlineGenerationError: when no valid outline object is found.
    """
    text = raw_output.strip()
    fence = _FENCE_RE.search(text)
    if fence:
        text = fence.group(1).strip()

    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise OutlineGenerationError("no JSON object in model output", raw_output)

    try:
        return PageOutline.model_validate_json(text[start:end + 1])
    except ValidationError as exc:
        raise OutlineGenerationError(str(exc), raw_output) from exc


# ── Agent ────────────────────────────────────────────────────


@dataclass
class _TokenTally:
    total: int = 0


class PageGenerationAgent:
    """Produces the page generation event stream for a request.

    Holds no per-run state, so one instance serves concurrent generations.

    Args:
        model: Model used for both phases.  Defaults to the models named in
            the generation config (built on first use).
        config: Overrides merged on top of the ``.env`` defaults.
        context_provider: Source of RAG context.  Defaults to none.
    """

    def __init__(
        self,
        model: Model | None = None,
        config: GenerationConfig | None = None,
        context_provider: ContextProvider | None = None,
    ) -> None:
        base = get_settings().get_generation_config()
        self.config = base.merge(config) if config is not None else base
        self.context_provider = context_provider or NullContextProvider()
        self._outline_model: Model | None = model
        self._section_model: Model | None = model
        self._agent = Agent(
            model=model,
            system_prompt=PAGE_GENERATION_SYSTEM_PROMPT,
            retries=1,
            defer_model_check=True,
        )

    @property
    def outline_model(self) -> Model:
        if self._outline_model is None:
            self._outline_model = create_model(self.config.outline_model)
        return self._outline_model

    @property
    def section_model(self) -> Model:
        if self._section_model is None:
            self._section_model = create_model(self.config.section_model)
        return self._section_model

    async def generate_page(self, request: PageGenerationRequest) -> AsyncIterator[StreamEvent]:
        """Yield outline, section and block events, then ``complete``.

        Outline failures and provider errors propagate to the caller.
        Failures inside a single section are reported as a warning callout
        for that section and generation continues.
        """
        context = await self.context_provider.gather(request)

        usage = _TokenTally()
        outline = await self._generate_outline(request, context, usage)
        logger.info(
            "Outline generated: %r with %d sections", outline.title, len(outline.sections)
        )
        yield OutlineEvent(
            title=outline.title,
            sections=[
                OutlineSectionSummary(title=s.title, block_types=s.block_types)
                for s in outline.sections
            ],
        )

        block_index = 0
        sections_generated = 0
        for i, section in enumerate(outline.sections):
            yield SectionStartEvent(index=i, title=section.title)

            streamer = IncrementalBlockStreamer(section_index=i, start_block_index=block_index)
            produced = False
            try:
                async for event in self._expand_section(section, context, streamer, usage):
                    produced = True
                    yield event
            except Exception as exc:
                logger.warning("Section %d (%r) failed: %s", i, section.title, exc)
                # Close any half-streamed block so its index still ends.
                streamer.finish()
                for event in streamer.flush():
                    yield event
                yield BlockEvent(
                    block_index=streamer.block_index,
                    section_index=i,
                    block=CalloutBlock(
                        content=f"Unable to generate this section: {exc}",
                        emoji=SECTION_FAILURE_EMOJI,
                    ),
                )
                block_index = streamer.block_index + 1
            else:
                block_index = streamer.block_index
                if not produced:
                    for block in (
                        HeadingBlock(level=2, content=section.title),
                        ParagraphBlock(content=UNPARSED_SECTION_TEXT),
                    ):
                        yield BlockEvent(block_index=block_index, section_index=i, block=block)
                        block_index += 1

            yield SectionCompleteEvent(index=i)
            sections_generated += 1

        yield CompleteEvent(
            metadata=GenerationMetadata(
                tokens_used=usage.total,
                sections_generated=sections_generated,
            )
        )

    # ── Phases ───────────────────────────────────────────────

    async def _generate_outline(
        self,
        request: PageGenerationRequest,
        context: RetrievedContext,
        usage: _TokenTally,
    ) -> PageOutline:
        prompt = build_outline_prompt(
            request.prompt,
            request.template,
            context.summary or NO_CONTEXT_SUMMARY,
        )
        result = await self._agent.run(
            prompt,
            model=self.outline_model,
            model_settings=self.config.outline_settings(),
        )
        usage.total += result.usage().total_tokens or 0
        return parse_outline(str(result.output))

    async def _expand_section(
        self,
        section: OutlineSection,
        context: RetrievedContext,
        streamer: IncrementalBlockStreamer,
        usage: _TokenTally,
    ) -> AsyncIterator[StreamEvent]:
        prompt = build_section_prompt(
            section.title,
            section.description,
            section.block_types,
            context.text or NO_CONTEXT_TEXT,
            citation_start_index=1,
        )
        async with self._agent.run_stream(
            prompt,
            model=self.section_model,
            model_settings=self.config.section_settings(),
        ) as stream:
            async for delta in stream.stream_text(delta=True):
                streamer.feed(delta)
                for event in streamer.flush():
                    yield event
            usage.total += stream.usage().total_tokens or 0

        streamer.finish()
        for event in streamer.flush():
            yield event
