"""Page generation LLM prompts.

Two-phase strategy:
1. Outline phase: prompt + context summary → section titles and block types.
2. Expansion phase: each section → a JSON array of generated blocks.
"""

from __future__ import annotations

from models.blocks import GenerationTemplate

PAGE_GENERATION_SYSTEM_PROMPT = """\
You are an AI assistant for M&A (mergers and acquisitions) professionals.
You generate structured document content based on user prompts and available context.

Your output is a JSON array of content blocks that will be rendered in a rich text editor.
Each block has a "type" and relevant fields.

Available block types:
- heading: Section heading. Fields: level (1|2|3), content (text)
- paragraph: Body text. Fields: content (text with **bold**, *italic*, [N] citations)
- bulletList: Unordered list. Fields: items (string[])
- orderedList: Numbered list. Fields: items (string[])
- taskList: Checklist. Fields: tasks ({ text, checked }[])
- blockquote: Quote. Fields: content (text)
- callout: Highlighted note. Fields: content (text), emoji (icon)
- divider: Horizontal separator. No fields needed.
- codeBlock: Code snippet. Fields: content (code), language
- table: Data table. Fields: table ({ headers: string[], rows: string[][] })
- database: Interactive database (creates a real sortable/filterable table). \
Fields: database ({ name, columns: { name, type, options? }[], entries: Record[] })

Database column types: TEXT, NUMBER, SELECT, MULTI_SELECT, DATE, CHECKBOX, URL, STATUS

IMPORTANT RULES:
- Output ONLY valid JSON. No markdown fences, no prose outside JSON.
- Put "type" first in every block, then "level" for headings, then "content".
- Use [N] notation for citations referencing the numbered context items.
- Use **bold** for emphasis and *italic* for secondary emphasis in text content.
- When creating databases, populate them with real data from the context.
- Be specific and data-driven when context is available."""


_TEMPLATE_HINTS: dict[GenerationTemplate, str] = {
    GenerationTemplate.DD_REPORT: """\
This is a Due Diligence Report. Include these sections:
- Executive Summary (key findings, recommendation)
- Company Overview (history, structure, leadership)
- Financial Analysis (revenue, EBITDA, margins, growth) — include a database with financial metrics
- Market & Competition (market size, competitors, positioning)
- Legal & Regulatory (compliance, pending litigation, IP)
- Risk Assessment — include a risk database with likelihood/impact ratings
- Recommendations & Next Steps""",
    GenerationTemplate.COMPETITOR_ANALYSIS: """\
This is a Competitor Analysis. Include these sections:
- Market Overview (size, trends, dynamics)
- Competitor Profiles (key players, strengths/weaknesses)
- Comparative Analysis — include a database comparing competitors across metrics
- SWOT Analysis (per competitor)
- Strategic Implications
- Opportunities & Threats""",
    GenerationTemplate.MARKET_REPORT: """\
This is a Market Report. Include these sections:
- Market Overview (size, growth rate, key segments)
- Market Trends & Drivers
- Key Players — include a database of major companies with market share
- Regional Analysis
- Regulatory Environment
- Market Outlook & Forecasts""",
    GenerationTemplate.COMPANY_OVERVIEW: """\
This is a Company Overview. Include these sections:
- Company Profile (founding, mission, HQ, employees)
- Products & Services
- Financial Performance — include a table with key metrics
- Leadership Team — include a database with key executives
- Recent Developments
- Strengths & Challenges""",
}


def get_template_hint(template: GenerationTemplate | None) -> str:
    """Section guidance for a predefined template; empty for custom / none."""
    if template is None:
        return ""
    return _TEMPLATE_HINTS.get(template, "")


def build_outline_prompt(
    user_prompt: str,
    template: GenerationTemplate | None,
    context_summary: str,
) -> str:
    """Prompt for phase 1: a JSON outline of the page."""
    parts = [
        "Generate an outline for a structured document page.",
        f"USER REQUEST: {user_prompt}",
    ]
    hint = get_template_hint(template)
    if hint:
        parts.append(f"TEMPLATE GUIDANCE:\n{hint}")
    if context_summary:
        parts.append(f"AVAILABLE CONTEXT:\n{context_summary}")
    parts.append(
        "Respond with a JSON object:\n"
        "{\n"
        '  "title": "Page title",\n'
        '  "sections": [\n'
        "    {\n"
        '      "title": "Section Title",\n'
        '      "description": "Brief description of what this section covers",\n'
        '      "blockTypes": ["heading", "paragraph", "bulletList"]\n'
        "    }\n"
        "  ]\n"
        "}\n\n"
        "Include 4-8 sections. Each section should have a mix of block types for variety.\n"
        'For data-heavy sections, include "database" or "table" in blockTypes.'
    )
    return "\n\n".join(parts)


def build_section_prompt(
    section_title: str,
    section_description: str,
    block_types: list[str],
    context: str,
    citation_start_index: int,
) -> str:
    """Prompt for phase 2: one section expanded into a JSON block array."""
    data_hint = ""
    if "database" in block_types:
        data_hint += (
            '\nIMPORTANT: Include at least one "database" block with:\n'
            "- A descriptive name\n"
            "- 3-6 columns with appropriate types\n"
            "- 3-10 pre-populated entries based on the context\n"
            "Database entries should use column names as keys in the entries objects."
        )
    if "table" in block_types:
        data_hint += '\nInclude at least one "table" block with headers and data rows.'

    n = citation_start_index
    return (
        "Expand this section into content blocks.\n\n"
        f"SECTION: {section_title}\n"
        f"DESCRIPTION: {section_description}\n"
        f"EXPECTED BLOCK TYPES: {', '.join(block_types)}\n\n"
        f"CONTEXT (cite as [{n}], [{n + 1}], etc.):\n"
        f"{context}\n"
        f"{data_hint}\n\n"
        "Respond with a JSON array of blocks. Start with a heading (level 2) for the "
        "section title, then expand with content blocks.\n"
        "Example format:\n"
        "[\n"
        f'  {{ "type": "heading", "level": 2, "content": "{section_title}" }},\n'
        f'  {{ "type": "paragraph", "content": "Overview text with **bold** and [{n}] citations." }},\n'
        '  { "type": "bulletList", "items": ["Point one", "Point two", "Point three"] }\n'
        "]"
    )
