"""Structured error codes for page generation.

Error events carry a code plus a message in the frozen format::

    {ERROR_CODE}: {human_readable_detail}
"""

from __future__ import annotations

import re
from enum import Enum


class ErrorCode(str, Enum):
    """Frozen error codes surfaced in ``error`` events."""

    GENERATION_NOT_FOUND = "GENERATION_NOT_FOUND"
    GENERATION_CANCELLED = "GENERATION_CANCELLED"
    DATABASE_CREATION_FAILED = "DATABASE_CREATION_FAILED"
    LLM_PROVIDER_ERROR = "LLM_PROVIDER_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def format_error(code: ErrorCode, detail: str) -> str:
    """Format an error for an event ``message``.

    Returns:
        ``{ERROR_CODE}: {detail}``
    """
    return f"{code.value}: {detail}"


def format_database_error(name: str, detail: str) -> str:
    """Format a block-scoped database materialization failure."""
    return format_error(
        ErrorCode.DATABASE_CREATION_FAILED,
        f'Failed to create database "{name}" — {detail}',
    )


# LLM-provider patterns (timeout, connection, context-length, token limits,
# content-safety filters, rate limits).
_RATE_LIMIT_RE = re.compile(r"rate.?limit|too many requests|\b429\b", re.IGNORECASE)
_LLM_PROVIDER_RE = re.compile(
    r"timeout|timed out|connection|context length|token|content filter|safety"
    r"|api key|model",
    re.IGNORECASE,
)


def classify_generation_error(error_text: str) -> ErrorCode:
    """Classify a raw producer exception string into an :class:`ErrorCode`.

    Classification order (first match wins):
        1. Rate limiting.
        2. LLM provider error — timeout / connection / context length /
           token / content filter / safety / credentials.
        3. Fallback — ``INTERNAL_ERROR``.
    """
    if _RATE_LIMIT_RE.search(error_text):
        return ErrorCode.RATE_LIMITED
    if _LLM_PROVIDER_RE.search(error_text):
        return ErrorCode.LLM_PROVIDER_ERROR
    return ErrorCode.INTERNAL_ERROR
