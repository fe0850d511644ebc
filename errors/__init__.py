"""Custom exception hierarchy for the page generation service."""

from errors.exceptions import (
    ContextRetrievalError,
    DatabaseCreationError,
    GenerationCapacityError,
    OutlineGenerationError,
    PageGenerationError,
)

__all__ = [
    "ContextRetrievalError",
    "DatabaseCreationError",
    "GenerationCapacityError",
    "OutlineGenerationError",
    "PageGenerationError",
]
