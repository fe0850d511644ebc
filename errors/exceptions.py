"""Domain-specific exceptions for page generation.

These let the orchestrator and API layers tell failure modes apart and
respond with the right event or HTTP status.
"""

from __future__ import annotations


class PageGenerationError(Exception):
    """Base class for page generation failures."""


class OutlineGenerationError(PageGenerationError):
    """The outline call returned something that is not a usable outline.

    Fatal for the run: without an outline there are no sections to expand.
    """

    def __init__(self, message: str, raw_output: str = "") -> None:
        self.raw_output = raw_output
        super().__init__(f"Outline generation failed: {message}")


class DatabaseCreationError(PageGenerationError):
    """The persistence collaborator could not materialize a database block.

    Scoped to one block; the run continues.
    """

    def __init__(self, name: str, message: str, status_code: int | None = None) -> None:
        self.name = name
        self.status_code = status_code
        super().__init__(f"Database '{name}' could not be created: {message}")


class GenerationCapacityError(PageGenerationError):
    """Too many generations are already running in this worker."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Generation capacity reached ({limit} active)")


class ContextRetrievalError(PageGenerationError):
    """The retrieval backend could not supply context for a request.

    Not fatal: generation proceeds without the missing context.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(f"Context retrieval failed: {message}")
