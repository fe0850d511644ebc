"""Reusable page-generation parameters.

GenerationConfig is a standalone Pydantic model that can be:
- built from Settings as the global default,
- passed to a PageGenerationAgent for task-specific tuning.

Priority chain (low → high):
    .env global defaults  →  agent-level GenerationConfig
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_ai.settings import ModelSettings


class GenerationConfig(BaseModel):
    """Outline / section generation parameters.

    ``None`` means "use the model's default".
    """

    outline_model: str | None = Field(default=None, description="provider/model for the outline call")
    section_model: str | None = Field(default=None, description="provider/model for section expansion")
    max_tokens_outline: int | None = Field(default=1000, gt=0)
    max_tokens_section: int | None = Field(default=4000, gt=0)
    temperature: float | None = Field(default=0.4, ge=0.0, le=2.0)

    def merge(self, overrides: GenerationConfig) -> GenerationConfig:
        """Return a new config: *self* as base, *overrides* wins on non-None fields."""
        base = self.model_dump(exclude_none=True)
        base.update(overrides.model_dump(exclude_none=True, exclude_unset=True))
        return GenerationConfig(**base)

    def outline_settings(self) -> ModelSettings:
        return self._model_settings(self.max_tokens_outline)

    def section_settings(self) -> ModelSettings:
        return self._model_settings(self.max_tokens_section)

    def _model_settings(self, max_tokens: int | None) -> ModelSettings:
        settings: ModelSettings = {}
        if max_tokens is not None:
            settings["max_tokens"] = max_tokens
        if self.temperature is not None:
            settings["temperature"] = self.temperature
        return settings
