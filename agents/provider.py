"""Agent provider — builds PydanticAI model instances from model names."""

from __future__ import annotations

import logging

from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from config.settings import get_settings

logger = logging.getLogger(__name__)

# OpenAI-compatible provider prefix → (base_url, settings_key_attr)
_PROVIDER_MAP: dict[str, tuple[str, str]] = {
    "dashscope": ("https://dashscope.aliyuncs.com/compatible-mode/v1", "dashscope_api_key"),
}


def create_model(model_name: str | None = None) -> Model:
    """Build a PydanticAI model instance.

    Parses the ``"provider/model"`` format (e.g. ``"anthropic/claude-sonnet-4-20250514"``,
    ``"dashscope/qwen-max"``) and creates the appropriate model.

    - ``anthropic/*`` → native :class:`AnthropicModel` (streaming text)
    - ``dashscope/*`` → :class:`OpenAIChatModel` via OpenAI-compatible endpoint
    - ``openai/*`` or bare name → :class:`OpenAIChatModel` with OpenAI API

    Args:
        model_name: Model identifier in ``"provider/model"`` format.
                    Defaults to ``settings.default_model``.
    """
    settings = get_settings()
    name = model_name or settings.default_model

    if "/" in name:
        prefix, model_id = name.split("/", 1)

        if prefix == "anthropic":
            from pydantic_ai.models.anthropic import AnthropicModel
            from pydantic_ai.providers.anthropic import AnthropicProvider

            provider = AnthropicProvider(api_key=settings.anthropic_api_key)
            return AnthropicModel(model_id, provider=provider)

        if prefix in _PROVIDER_MAP:
            base_url, key_attr = _PROVIDER_MAP[prefix]
            api_key = getattr(settings, key_attr, "")
            provider = OpenAIProvider(api_key=api_key, base_url=base_url)
            return OpenAIChatModel(model_id, provider=provider)

        if prefix != "openai":
            logger.warning("Unknown provider prefix %r; treating as OpenAI", prefix)

    # Fallback: OpenAI API with OPENAI_API_KEY ("openai/" prefix stripped)
    model_id = name.split("/", 1)[1] if "/" in name else name
    provider = OpenAIProvider(api_key=settings.openai_api_key)
    return OpenAIChatModel(model_id, provider=provider)
