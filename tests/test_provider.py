"""Tests for agents/provider.py — model creation from provider/model names."""

import pytest
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.openai import OpenAIChatModel

from agents.provider import create_model
from config.settings import get_settings


@pytest.fixture(autouse=True)
def api_keys(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "anthropic_api_key", "test-anthropic-key")
    monkeypatch.setattr(settings, "openai_api_key", "test-openai-key")
    monkeypatch.setattr(settings, "dashscope_api_key", "test-dashscope-key")
    return settings


# ── create_model ──────────────────────────────────────────────


def test_create_model_default(api_keys, monkeypatch):
    monkeypatch.setattr(api_keys, "default_model", "anthropic/claude-sonnet-4-20250514")
    model = create_model()
    assert isinstance(model, AnthropicModel)
    assert model.model_name == "claude-sonnet-4-20250514"


def test_create_model_openai():
    model = create_model("openai/gpt-4o")
    assert isinstance(model, OpenAIChatModel)
    assert model.model_name == "gpt-4o"


def test_create_model_bare_name_is_openai():
    model = create_model("gpt-4o-mini")
    assert isinstance(model, OpenAIChatModel)
    assert model.model_name == "gpt-4o-mini"


def test_create_model_dashscope():
    model = create_model("dashscope/qwen-max")
    assert isinstance(model, OpenAIChatModel)
    assert model.model_name == "qwen-max"
    assert "dashscope" in str(model.client.base_url)


def test_create_model_unknown_prefix_falls_back_to_openai():
    model = create_model("mystery/some-model")
    assert isinstance(model, OpenAIChatModel)
    assert model.model_name == "some-model"
