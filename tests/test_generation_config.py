"""Tests for config.generation_config and the Settings bridge."""

import pytest

from config.generation_config import GenerationConfig
from config.settings import Settings


# ── Construction & validation ─────────────────────────────────


def test_defaults():
    cfg = GenerationConfig()
    assert cfg.outline_model is None
    assert cfg.max_tokens_outline == 1000
    assert cfg.max_tokens_section == 4000
    assert cfg.temperature == 0.4


def test_validation_temperature_range():
    with pytest.raises(ValueError):
        GenerationConfig(temperature=3.0)


def test_validation_max_tokens_positive():
    with pytest.raises(ValueError):
        GenerationConfig(max_tokens_section=0)


# ── merge ─────────────────────────────────────────────────────


def test_merge_override_non_none():
    base = GenerationConfig(outline_model="openai/gpt-4o", temperature=0.7)
    merged = base.merge(GenerationConfig(temperature=0.2))

    assert merged.outline_model == "openai/gpt-4o"   # kept from base
    assert merged.temperature == 0.2                  # overridden
    assert merged.max_tokens_section == 4000          # default


def test_merge_ignores_unset_defaults():
    base = GenerationConfig(max_tokens_section=8000)
    merged = base.merge(GenerationConfig(section_model="openai/gpt-4o"))

    assert merged.max_tokens_section == 8000
    assert merged.section_model == "openai/gpt-4o"


def test_merge_does_not_mutate():
    base = GenerationConfig(temperature=0.7)
    base.merge(GenerationConfig(temperature=0.2))
    assert base.temperature == 0.7


# ── Model settings ────────────────────────────────────────────


def test_phase_model_settings():
    cfg = GenerationConfig(max_tokens_outline=500, max_tokens_section=2000, temperature=0.1)
    assert cfg.outline_settings() == {"max_tokens": 500, "temperature": 0.1}
    assert cfg.section_settings() == {"max_tokens": 2000, "temperature": 0.1}


def test_model_settings_omit_none():
    cfg = GenerationConfig(max_tokens_outline=None, temperature=None)
    assert cfg.outline_settings() == {}


# ── Settings bridge ───────────────────────────────────────────


def test_settings_phase_models_fall_back_to_default():
    settings = Settings(_env_file=None, default_model="openai/gpt-4o", section_model="openai/gpt-4o-mini")
    cfg = settings.get_generation_config()
    assert cfg.outline_model == "openai/gpt-4o"
    assert cfg.section_model == "openai/gpt-4o-mini"
