from __future__ import annotations

import pytest
from pydantic import ValidationError

from ragedit.config import Settings, get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({})
    assert settings.embedding_model == "BAAI/bge-small-en-v1.5"
    assert settings.embedding_dim == 384


def test_chunking_and_anchor_defaults():
    settings = get_settings({})
    assert settings.chunk_size == 800
    assert settings.chunk_overlap_fraction == pytest.approx(0.15)
    assert settings.fuzzy_threshold == pytest.approx(0.85)
    assert settings.lookahead_tokens == 4
    assert settings.retry_max_attempts == 4


def test_plan_limits_defaults():
    settings = get_settings({})
    assert settings.plan_stream_limits == {"free": 1, "silver": 3, "gold": 8}
    assert settings.default_plan == "free"


def test_allowed_domains_from_comma_separated_string():
    settings = get_settings({"allowed_ingest_domains": "example.com, docs.example.com"})
    assert settings.allowed_ingest_domains_tuple == ("example.com", "docs.example.com")


def test_external_urls_blocked_by_default():
    assert get_settings({}).allowed_ingest_domains_tuple == ()


def test_overlap_fraction_must_be_below_one():
    with pytest.raises(ValidationError):
        get_settings({"chunk_overlap_fraction": 1.0})


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("RAGEDIT_CHUNK_SIZE", "128")
    monkeypatch.setenv("RAGEDIT_GENERATOR_PROVIDER", "openai")
    settings = Settings()
    assert settings.chunk_size == 128
    assert settings.generator_provider == "openai"
