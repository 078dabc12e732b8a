"""Tests for the layered configuration loader and factories."""

from __future__ import annotations

import pytest

from storyforge.config import (
    StoryforgeConfig,
    build_decoder,
    build_provider,
    build_transport,
    load_config,
    sampling_options,
)
from storyforge.llm.providers.ollama import OllamaProvider
from storyforge.llm.providers.openai_compat import OpenAICompatProvider

YAML = """
llm:
  name: openai
  model: file-model
  temperature: 0.2
  unknown_key: ignored
decode:
  extraction: balanced
profiles:
  local:
    llm:
      name: ollama
      model: llama3
      api_base: http://gpu-box:11434
"""


@pytest.fixture
def config_file(tmp_path):
    p = tmp_path / "storyforge.yaml"
    p.write_text(YAML, encoding="utf-8")
    return p


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("STORYFORGE_"):
            monkeypatch.delenv(key)


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config()
        assert isinstance(cfg, StoryforgeConfig)
        assert cfg.llm.name == "openai"
        assert cfg.llm.timeout_seconds == 60.0
        assert cfg.decode.preview_chars == 300
        assert cfg.decode.extraction == "first_last"

    def test_file_values(self, config_file):
        cfg = load_config(config_file)
        assert cfg.llm.model == "file-model"
        assert cfg.llm.temperature == 0.2
        assert cfg.decode.extraction == "balanced"
        assert not hasattr(cfg.llm, "unknown_key")

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.llm.model == "gpt-4o-mini"

    def test_profile_overlay(self, config_file):
        cfg = load_config(config_file, profile="local")
        assert cfg.llm.name == "ollama"
        assert cfg.llm.model == "llama3"
        assert cfg.llm.temperature == 0.2

    def test_env_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv("STORYFORGE_LLM_MODEL", "env-model")
        monkeypatch.setenv("STORYFORGE_LLM_MAX_TOKENS", "512")
        monkeypatch.setenv("STORYFORGE_DECODE_PREVIEW", "80")
        cfg = load_config(config_file)
        assert cfg.llm.model == "env-model"
        assert cfg.llm.max_tokens == 512
        assert cfg.decode.preview_chars == 80

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("STORYFORGE_LLM_MODEL", "env-model")
        cfg = load_config(cli_overrides={"llm.model": "cli-model", "llm.api_base": None})
        assert cfg.llm.model == "cli-model"
        assert cfg.llm.api_base == ""

    def test_unknown_provider_rejected(self, monkeypatch):
        monkeypatch.setenv("STORYFORGE_LLM_NAME", "mystery")
        with pytest.raises(ValueError, match="unknown provider"):
            load_config()

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValueError, match="extraction strategy"):
            load_config(cli_overrides={"decode.extraction": "greedy"})

    def test_set_override_and_to_dict(self):
        cfg = load_config()
        cfg.set_override("llm.temperature", 1.1)
        assert cfg.to_dict()["llm"]["temperature"] == 1.1
        with pytest.raises(AttributeError):
            cfg.set_override("llm.nonsense", 1)


class TestFactories:
    def test_openai_provider_reads_key_from_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "sk-abc")
        cfg = load_config(
            cli_overrides={"llm.api_key_env": "MY_KEY", "llm.api_base": "http://local:8080/v1"}
        )
        provider = build_provider(cfg)
        assert isinstance(provider, OpenAICompatProvider)
        assert provider.endpoint == "http://local:8080/v1/chat/completions"

    def test_ollama_provider(self, config_file):
        provider = build_provider(load_config(config_file, profile="local"))
        assert isinstance(provider, OllamaProvider)
        assert provider.endpoint == "http://gpu-box:11434/api/generate"

    def test_transport_and_decoder(self, config_file):
        cfg = load_config(config_file)
        assert build_transport(cfg).provider.name == "openai-compat"
        decoder = build_decoder(cfg)
        assert decoder.strategy == "balanced"
        assert decoder.preview_chars == 300

    def test_sampling_options(self, config_file):
        opts = sampling_options(load_config(config_file), stream=True)
        assert opts.model == "file-model"
        assert opts.temperature == 0.2
        assert opts.stream is True
