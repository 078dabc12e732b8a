"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from storyforge.errors import DEFAULT_PREVIEW_CHARS
from storyforge.llm.providers.base import Provider
from storyforge.llm.providers.ollama import OllamaProvider
from storyforge.llm.providers.openai_compat import OpenAICompatProvider
from storyforge.llm.transport import Transport
from storyforge.llm.types import SamplingOptions
from storyforge.parsing.decoder import Decoder
from storyforge.parsing.extractor import STRATEGIES

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "ollama")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMProviderConfig:
    name: str = "openai"
    model: str = "gpt-4o-mini"
    api_base: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    temperature: float = 0.7
    max_tokens: int | None = None
    timeout_seconds: float = 60.0


@dataclass
class DecodeConfig:
    preview_chars: int = DEFAULT_PREVIEW_CHARS
    extraction: str = "first_last"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class StoryforgeConfig:
    llm: LLMProviderConfig = field(default_factory=LLMProviderConfig)
    decode: DecodeConfig = field(default_factory=DecodeConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a value using dot notation (e.g. 'llm.model')."""
        _apply_dotpath(self, dotpath, value)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise AttributeError(f"unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in (raw or {}).items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "STORYFORGE_LLM_NAME":            ("llm.name", str),
    "STORYFORGE_LLM_MODEL":           ("llm.model", str),
    "STORYFORGE_LLM_API_BASE":        ("llm.api_base", str),
    "STORYFORGE_LLM_API_KEY_ENV":     ("llm.api_key_env", str),
    "STORYFORGE_LLM_TEMPERATURE":     ("llm.temperature", float),
    "STORYFORGE_LLM_MAX_TOKENS":      ("llm.max_tokens", int),
    "STORYFORGE_LLM_TIMEOUT":         ("llm.timeout_seconds", float),
    "STORYFORGE_DECODE_PREVIEW":      ("decode.preview_chars", int),
    "STORYFORGE_DECODE_EXTRACTION":   ("decode.extraction", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> StoryforgeConfig:
    """
    Build a StoryforgeConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)
        else:
            logger.warning("Config file %s not found, using defaults", p)

    # --- 2. Profile overlay ---
    if profile:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)
        else:
            logger.warning("Profile %s not defined in config", profile)

    cfg = StoryforgeConfig(
        llm=_build_section(LLMProviderConfig, raw.get("llm", {})),
        decode=_build_section(DecodeConfig, raw.get("decode", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    _check(cfg)
    return cfg


def _check(cfg: StoryforgeConfig) -> None:
    if cfg.llm.name not in PROVIDERS:
        raise ValueError(
            f"unknown provider {cfg.llm.name!r}; expected one of {', '.join(PROVIDERS)}"
        )
    if cfg.decode.extraction not in STRATEGIES:
        raise ValueError(
            f"unknown extraction strategy {cfg.decode.extraction!r}; "
            f"expected one of {', '.join(STRATEGIES)}"
        )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def build_provider(cfg: StoryforgeConfig, **kwargs: Any) -> Provider:
    """
    Construct the configured provider.

    Extra keyword arguments (e.g. ``transport=``) are passed through to the
    provider constructor.
    """
    llm = cfg.llm
    if llm.name == "ollama":
        provider_kwargs: dict[str, Any] = {"model": llm.model, "timeout": llm.timeout_seconds}
        if llm.api_base:
            provider_kwargs["url"] = llm.api_base
        return OllamaProvider(**provider_kwargs, **kwargs)

    api_key = os.environ.get(llm.api_key_env, "") if llm.api_key_env else ""
    if not api_key:
        logger.warning("Environment variable %s is not set; sending no API key", llm.api_key_env)
    provider_kwargs = {
        "model": llm.model,
        "api_key": api_key,
        "timeout": llm.timeout_seconds,
    }
    if llm.api_base:
        provider_kwargs["url"] = llm.api_base
    return OpenAICompatProvider(**provider_kwargs, **kwargs)


def build_transport(cfg: StoryforgeConfig, **kwargs: Any) -> Transport:
    return Transport(build_provider(cfg, **kwargs), timeout=cfg.llm.timeout_seconds)


def build_decoder(cfg: StoryforgeConfig) -> Decoder:
    return Decoder(strategy=cfg.decode.extraction, preview_chars=cfg.decode.preview_chars)


def sampling_options(cfg: StoryforgeConfig, *, stream: bool = False) -> SamplingOptions:
    return SamplingOptions(
        model=cfg.llm.model,
        temperature=cfg.llm.temperature,
        max_tokens=cfg.llm.max_tokens,
        stream=stream,
    )
