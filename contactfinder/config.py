"""
Runtime configuration: YAML file overridden by environment variables.

Example (config/example.yaml):

    ai:
      model: gpt-4o-mini
    browser:
      headless: true
      slow_mo_ms: 0
    pipeline:
      concurrency: 3

Environment overrides: OPENAI_API_KEY, PROXYAPI_API_KEY, PROXYAPI_BASE_URL,
CF_AI_MODEL, CF_SEARCH_UA, CF_HEADLESS, CF_SLOWMO_MS, CF_DEVTOOLS,
CF_PROFILE_DIR, CF_CONCURRENCY, CF_OPS_JSON.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .pipeline.browser import SessionConfig


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)


class ConfigError(ValueError):
    """Config file missing, unreadable or invalid."""


class AiSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    timeout_s: float = 60.0


class BrowserSettings(BaseModel):
    headless: bool = True
    slow_mo_ms: float = Field(default=0, ge=0)
    devtools: bool = False
    profile_dir: Optional[str] = None

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            headless=self.headless,
            slow_mo_ms=self.slow_mo_ms,
            devtools=self.devtools,
            profile_dir=self.profile_dir,
        )


class SearchSettings(BaseModel):
    url: str = "https://www.google.com/search?q={query}&hl=ru"
    user_agent: str = DEFAULT_USER_AGENT
    navigation_timeout_s: float = 60.0
    next_page_timeout_s: float = 30.0


class PipelineSettings(BaseModel):
    concurrency: int = Field(default=3, ge=1, le=16)
    fetch_timeout_s: float = 90.0
    hint_navigation_timeout_s: float = 30.0
    echo_logs: bool = True


class HistorySettings(BaseModel):
    enabled: bool = True
    path: str = "data/history.sqlite"
    max_entries: int = Field(default=200, ge=1)


class OpsSettings(BaseModel):
    ops_json: bool = False
    log_path: Optional[str] = None


class Settings(BaseModel):
    ai: AiSettings = Field(default_factory=AiSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    ops: OpsSettings = Field(default_factory=OpsSettings)


def _env_bool(v: str) -> bool:
    return v.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, key, converter)
ENV_OVERRIDES = {
    "OPENAI_API_KEY": ("ai", "api_key", str),
    "PROXYAPI_API_KEY": ("ai", "api_key", str),  # wins over OPENAI_API_KEY
    "PROXYAPI_BASE_URL": ("ai", "base_url", str),
    "CF_AI_MODEL": ("ai", "model", str),
    "CF_SEARCH_UA": ("search", "user_agent", str),
    "CF_HEADLESS": ("browser", "headless", _env_bool),
    "CF_SLOWMO_MS": ("browser", "slow_mo_ms", float),
    "CF_DEVTOOLS": ("browser", "devtools", _env_bool),
    "CF_PROFILE_DIR": ("browser", "profile_dir", str),
    "CF_CONCURRENCY": ("pipeline", "concurrency", int),
    "CF_OPS_JSON": ("ops", "ops_json", _env_bool),
}


def read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists() or not path.is_file():
        raise ConfigError(f"file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"top level of {path} must be a mapping")
    return data


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    data: Dict[str, Any] = read_config_file(Path(path)) if path else {}
    env = os.environ if env is None else env
    for name, (section, key, conv) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = conv(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for {name}: {raw!r}") from e
        sect = data.setdefault(section, {})
        if not isinstance(sect, dict):
            raise ConfigError(f"section '{section}' must be a mapping")
        sect[key] = value
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
