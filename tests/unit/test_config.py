from pathlib import Path

import pytest

from contactfinder.config import ConfigError, load_settings
from contactfinder.pipeline.browser import SessionConfig

EXAMPLE = Path(__file__).resolve().parents[2] / "config" / "example.yaml"


def test_defaults_without_file():
    s = load_settings(env={})
    assert s.pipeline.concurrency == 3
    assert s.ai.api_key is None
    assert s.browser.session_config() == SessionConfig()
    assert "{query}" in s.search.url


def test_example_config_loads():
    s = load_settings(EXAMPLE, env={})
    assert s.ai.model
    assert s.pipeline.concurrency >= 1


def test_env_overrides_file(tmp_path):
    cfg = tmp_path / "c.yaml"
    cfg.write_text("browser:\n  headless: true\npipeline:\n  concurrency: 2\n", encoding="utf-8")
    env = {
        "OPENAI_API_KEY": "sk-openai",
        "PROXYAPI_API_KEY": "sk-proxy",
        "PROXYAPI_BASE_URL": "https://api.proxyapi.ru/openai/v1",
        "CF_HEADLESS": "false",
        "CF_SLOWMO_MS": "250",
        "CF_DEVTOOLS": "1",
        "CF_PROFILE_DIR": "/tmp/profile",
        "CF_CONCURRENCY": "5",
    }
    s = load_settings(cfg, env=env)
    assert s.ai.api_key == "sk-proxy"
    assert s.ai.base_url == "https://api.proxyapi.ru/openai/v1"
    assert s.pipeline.concurrency == 5
    assert s.browser.session_config() == SessionConfig(
        headless=False, slow_mo_ms=250, devtools=True, profile_dir="/tmp/profile"
    )


def test_openai_key_used_when_proxy_key_absent():
    assert load_settings(env={"OPENAI_API_KEY": "sk-openai", "PROXYAPI_API_KEY": ""}).ai.api_key == "sk-openai"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.yaml", env={})


def test_invalid_yaml(tmp_path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("pipeline: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(cfg, env={})


def test_invalid_values(tmp_path):
    cfg = tmp_path / "c.yaml"
    cfg.write_text("pipeline:\n  concurrency: 0\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(cfg, env={})
    with pytest.raises(ConfigError):
        load_settings(env={"CF_CONCURRENCY": "many"})
