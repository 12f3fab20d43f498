from pathlib import Path

import pytest

from core.config import (
    DEFAULT_CONFIG_PATH,
    AppSettings,
    IntelligenceConfig,
    load_config,
)
from core.errors import ConfigurationError
from intelligence.adapters.cache import SharedResponseCache, build_cache

_ENV_VARS = [
    "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "OLLAMA_HOST", "REDIS_URL", "REDIS_PASSWORD",
    "CACHE_TTL", "LOCAL_CACHE_MAX_SIZE", "MAX_COST", "MCPGEN_CONFIG_PATH", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _settings(**values) -> AppSettings:
    return AppSettings(_env_file=None, **values)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "intelligence.yml"
    path.write_text("""
llm:
  primary:
    provider: openai
    model: gpt-4-turbo
  local:
    provider: ollama
    model: llama3
cache:
  ttl: 120
features:
  validation: true
costs:
  max_cost: 1.5
runtime:
  max_examples: 2
""", encoding="utf-8")
    return path


def test_load_config_from_yaml(config_file):
    config = load_config(config_file, settings=_settings())

    assert isinstance(config, IntelligenceConfig)
    assert config.llm.primary.model == "gpt-4-turbo"
    assert config.cache.ttl == 120
    assert config.cache.local_max_size == 1000
    assert config.features.validation is True
    assert config.features.optimization is False
    assert config.costs.max_cost == 1.5
    assert config.runtime.max_examples == 2
    assert config.runtime.max_concurrency == 1


def test_settings_fill_secrets(config_file):
    config = load_config(
        config_file,
        settings=_settings(OPENAI_API_KEY="sk-env", OLLAMA_HOST="http://gpu-box:11434"),
    )
    assert config.llm.primary.api_key == "sk-env"
    assert config.llm.local.base_url == "http://gpu-box:11434"


def test_redis_url_enables_shared_cache(config_file):
    config = load_config(
        config_file,
        settings=_settings(REDIS_URL="redis://cache:6379/2", REDIS_PASSWORD="secret"),
    )
    assert config.cache.redis.to_url() == "redis://cache:6379/2"
    assert config.cache.redis.password == "secret"
    assert isinstance(build_cache(config.cache), SharedResponseCache)


def test_yaml_budget_kept_env_ttl_applied(config_file):
    config = load_config(config_file, settings=_settings(MAX_COST=9.0, CACHE_TTL=30))
    assert config.costs.max_cost == 1.5
    assert config.cache.ttl == 30


def test_config_path_from_settings(config_file):
    config = load_config(settings=_settings(MCPGEN_CONFIG_PATH=str(config_file)))
    assert config.runtime.max_examples == 2


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "missing.yml", settings=_settings())


def test_non_mapping_file(tmp_path):
    path = tmp_path / "list.yml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path, settings=_settings())


def test_invalid_values(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("llm:\n  primary:\n    provider: openai\ncache:\n  ttl: -5\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        load_config(path, settings=_settings())


def test_missing_primary(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("cache:\n  ttl: 60\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path, settings=_settings())


def test_bundled_config_loads():
    assert DEFAULT_CONFIG_PATH.is_file()
    config = load_config(DEFAULT_CONFIG_PATH, settings=_settings(ANTHROPIC_API_KEY="key"))
    assert config.llm.primary.provider == "anthropic"
    assert config.llm.primary.api_key == "key"
    assert config.costs.max_cost == 2.0
