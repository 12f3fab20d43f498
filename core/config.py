import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError

# --- Base Path ---
BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / 'configs' / 'intelligence.yml'
logger = logging.getLogger("mcpgen.config")

# --- Environment-based Settings ---

class AppSettings(BaseSettings):
    """
    Secrets and deployment knobs loaded from environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the application (e.g., DEBUG, INFO, WARNING, ERROR)")
    MCPGEN_CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to a specific YAML configuration file.")

    # --- Provider credentials ---
    OPENAI_API_KEY: Optional[str] = Field(None)
    ANTHROPIC_API_KEY: Optional[str] = Field(None)
    OLLAMA_HOST: str = Field("http://localhost:11434", description="The full URL of your Ollama server.")

    # --- Cache ---
    REDIS_URL: Optional[str] = Field(None, description="Optional: redis:// URL of the shared response cache.")
    REDIS_PASSWORD: Optional[str] = Field(None)
    CACHE_TTL: Optional[int] = Field(None, description="Default cache TTL in seconds.")
    LOCAL_CACHE_MAX_SIZE: Optional[int] = Field(None, description="Capacity of the in-process cache.")

    # --- Cost control ---
    MAX_COST: Optional[float] = Field(None, description="Maximum estimated USD cost per enhancement run.")

# --- YAML-based Configuration Models ---

class LLMConfig(BaseModel):
    provider: str
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None

class LLMRoutingConfig(BaseModel):
    primary: LLMConfig
    validator: Optional[LLMConfig] = None
    local: Optional[LLMConfig] = None

class RedisConfig(BaseModel):
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    url: Optional[str] = None

    def to_url(self) -> str:
        return self.url or f"redis://{self.host}:{self.port}/{self.db}"

class CacheConfig(BaseModel):
    enabled: bool = True
    redis: Optional[RedisConfig] = None
    ttl: int = Field(3600, gt=0)
    local_max_size: int = Field(1000, gt=0)
    sweep_interval: float = Field(300.0, gt=0)
    operation_timeout: float = Field(5.0, gt=0)

class FeatureFlags(BaseModel):
    documentation: bool = True
    examples: bool = True
    validation: bool = False
    optimization: bool = False
    # Documentation sections beside the README
    tool_docs: bool = True
    error_guide: bool = True
    api_reference: bool = True
    # Example kinds beside the per-tool examples
    quick_start: bool = True
    error_handling_example: bool = True
    advanced_example: bool = False

class CostConfig(BaseModel):
    max_cost: Optional[float] = Field(None, ge=0)
    alert_threshold: float = Field(0.8, ge=0, le=1)

class RuntimeConfig(BaseModel):
    provider_timeout: float = Field(60.0, gt=0)
    max_context_tokens: int = Field(8000, gt=0)
    max_examples: int = Field(5, ge=0)
    max_concurrency: int = Field(1, ge=1)
    shutdown_grace: float = Field(10.0, ge=0)

# --- Main Config Object ---

class IntelligenceConfig(BaseModel):
    """
    A unified configuration object for the intelligence layer.
    """
    llm: LLMRoutingConfig
    cache: CacheConfig = Field(default_factory=CacheConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    costs: CostConfig = Field(default_factory=CostConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    def apply_settings(self, settings: AppSettings) -> "IntelligenceConfig":
        """Fill values the YAML leaves open from the environment."""
        keys = {
            "openai": settings.OPENAI_API_KEY,
            "anthropic": settings.ANTHROPIC_API_KEY,
        }
        for llm in (self.llm.primary, self.llm.validator, self.llm.local):
            if llm is None:
                continue
            if llm.api_key is None:
                llm.api_key = keys.get(llm.provider.lower())
            if llm.base_url is None and llm.provider.lower() == "ollama":
                llm.base_url = settings.OLLAMA_HOST

        if settings.REDIS_URL and self.cache.redis is None:
            self.cache.redis = RedisConfig(url=settings.REDIS_URL)
        if self.cache.redis is not None and self.cache.redis.password is None:
            self.cache.redis.password = settings.REDIS_PASSWORD
        if settings.CACHE_TTL:
            self.cache.ttl = settings.CACHE_TTL
        if settings.LOCAL_CACHE_MAX_SIZE:
            self.cache.local_max_size = settings.LOCAL_CACHE_MAX_SIZE
        if settings.MAX_COST is not None and self.costs.max_cost is None:
            self.costs.max_cost = settings.MAX_COST
        return self


def _load_yaml(path: Path) -> dict:
    """Loads a YAML file into a mapping."""
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def load_config(
    path: Optional[Union[str, Path]] = None,
    settings: Optional[AppSettings] = None,
) -> IntelligenceConfig:
    """
    Loads and validates the intelligence configuration.

    The path is resolved from the argument, then MCPGEN_CONFIG_PATH, then
    configs/intelligence.yml.  Errors surface as ConfigurationError before
    any provider is contacted.
    """
    try:
        settings = settings or AppSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid environment settings: {e}") from e

    config_path = Path(path or settings.MCPGEN_CONFIG_PATH or DEFAULT_CONFIG_PATH)
    data = _load_yaml(config_path)
    try:
        config = IntelligenceConfig.model_validate(data)
    except ValidationError as e:
        logger.critical(f"Configuration validation error in {config_path}: {e}")
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.info(f"Loaded intelligence configuration from {config_path}")
    return config.apply_settings(settings)
