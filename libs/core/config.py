"""Configuration management for the sourcing pipeline."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Protocol

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Text generation provider credentials and endpoints."""

    deepseek_api_key: Optional[str] = Field(default=None, alias="DEEPSEEK_API_KEY")
    deepseek_base_url: str = Field(default="https://api.deepseek.com", alias="DEEPSEEK_API_URL")

    qwen_api_key: Optional[str] = Field(default=None, alias="DASHSCOPE_API_KEY")
    qwen_base_url: str = Field(
        default="https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
        alias="DASHSCOPE_BASE_URL",
    )

    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_BASE_URL",
    )

    perplexity_api_key: Optional[str] = Field(default=None, alias="PERPLEXITY_API_KEY")
    perplexity_base_url: str = Field(default="https://api.perplexity.ai", alias="PERPLEXITY_BASE_URL")

    request_timeout: float = Field(default=120.0, alias="LLM_REQUEST_TIMEOUT")

    def api_key_for(self, provider: str) -> Optional[str]:
        """Get the configured API key for a provider."""
        return getattr(self, f"{provider}_api_key", None)

    def base_url_for(self, provider: str) -> Optional[str]:
        """Get the configured base URL for a provider."""
        return getattr(self, f"{provider}_base_url", None)


class RoleModel(BaseModel):
    """Provider/model pair assigned to a pipeline role."""

    provider: str
    model: str


class SourcingSettings(BaseSettings):
    """Pipeline tuning knobs."""

    max_query_length: int = Field(default=60, alias="MAX_QUERY_LENGTH")
    anomaly_threshold: float = Field(default=0.30, alias="PRICE_ANOMALY_THRESHOLD")
    enrich_limit: int = Field(default=10, alias="ENRICH_LIMIT")
    validation_batch_size: int = Field(default=5, alias="VALIDATION_BATCH_SIZE")
    description_chars: int = Field(default=500, alias="VALIDATION_DESCRIPTION_CHARS")
    confidence_threshold: int = Field(default=7, alias="CONFIDENCE_THRESHOLD")
    open_web_accept_below: int = Field(default=8, alias="OPEN_WEB_ACCEPT_BELOW")
    open_web_max_attempts: int = Field(default=3, alias="OPEN_WEB_MAX_ATTEMPTS")
    search_delay_s: float = Field(default=1.5, alias="SEARCH_DELAY_SECONDS")
    detail_delay_s: float = Field(default=0.8, alias="DETAIL_DELAY_SECONDS")
    max_concurrent_jobs: int = Field(default=2, alias="MAX_CONCURRENT_JOBS")
    require_new: bool = Field(default=True, alias="REQUIRE_NEW_CONDITION")
    default_region: str = Field(default="01001-000", alias="DEFAULT_DELIVERY_REGION")


class RoleSettings(BaseModel):
    """Default provider/model per pipeline role (uses nested delimiter ROLES__)."""

    analysis: RoleModel = RoleModel(provider="gemini", model="gemini-2.0-flash-exp")
    title_filter: RoleModel = RoleModel(provider="deepseek", model="deepseek-chat")
    validation: RoleModel = RoleModel(provider="deepseek", model="deepseek-chat")
    selection: RoleModel = RoleModel(provider="deepseek", model="deepseek-reasoner")
    verification: RoleModel = RoleModel(provider="perplexity", model="sonar-pro")
    open_web: RoleModel = RoleModel(provider="perplexity", model="sonar-pro")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",  # ROLES__VALIDATION__MODEL=deepseek-reasoner
    )

    dev_mode: bool = Field(default=True, alias="DEV_MODE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    sourcing: SourcingSettings = Field(default_factory=SourcingSettings)
    roles: RoleSettings = Field(default_factory=RoleSettings)

    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    @property
    def config_dir(self) -> Path:
        """Get config directory."""
        return self.project_root / "config"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_model_registry() -> dict[str, Any]:
    """Load model registry (escalation chains) from YAML."""
    settings = get_settings()
    registry_path = settings.config_dir / "model-registry.yaml"

    with open(registry_path) as f:
        return yaml.safe_load(f) or {}


# =============================================================================
# Settings store
# =============================================================================


class SettingsStore(Protocol):
    """Key/value configuration store (admin-editable settings)."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...


class DictSettingsStore:
    """In-memory settings store."""

    def __init__(self, values: Optional[dict[str, str]] = None):
        self._values = dict(values or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(key)
        return value if value else default

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class EnvSettingsStore:
    """Settings store backed by environment variables (KEY -> KEY.upper())."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return os.getenv(key.upper()) or default
