# aimate_chat/config/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator
import logging
from typing import Optional, Dict

from aimate_chat.agent.structs import CompressionStrategy, RetryPolicy, ToolPermission
from aimate_chat.exceptions.config import ConfigError
from aimate_chat.utils.model_limits import get_context_limit

logger = logging.getLogger("Settings")

CREATIVITY_TO_TEMPERATURE: Dict[str, float] = {
    "precise": 0.3,
    "balanced": 0.7,
    "creative": 1.0,
}

STYLE_TO_MAX_TOKENS: Dict[str, int] = {
    "concise": 512,
    "balanced": 2048,
    "detailed": 4096,
}


class ConnectionSettings(BaseModel):
    """The active OpenAI-compatible model server."""

    name: str = "LM Server"
    base_url: str = "http://localhost:1234/v1"
    api_key: Optional[SecretStr] = None
    enabled: bool = True

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def api_key_value(self) -> Optional[str]:
        if self.api_key is None:
            return None
        return self.api_key.get_secret_value() or None


class RetrySettings(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    jitter_ms: int = Field(default=500, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ms=self.jitter_ms,
        )


class CompressionSettings(BaseModel):
    enabled: bool = True
    strategy: CompressionStrategy = CompressionStrategy.HYBRID
    threshold_percent: int = Field(default=80, ge=1, le=100)
    preserve_recent_messages: int = Field(default=4, ge=0)


class PersonalisationSettings(BaseModel):
    creativity_level: str = "balanced"
    response_style: str = "balanced"
    remember_context: bool = True

    @field_validator("creativity_level")
    @classmethod
    def validate_creativity(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in CREATIVITY_TO_TEMPERATURE:
            raise ValueError(
                f"creativity_level must be one of {sorted(CREATIVITY_TO_TEMPERATURE)}"
            )
        return value

    @field_validator("response_style")
    @classmethod
    def validate_style(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in STYLE_TO_MAX_TOKENS:
            raise ValueError(
                f"response_style must be one of {sorted(STYLE_TO_MAX_TOKENS)}"
            )
        return value

    @property
    def temperature(self) -> float:
        return CREATIVITY_TO_TEMPERATURE[self.creativity_level]

    @property
    def max_tokens(self) -> int:
        return STYLE_TO_MAX_TOKENS[self.response_style]


class Settings(BaseSettings):
    # === Environment Variables (AIMATE_ prefix, nested with "__") ===
    log_level: str = "INFO"
    model: str = "default"
    system_prompt: str = ""
    request_timeout: float = Field(default=30.0, gt=0)
    tool_timeout: float = Field(default=60.0, gt=0)
    context_limit: Optional[int] = Field(default=None, gt=0)

    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    personalisation: PersonalisationSettings = Field(
        default_factory=PersonalisationSettings
    )

    # server_id -> tool_name -> permission
    tool_permissions: Dict[str, Dict[str, ToolPermission]] = Field(default_factory=dict)

    # === Pydantic V2 Configuration ===
    model_config = SettingsConfigDict(
        env_prefix="AIMATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging._nameToLevel:
            raise ValueError(f"Invalid log level: {value}")
        return level

    @model_validator(mode="after")
    def validate_retry_window(self) -> "Settings":
        if self.retry.max_delay_ms < self.retry.base_delay_ms:
            raise ValueError("retry.max_delay_ms must be >= retry.base_delay_ms")
        return self

    # === Convenience Properties ===

    @property
    def retry_policy(self) -> RetryPolicy:
        return self.retry.to_policy()

    def context_limit_for(self, model: Optional[str] = None) -> int:
        """Explicit override, or the known limit for ``model`` (default: the configured one)."""
        return self.context_limit or get_context_limit(model or self.model)

    def permission_table(self) -> Dict[str, Dict[str, ToolPermission]]:
        return {server: dict(tools) for server, tools in self.tool_permissions.items()}


def load_settings(**overrides) -> Settings:
    """
    Build Settings from the environment, ``.env`` and keyword overrides.

    Raises:
        ConfigError: If any value fails validation.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field_name = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigError(
            f"Invalid configuration: {e}",
            field_name=field_name or None,
            invalid_value=first.get("input"),
        ) from e

    logger.info(
        "Configuration loaded. Model: %s, connection: %s (%s)",
        settings.model,
        settings.connection.name,
        settings.connection.base_url,
    )
    return settings
