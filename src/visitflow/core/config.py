"""
Configuration management for the visitflow service.

This module provides centralized configuration using Pydantic Settings
for environment-based configuration management.
"""

from typing import List, Optional

import json
import os
from pathlib import Path

from pydantic import Field, field_validator, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration settings."""

    model_config = SettingsConfigDict(env_prefix="MONGO_")

    uri: str = Field(
        default="mongodb://localhost:27017", description="MongoDB connection URI"
    )
    db_name: str = Field(default="visitflow", description="MongoDB database name")
    server_selection_timeout_ms: int = Field(
        default=15000, description="Server selection timeout in milliseconds"
    )

    @validator("uri")
    def validate_mongo_uri(cls, v: str) -> str:
        """Validate MongoDB URI format."""
        if not v:
            raise ValueError("MongoDB URI is required. Please set MONGO_URI environment variable.")
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError(
                "MongoDB URI must start with 'mongodb://' or 'mongodb+srv://'"
            )
        return v


class OpenAISettings(BaseSettings):
    """OpenAI API configuration settings for visit summarization."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(default="", description="OpenAI API key (not used when Azure OpenAI is configured)")
    model: str = Field(default="gpt-4o-mini", description="Chat model used for summary extraction")
    base_url: Optional[str] = Field(default=None, description="Override for OpenAI-compatible endpoints")
    max_tokens: int = Field(default=4000, description="Maximum tokens for responses")
    temperature: float = Field(default=0.2, description="Temperature for model responses")
    request_timeout_seconds: float = Field(default=120.0, description="Timeout for a summarization call")

    @validator("temperature")
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("Temperature must be between 0.0 and 2.0")
        return v


class AzureOpenAISettings(BaseSettings):
    """Azure OpenAI configuration settings (preferred over OpenAI when set)."""

    model_config = SettingsConfigDict(env_prefix="AZURE_OPENAI_")

    endpoint: str = Field(default="", description="Azure OpenAI endpoint URL")
    api_key: str = Field(default="", description="Azure OpenAI API key")
    api_version: str = Field(default="2024-12-01-preview", description="Azure OpenAI API version")
    deployment_name: str = Field(default="gpt-4o-mini", description="Azure OpenAI chat deployment name")

    @validator("endpoint")
    def validate_endpoint(cls, v: str) -> str:
        """Validate Azure OpenAI endpoint format."""
        if v and not (v.startswith("https://") and ".openai.azure.com" in v):
            raise ValueError("Invalid Azure OpenAI endpoint format. Must be: https://xxx.openai.azure.com/")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class TranscriptionSettings(BaseSettings):
    """Speech-to-text provider settings (AssemblyAI-compatible REST API)."""

    model_config = SettingsConfigDict(env_prefix="ASSEMBLYAI_")

    api_key: str = Field(default="", description="Transcription provider API key")
    base_url: str = Field(default="https://api.assemblyai.com/v2", description="Provider REST base URL")
    request_timeout_seconds: float = Field(default=30.0, description="HTTP timeout per provider call")
    speaker_labels: bool = Field(default=True, description="Request speaker diarization")


class WebhookSettings(BaseSettings):
    """Inbound transcription webhook settings."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_")

    secret: str = Field(default="", description="Shared secret expected in X-Webhook-Secret")
    public_base_url: str = Field(default="", description="Public URL the provider calls back on")


class EmailSettings(BaseSettings):
    """Caregiver email delivery settings."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_")

    api_url: str = Field(default="https://api.resend.com/emails", description="Email HTTP API endpoint")
    api_key: str = Field(default="", description="Email provider API key")
    from_address: str = Field(default="visits@visitflow.local", description="Sender address")
    app_base_url: str = Field(default="", description="Base URL used in visit links")
    timeout_seconds: float = Field(default=15.0, description="HTTP timeout per email")


class PushSettings(BaseSettings):
    """Push notification delivery settings."""

    model_config = SettingsConfigDict(env_prefix="PUSH_")

    api_url: str = Field(default="https://exp.host/--/api/v2/push/send", description="Push gateway endpoint")
    access_token: str = Field(default="", description="Push gateway access token")
    timeout_seconds: float = Field(default=10.0, description="HTTP timeout per push request")


class CORSSettings(BaseSettings):
    """CORS configuration settings."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    allowed_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )
    allowed_methods: List[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        description="Allowed HTTP methods",
    )

    @validator("allowed_origins", pre=True)
    def parse_allowed_origins(cls, v):
        """Parse allowed origins from string or list."""
        if isinstance(v, str):
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v.strip()]
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")

    @validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @validator("format")
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class ProcessingSettings(BaseSettings):
    """Visit pipeline retry and staleness settings."""

    model_config = SettingsConfigDict(env_prefix="PROCESSING_")

    max_retries: int = Field(default=3, description="Maximum transcription/summarization retries per visit")
    min_retry_interval_seconds: int = Field(
        default=30, description="Minimum seconds between two retries of the same visit"
    )
    transcribing_timeout_minutes: int = Field(
        default=30, description="Minutes before a transcribing visit is considered stuck"
    )
    summarizing_timeout_minutes: int = Field(
        default=15, description="Minutes before a summarizing visit is considered stuck"
    )

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError("max_retries must be between 1 and 10")
        return v

    @property
    def min_retry_interval_ms(self) -> int:
        return self.min_retry_interval_seconds * 1000


class PostCommitSettings(BaseSettings):
    """Post-commit operation ledger settings."""

    model_config = SettingsConfigDict(env_prefix="POST_COMMIT_")

    max_attempts: int = Field(default=5, description="Attempts per operation before it stops retrying")
    alert_threshold: int = Field(default=3, description="Attempts after which a failure is escalated")
    base_backoff_seconds: int = Field(default=300, description="Backoff after the first failure")
    max_backoff_seconds: int = Field(default=21600, description="Upper bound for a single backoff")
    recovery_limit: int = Field(default=25, description="Visits scanned per recovery pass")

    @field_validator("recovery_limit")
    @classmethod
    def validate_recovery_limit(cls, v: int) -> int:
        return max(1, min(100, v))


class SweeperSettings(BaseSettings):
    """Recovery sweeper loop settings."""

    model_config = SettingsConfigDict(env_prefix="RECOVERY_SWEEPER_")

    enabled: bool = Field(default=False, description="Enable the periodic recovery sweeper")
    interval_seconds: int = Field(default=600, description="Seconds between sweeps (default: 10 minutes)")
    batch_limit: int = Field(default=10, description="Stuck visits handled per status per sweep")


class ReminderSettings(BaseSettings):
    """Medication reminder dispatch settings."""

    model_config = SettingsConfigDict(env_prefix="REMINDER_")

    lock_window_seconds: int = Field(default=300, description="Lease length of a reminder send lock")


class EscalationSettings(BaseSettings):
    """Post-commit escalation incident reporting settings."""

    model_config = SettingsConfigDict(env_prefix="ESCALATION_")

    webhook_url: str = Field(default="", description="Incident webhook; reporting is skipped when empty")
    token: str = Field(default="", description="Bearer token sent to the incident webhook")
    timeout_ms: int = Field(default=10000, description="Incident webhook timeout in milliseconds")
    report_limit: int = Field(default=50, description="Escalations included in one report")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="visitflow", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    app_env: str = Field(default="development", description="Application environment")
    debug: bool = Field(default=False, description="Debug mode")
    port: int = Field(default=8000, description="Application port")
    host: str = Field(default="0.0.0.0", description="Application host")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    azure_openai: AzureOpenAISettings = Field(default_factory=AzureOpenAISettings)
    transcription: TranscriptionSettings = Field(default_factory=TranscriptionSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    push: PushSettings = Field(default_factory=PushSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    post_commit: PostCommitSettings = Field(default_factory=PostCommitSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    escalation: EscalationSettings = Field(default_factory=EscalationSettings)

    @validator("app_env")
    def validate_app_env(cls, v: str) -> str:
        """Validate application environment."""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"App environment must be one of: {valid_envs}")
        return v.lower()

    @validator("port")
    def validate_port(cls, v: int) -> int:
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.app_env == "testing"


# Global settings instance (loaded after attempting to read .env)
_settings: Optional[Settings] = None


def _load_env_file_if_available() -> None:
    """Best-effort load of .env by searching current and parent directories.

    This helps when the working directory isn't the project root and
    pydantic's env_file doesn't get resolved as expected.
    """
    from dotenv import load_dotenv

    cwd = Path(os.getcwd()).resolve()
    for parent in [cwd, *cwd.parents]:
        candidate = parent / ".env"
        if candidate.exists():
            # Do not override already-set environment variables
            load_dotenv(dotenv_path=str(candidate), override=False)
            break


def get_settings() -> Settings:
    """Get application settings instance (lazy-init with .env discovery)."""
    global _settings
    if _settings is None:
        _load_env_file_if_available()
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
