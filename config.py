"""Configuration and environment settings"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application configuration

    Every value is validated when the object is built, so a bad
    configuration fails before any pipeline stage starts.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # LLM Configuration
    ANTHROPIC_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    GOOGLE_API_KEY: Optional[str] = None  # Gemini API key

    # LLM Provider Priority (comma-separated: openai,anthropic,gemini)
    LLM_PROVIDER_PRIORITY: str = "openai,anthropic,gemini"

    # LLM Model Selection
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"
    OPENAI_MODEL: str = "gpt-4o-mini"
    GEMINI_MODEL_ID: str = "gemini-2.5-flash"

    # LLM Settings
    LLM_MAX_TOKENS: int = Field(default=64, gt=0)
    LLM_TEMPERATURE: float = Field(default=0.0, ge=0, le=2)
    LLM_MAX_RETRIES: int = Field(default=2, ge=0)
    LLM_RETRY_DELAY: float = Field(default=1.0, ge=0)  # seconds
    LLM_TIMEOUT: float = Field(default=30.0, gt=0)  # seconds

    # Pipeline
    STAGE_QUEUE_CAPACITY: int = Field(default=100, ge=1)
    STAGE_CONCURRENCY: int = Field(default=4, ge=1)
    CATEGORIZER_CONCURRENCY: Optional[int] = Field(default=None, ge=1)
    STAGE_GRACE_PERIOD: float = Field(default=5.0, ge=0)  # seconds
    PIPELINE_DEADLINE_SECONDS: float = Field(default=120.0, gt=0)
    FINAL_FLUSH_TIMEOUT: float = Field(default=10.0, gt=0)

    # Export
    OUTPUT_DIR: str = "./output"
    EXPORT_FILE_NAME_FORMAT: str = "transactions_{timestamp}.csv"
    EXPORT_BUFFER_SIZE: int = Field(default=100, ge=1, le=1024 * 1024)
    EXPORT_FLUSH_INTERVAL: float = Field(default=30.0, gt=0)  # seconds

    # Source
    INPUT_ENCODING: Optional[str] = None  # detected when unset
    CSV_DELIMITER: Optional[str] = None  # detected when unset
    SOURCE_TIMEOUT: float = Field(default=30.0, gt=0)

    # Email enrichment (Microsoft Graph, client credentials)
    GRAPH_TENANT_ID: Optional[str] = None
    GRAPH_CLIENT_ID: Optional[str] = None
    GRAPH_CLIENT_SECRET: Optional[str] = None
    GRAPH_MAILBOX: Optional[str] = None
    EMAIL_SEARCH_DAYS: int = Field(default=3, gt=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @field_validator("EXPORT_FILE_NAME_FORMAT")
    @classmethod
    def _require_timestamp_placeholder(cls, value: str) -> str:
        if "{timestamp}" not in value:
            raise ValueError("must contain the {timestamp} placeholder")
        if "/" in value or "\\" in value:
            raise ValueError("must be a file name, not a path")
        # The writer fills in only the timestamp
        try:
            value.format(timestamp="x")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"must use {{timestamp}} as its only placeholder ({e!r})") from e
        return value

    @field_validator("CSV_DELIMITER")
    @classmethod
    def _single_char_delimiter(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) != 1:
            raise ValueError("must be a single character")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{value}'")
        return level

    @model_validator(mode="after")
    def _graph_credentials_complete(self) -> "Settings":
        graph_values = [
            self.GRAPH_TENANT_ID,
            self.GRAPH_CLIENT_ID,
            self.GRAPH_CLIENT_SECRET,
            self.GRAPH_MAILBOX,
        ]
        if any(graph_values) and not all(graph_values):
            raise ValueError(
                "GRAPH_TENANT_ID, GRAPH_CLIENT_ID, GRAPH_CLIENT_SECRET and "
                "GRAPH_MAILBOX must be set together"
            )
        return self

    def get_llm_provider_priority(self) -> List[str]:
        """Get LLM provider priority list"""
        return [p.strip() for p in self.LLM_PROVIDER_PRIORITY.split(",") if p.strip()]

    def get_output_path(self, subdir: str = "") -> Path:
        """Get output directory path"""
        path = Path(self.OUTPUT_DIR) / subdir
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def email_enrichment_enabled(self) -> bool:
        return bool(self.GRAPH_TENANT_ID)

    @property
    def categorizer_concurrency(self) -> int:
        return self.CATEGORIZER_CONCURRENCY or self.STAGE_CONCURRENCY


def load_settings(**overrides) -> Settings:
    """
    Build and validate settings from the environment plus overrides

    Args:
        **overrides: Field values taking precedence over env / .env
            (None values are ignored)

    Returns:
        Validated settings

    Raises:
        ConfigurationError: If any value is invalid
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        failures = [
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(failures),
            failures=failures
        ) from e
