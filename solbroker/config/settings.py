"""solbroker settings loaded from environment variables."""

from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class LogLevel(StrEnum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Broker-wide settings loaded from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- HTTP listener ---
    HOST: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to.",
    )
    PORT: int = Field(
        default=3000,
        description="Port the HTTP server listens on.",
    )
    MAX_REQUEST_BYTES: int = Field(
        default=1_000_000_000,
        description="Largest accepted compile request body.",
    )

    # --- Artifact storage ---
    ARTIFACT_DIR: str = Field(
        default="/tmp/solbroker",
        description="Directory holding downloaded compiler artifacts.",
    )

    # --- Upstream release index ---
    BINARIES_BASE_URL: str = Field(
        default="https://binaries.soliditylang.org",
        description="Root of the compiler release mirror (list.txt feeds and downloads).",
    )
    NATIVE_PLATFORM: str = Field(
        default="linux-amd64",
        description="Platform directory of native builds on the release mirror.",
    )
    NATIVE_MIN_VERSION: str = Field(
        default="0.6.0",
        description="Oldest release allowed to run as a native binary.",
    )
    CATALOG_REFRESH_INTERVAL_S: float = Field(
        default=3600.0,
        description="Seconds between release index refreshes.",
    )
    HTTP_TIMEOUT_S: float = Field(
        default=60.0,
        description="Timeout for upstream index and artifact fetches.",
    )

    # --- Invocation ---
    INVOCATION_TIMEOUT_S: float = Field(
        default=120.0,
        description="Wall-clock limit for one compilation, seeds included.",
    )
    NODE_BINARY: str = Field(
        default="node",
        description="Runtime used to host scripted (soljson) compiler builds.",
    )

    # --- Observability ---
    TRACE_BUFFER_SIZE: int = Field(
        default=256,
        description="Number of recent invocation traces kept in memory.",
    )

    # --- Logging ---
    LOG_LEVEL: LogLevel = Field(
        default=LogLevel.INFO,
        description="Application log level.",
    )

    # --- Environment ---
    ENVIRONMENT: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment (dev/staging/prod).",
    )

    @property
    def scripted_index_url(self) -> str:
        return f"{self.BINARIES_BASE_URL.rstrip('/')}/bin/list.txt"

    @property
    def native_index_url(self) -> str:
        return f"{self.BINARIES_BASE_URL.rstrip('/')}/{self.NATIVE_PLATFORM}/list.txt"


def get_settings() -> Settings:
    """Factory function for dependency injection via FastAPI Depends."""
    return Settings()
