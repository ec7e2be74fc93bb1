"""Application configuration settings."""

from typing import Optional, List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProjectSettings(BaseSettings):
    """External TaskMaster project configuration."""

    root: Optional[str] = Field(default=None)
    capability_key: str = Field(default="taskmaster-project")
    auto_regrant: bool = Field(default=True)
    mcp_server_aliases: List[str] = Field(default=["taskmaster-ai", "task-master-ai"])

    model_config = SettingsConfigDict(env_prefix="PROJECT_")


class NetworkSettings(BaseSettings):
    """Outbound HTTP configuration."""

    timeout_seconds: float = Field(default=30.0)
    retries: int = Field(default=3)
    retry_delay_seconds: float = Field(default=1.0)
    max_retry_delay_seconds: float = Field(default=10.0)
    model_fetch_concurrency: int = Field(default=3)

    model_config = SettingsConfigDict(env_prefix="NETWORK_")


class StorageSettings(BaseSettings):
    """Local persistence configuration."""

    database_url: str = Field(default="sqlite:///./data/provider_sync.db")
    config_file: str = Field(default="./data/providers.json")

    model_config = SettingsConfigDict(env_prefix="STORAGE_")


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file_path: Optional[str] = Field(default="./logs/provider_sync.log")

    model_config = SettingsConfigDict(env_prefix="LOG_")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="Provider Sync")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")

    # Sub-settings
    project: ProjectSettings = ProjectSettings()
    network: NetworkSettings = NetworkSettings()
    storage: StorageSettings = StorageSettings()
    server: ServerSettings = ServerSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings
