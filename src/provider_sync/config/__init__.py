"""Configuration package for Provider Sync."""

from .settings import (
    ProjectSettings,
    NetworkSettings,
    StorageSettings,
    ServerSettings,
    LoggingSettings,
    AppSettings,
    get_settings
)

from .schema import (
    Provider,
    Model,
    CostPer1M,
    UIConfig,
    ProviderType,
    ModelRole,
    make_provider_key,
    UI_CONFIG_EXAMPLE
)

from .loader import ConfigLoader, ConfigurationError

from .manager import ConfigManager

__all__ = [
    # Settings
    "ProjectSettings",
    "NetworkSettings",
    "StorageSettings",
    "ServerSettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings",

    # Editor schema
    "Provider",
    "Model",
    "CostPer1M",
    "UIConfig",
    "ProviderType",
    "ModelRole",
    "make_provider_key",
    "UI_CONFIG_EXAMPLE",

    "ConfigLoader",
    "ConfigurationError",

    "ConfigManager"
]
