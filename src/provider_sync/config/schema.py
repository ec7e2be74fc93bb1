"""Configuration schema definitions using Pydantic models."""

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


_NON_KEY_CHARS = re.compile(r"[^a-z0-9]")


def make_provider_key(name: str) -> str:
    """Derive the external join key from a provider display name.

    The key is the lowercased name with every character outside ``[a-z0-9]``
    removed, so ``"Fo Api"`` and ``"FoApi"`` both become ``"foapi"``.
    """
    return _NON_KEY_CHARS.sub("", (name or "").lower())


class ProviderType(str, Enum):
    """Supported provider API flavours."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    CUSTOM = "custom"
    OLLAMA = "ollama"


class ModelRole(str, Enum):
    """Roles a model may be assigned in the external project."""
    MAIN = "main"
    FALLBACK = "fallback"
    RESEARCH = "research"


DEFAULT_ROLES = [ModelRole.MAIN.value, ModelRole.FALLBACK.value]
DEFAULT_MAX_TOKENS = 200000


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        protected_namespaces=(),
        use_enum_values=True,
    )


class CostPer1M(_CamelModel):
    """Cost per million tokens."""

    input: float = Field(default=0.0)
    output: float = Field(default=0.0)


class Provider(_CamelModel):
    """A provider record as edited in the configuration UI."""

    id: str
    name: str = ""
    endpoint: str = ""
    api_key: str = Field(default="", alias="apiKey")
    type: ProviderType = ProviderType.OPENAI
    is_valid: Optional[bool] = Field(default=None, alias="isValid")

    @property
    def provider_key(self) -> str:
        """External join key derived from the provider name."""
        return make_provider_key(self.name)

    @property
    def env_var_name(self) -> str:
        """Secrets-manifest variable holding this provider's API key."""
        return f"{self.provider_key.upper()}_API_KEY"

    @property
    def class_name(self) -> str:
        """Name of the class exported by the generated provider stub."""
        key = self.provider_key
        return f"{key[:1].upper()}{key[1:]}Provider"


class Model(_CamelModel):
    """A model record belonging to a provider."""

    id: str
    name: str = ""
    provider_id: str = Field(default="", alias="providerId")
    model_id: str = Field(default="", alias="modelId")
    allowed_roles: List[ModelRole] = Field(default_factory=list, alias="allowedRoles")
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens")
    cost_per_1m_tokens: CostPer1M = Field(default_factory=CostPer1M, alias="costPer1MTokens")
    swe_score: Optional[float] = Field(default=None, alias="sweScore")


class UIConfig(_CamelModel):
    """The complete editor configuration as imported or exported."""

    version: str = "1.0.0"
    project_path: Optional[str] = Field(default=None, alias="projectPath")
    providers: List[Provider] = Field(default_factory=list)
    models: List[Model] = Field(default_factory=list)


UI_CONFIG_EXAMPLE = {
    "version": "1.0.0",
    "projectPath": "/path/to/taskmaster",
    "providers": [
        {
            "id": "provider_1",
            "name": "FoApi",
            "endpoint": "https://v2.voct.top",
            "apiKey": "",
            "type": "openai",
        }
    ],
    "models": [
        {
            "id": "model_1",
            "name": "GPT-4o",
            "providerId": "provider_1",
            "modelId": "gpt-4o",
            "allowedRoles": ["main", "fallback"],
            "maxTokens": 128000,
            "costPer1MTokens": {"input": 0.5, "output": 1.5},
        }
    ],
}
