"""Mapping between editor records and the TaskMaster file representation."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..config.schema import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_ROLES,
    CostPer1M,
    Model,
    ModelRole,
    Provider,
    make_provider_key,
)


PROVIDER_DISPLAY_NAMES = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "polo": "PoloAI",
    "poloai": "PoloAI",
    "foapi": "FoApi",
    "aoapi": "AoApi",
    "perplexity": "Perplexity",
    "xai": "xAI",
    "openrouter": "OpenRouter",
    "ollama": "Ollama",
    "whi": "Whi",
}

PROVIDER_ENDPOINTS = {
    "openai": "https://api.openai.com",
    "anthropic": "https://api.anthropic.com",
    "google": "https://generativelanguage.googleapis.com",
    "polo": "https://api.polo.ai",
    "poloai": "https://api.polo.ai",
    "foapi": "https://v2.voct.top",
    "aoapi": "https://api.aoapi.com",
    "perplexity": "https://api.perplexity.ai",
    "xai": "https://api.x.ai",
    "openrouter": "https://openrouter.ai/api",
    "ollama": "http://localhost:11434",
    "whi": "https://doi9.top",
}

PROVIDER_TYPES = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "google",
    "ollama": "custom",
}

_VALID_ROLES = {role.value for role in ModelRole}


@dataclass
class ExternalConfig:
    """TaskMaster-side view of the configuration.

    ``supported_models`` is the models catalog keyed by provider key,
    ``secrets`` maps ``<KEY>_API_KEY`` names to credentials and ``providers``
    optionally carries per-key ``name``/``endpoint``/``type``/``apiKey``
    overrides that the catalog itself cannot express, plus the stub's
    ``modelMap`` from catalog ids to API model names.
    """

    supported_models: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)
    providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "supportedModels": self.supported_models,
            "secrets": self.secrets,
            "providers": self.providers,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExternalConfig":
        """Build from a dictionary using snake_case or camelCase section names."""
        return cls(
            supported_models=dict(
                data.get("supported_models", data.get("supportedModels")) or {}
            ),
            secrets=dict(data.get("secrets") or {}),
            providers=dict(data.get("providers") or {}),
        )


@dataclass
class ValidationResult:
    """Outcome of a validation pass."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the editor's wire shape."""
        return {"isValid": self.is_valid, "errors": list(self.errors)}


class ConfigTransformer:
    """Stateless converter between editor records and TaskMaster files."""

    @staticmethod
    def provider_key(provider: Union[Provider, str]) -> str:
        """Provider key for a provider record or a bare name."""
        name = provider if isinstance(provider, str) else provider.name
        return make_provider_key(name)

    @staticmethod
    def env_var_name(provider_key: str) -> str:
        """Secrets-manifest variable name for a provider key."""
        return f"{provider_key.upper()}_API_KEY"

    @staticmethod
    def display_name(provider_key: str) -> str:
        """Human readable provider name for a key."""
        if provider_key in PROVIDER_DISPLAY_NAMES:
            return PROVIDER_DISPLAY_NAMES[provider_key]
        return provider_key[:1].upper() + provider_key[1:]

    @staticmethod
    def default_endpoint(provider_key: str) -> str:
        """Best-known API endpoint for a key."""
        return PROVIDER_ENDPOINTS.get(provider_key, f"https://api.{provider_key}.com")

    @staticmethod
    def provider_type(provider_key: str) -> str:
        """Provider API flavour for a key; OpenAI-compatible unless known otherwise."""
        return PROVIDER_TYPES.get(provider_key, "openai")

    @staticmethod
    def model_to_descriptor(
        model: Model,
        model_id: Optional[str] = None,
        default_score: Optional[float] = None
    ) -> Dict[str, Any]:
        """Catalog descriptor for a model.

        Args:
            model: Editor model record
            model_id: Catalog id to use instead of ``model.model_id``
            default_score: ``swe_score`` written when the model has none

        Returns:
            Dictionary with ``id``, ``swe_score``, ``cost_per_1m_tokens``,
            ``allowed_roles`` and ``max_tokens`` in that order
        """
        cost = model.cost_per_1m_tokens or CostPer1M()
        if model.swe_score is not None:
            swe_score = model.swe_score / 100
        else:
            swe_score = default_score
        return {
            "id": model_id or model.model_id,
            "swe_score": swe_score,
            "cost_per_1m_tokens": {
                "input": cost.input or 0,
                "output": cost.output or 0,
            },
            "allowed_roles": list(model.allowed_roles) or list(DEFAULT_ROLES),
            "max_tokens": model.max_tokens or DEFAULT_MAX_TOKENS,
        }

    def to_external(self, providers: List[Provider], models: List[Model]) -> ExternalConfig:
        """Convert editor records to the catalog and secrets map.

        Every provider gets a catalog bucket, empty when it has no models.
        """
        result = ExternalConfig()

        for provider in providers:
            key = self.provider_key(provider)
            result.supported_models[key] = [
                self.model_to_descriptor(model)
                for model in models
                if model.provider_id == provider.id
            ]
            result.providers[key] = {
                "name": provider.name,
                "endpoint": provider.endpoint,
                "type": provider.type,
            }
            if provider.api_key:
                result.secrets[self.env_var_name(key)] = provider.api_key

        return result

    def to_internal(
        self,
        external: Union[ExternalConfig, Mapping[str, Any]]
    ) -> Tuple[List[Provider], List[Model]]:
        """Rebuild editor records from the catalog.

        Surrogate ids are regenerated. Provider metadata comes from the
        ``providers`` overrides when present, otherwise from the built-in
        tables.
        """
        if not isinstance(external, ExternalConfig):
            external = ExternalConfig.from_mapping(external)

        providers: List[Provider] = []
        models: List[Model] = []

        for key, descriptors in external.supported_models.items():
            override = external.providers.get(key) or {}
            api_key = external.secrets.get(self.env_var_name(key)) or override.get("apiKey", "")
            provider = Provider(
                id=self._generate_id("provider"),
                name=override.get("name") or self.display_name(key),
                endpoint=override.get("endpoint") or self.default_endpoint(key),
                type=override.get("type") or self.provider_type(key),
                api_key=api_key,
                is_valid=bool(api_key),
            )
            providers.append(provider)

            for descriptor in descriptors or []:
                models.append(self._descriptor_to_model(
                    key, provider.id, descriptor, override.get("modelMap") or {}
                ))

        return providers, models

    def _descriptor_to_model(
        self,
        provider_key: str,
        provider_id: str,
        descriptor: Dict[str, Any],
        model_map: Optional[Mapping[str, str]] = None
    ) -> Model:
        catalog_id = descriptor["id"]
        model_id = (model_map or {}).get(catalog_id, catalog_id)
        cost = descriptor.get("cost_per_1m_tokens") or {}
        swe_score = descriptor.get("swe_score")
        return Model(
            id=self._generate_id("model"),
            name=self.model_display_name(catalog_id, provider_key),
            provider_id=provider_id,
            model_id=model_id,
            allowed_roles=descriptor.get("allowed_roles") or list(DEFAULT_ROLES),
            max_tokens=descriptor.get("max_tokens") or DEFAULT_MAX_TOKENS,
            cost_per_1m_tokens=CostPer1M(
                input=cost.get("input") or 0,
                output=cost.get("output") or 0,
            ),
            swe_score=round(swe_score * 100, 4) if swe_score is not None else None,
        )

    @staticmethod
    def model_display_name(model_id: str, provider_key: Optional[str] = None) -> str:
        """Model name shown in the editor: the last path segment without the key prefix."""
        name = model_id.split("/")[-1]
        if provider_key and name.startswith(f"{provider_key}-"):
            return name[len(provider_key) + 1:]
        return name

    @staticmethod
    def _generate_id(prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex[:12]}"

    def validate(self, providers: List[Provider], models: List[Model]) -> ValidationResult:
        """Check required fields, references and key uniqueness. Never raises."""
        errors: List[str] = []
        provider_ids = set()
        keys: Dict[str, str] = {}

        for index, provider in enumerate(providers, start=1):
            if not provider.name:
                errors.append(f"Provider {index}: Name is required")
            if not provider.endpoint:
                errors.append(f"Provider {index}: Endpoint is required")
            if not provider.type:
                errors.append(f"Provider {index}: Type is required")
            provider_ids.add(provider.id)

            key = self.provider_key(provider)
            if provider.name and not key:
                errors.append(f"Provider {index}: Name must contain letters or digits")
            elif key in keys and keys[key] != provider.id:
                errors.append(f"Provider {index}: Provider key '{key}' is already used")
            elif key:
                keys[key] = provider.id

        seen_model_ids = set()
        for index, model in enumerate(models, start=1):
            if not model.name:
                errors.append(f"Model {index}: Name is required")
            if not model.model_id:
                errors.append(f"Model {index}: Model ID is required")
            elif model.model_id in seen_model_ids:
                errors.append(f"Model {index}: Model ID '{model.model_id}' is not unique")
            seen_model_ids.add(model.model_id)
            if not model.provider_id:
                errors.append(f"Model {index}: Provider ID is required")
            elif model.provider_id not in provider_ids:
                errors.append(f"Model {index}: Referenced provider not found")
            errors.extend(
                f"Model {index}: {problem}" for problem in self._model_value_errors(model)
            )

        return ValidationResult(not errors, errors)

    @staticmethod
    def _model_value_errors(model: Model) -> List[str]:
        problems = []
        if model.max_tokens is not None and model.max_tokens <= 0:
            problems.append("Max tokens must be positive")
        cost = model.cost_per_1m_tokens
        if cost and ((cost.input or 0) < 0 or (cost.output or 0) < 0):
            problems.append("Costs must not be negative")
        if model.swe_score is not None and not 0 <= model.swe_score <= 100:
            problems.append("SWE score must be between 0 and 100")
        unknown = [role for role in model.allowed_roles if role not in _VALID_ROLES]
        if unknown:
            problems.append(f"Unknown roles: {', '.join(map(str, unknown))}")
        return problems

    def validate_external(
        self,
        config: Union[ExternalConfig, Mapping[str, Any], None]
    ) -> ValidationResult:
        """Check the catalog shape. Never raises."""
        errors: List[str] = []

        if isinstance(config, ExternalConfig):
            supported = config.supported_models
        elif isinstance(config, Mapping):
            supported = config.get("supported_models", config.get("supportedModels"))
        else:
            supported = None

        if supported is None:
            errors.append("Missing supportedModels section")
        elif not isinstance(supported, Mapping):
            errors.append("supportedModels must be an object")
        else:
            for key, descriptors in supported.items():
                if not isinstance(descriptors, list):
                    errors.append(f"Provider {key}: Models must be an array")
                    continue
                for index, descriptor in enumerate(descriptors, start=1):
                    if not isinstance(descriptor, Mapping) or not descriptor.get("id"):
                        errors.append(f"Provider {key}, Model {index}: ID is required")

        return ValidationResult(not errors, errors)
