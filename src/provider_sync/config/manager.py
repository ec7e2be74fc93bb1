"""Configuration manager for the editor's providers and models."""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from .schema import Model, Provider, UIConfig
from .loader import ConfigLoader, ConfigurationError
from ..utils.logging import get_logger, log_execution_time


class ConfigManager:
    """Keeps the provider/model configuration and enforces its uniqueness rules.

    Provider names must be unique and must not normalize to the same provider
    key as another provider. Model ids (``modelId``) are unique across all
    providers. Deleting a provider removes its models.
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None, auto_save: bool = True):
        """Initialize configuration manager.

        Args:
            config_file: Optional JSON/YAML file the configuration is persisted to
            auto_save: Save to ``config_file`` after every change
        """
        self.config_file = Path(config_file) if config_file else None
        self.auto_save = auto_save
        self.loader = ConfigLoader()
        self.logger = get_logger(self.__class__.__name__)

        self._config = UIConfig()
        self._config_loaded_at: Optional[datetime] = None

    @property
    def providers(self) -> List[Provider]:
        """All configured providers."""
        return list(self._config.providers)

    @property
    def models(self) -> List[Model]:
        """All configured models."""
        return list(self._config.models)

    @property
    def project_path(self) -> Optional[str]:
        """Saved path of the external project."""
        return self._config.project_path

    @log_execution_time
    def load_config(self) -> UIConfig:
        """Load configuration from ``config_file`` if it exists."""
        if self.config_file and self.config_file.exists():
            self._config = self.loader.load_from_file(self.config_file)
        else:
            self._config = UIConfig()

        self._config_loaded_at = datetime.now(timezone.utc)
        return self._config

    def save_config(self) -> None:
        """Write the configuration to ``config_file``."""
        if self.config_file:
            self.loader.save_to_file(self._config, self.config_file)

    def _changed(self) -> None:
        if self.auto_save:
            self.save_config()

    @staticmethod
    def generate_id(prefix: str) -> str:
        """Generate a surrogate id such as ``provider_3f2a9c1d``."""
        return f"{prefix}_{uuid.uuid4().hex[:12]}"

    # Provider management

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        """Get a provider by surrogate id."""
        return next((p for p in self._config.providers if p.id == provider_id), None)

    def get_provider_by_key(self, provider_key: str) -> Optional[Provider]:
        """Get a provider by its external provider key."""
        return next(
            (p for p in self._config.providers if p.provider_key == provider_key), None
        )

    def _check_provider_name(self, provider: Provider) -> None:
        if not provider.name or not provider.name.strip():
            raise ConfigurationError("Provider name is required")
        if not provider.provider_key:
            raise ConfigurationError(
                f"Provider name '{provider.name}' has no letters or digits to build a key from"
            )
        for other in self._config.providers:
            if other.id == provider.id:
                continue
            if other.name == provider.name:
                raise ConfigurationError(f"Provider name already exists: {provider.name}")
            if other.provider_key == provider.provider_key:
                raise ConfigurationError(
                    f"Provider '{provider.name}' collides with '{other.name}' "
                    f"on key '{provider.provider_key}'"
                )

    def add_provider(self, data: Union[Provider, Dict[str, Any]]) -> Provider:
        """Add a provider.

        Args:
            data: Provider record or its camelCase dictionary form; a missing
                ``id`` is generated

        Returns:
            The stored provider

        Raises:
            ConfigurationError: If the name is empty, duplicated or collides
                with another provider's key
        """
        provider = self._coerce_provider(data)
        if self.get_provider(provider.id):
            raise ConfigurationError(f"Provider id already exists: {provider.id}")
        self._check_provider_name(provider)

        self._config.providers.append(provider)
        self._changed()
        self.logger.info(
            "Provider added", provider_id=provider.id, provider_key=provider.provider_key
        )
        return provider

    def update_provider(self, data: Union[Provider, Dict[str, Any]]) -> Provider:
        """Replace an existing provider, keeping its position."""
        provider = self._coerce_provider(data)
        index = self._index_of(self._config.providers, provider.id)
        if index is None:
            raise ConfigurationError(f"Provider not found: {provider.id}")
        self._check_provider_name(provider)

        self._config.providers[index] = provider
        self._changed()
        self.logger.info("Provider updated", provider_id=provider.id)
        return provider

    def delete_provider(self, provider_id: str) -> Provider:
        """Delete a provider together with all of its models.

        Returns:
            The removed provider
        """
        index = self._index_of(self._config.providers, provider_id)
        if index is None:
            raise ConfigurationError(f"Provider not found: {provider_id}")

        removed = self._config.providers.pop(index)
        self._config.models = [m for m in self._config.models if m.provider_id != provider_id]
        self._changed()
        self.logger.info("Provider deleted", provider_id=provider_id)
        return removed

    # Model management

    def get_model(self, model_id: str) -> Optional[Model]:
        """Get a model by surrogate id."""
        return next((m for m in self._config.models if m.id == model_id), None)

    def get_models_by_provider(self, provider_id: str) -> List[Model]:
        """Get the models belonging to a provider."""
        return [m for m in self._config.models if m.provider_id == provider_id]

    def get_models_by_role(self, role: str) -> List[Model]:
        """Get the models allowed to take the given role."""
        return [m for m in self._config.models if role in m.allowed_roles]

    def _check_model(self, model: Model) -> None:
        if not model.name or not model.name.strip():
            raise ConfigurationError("Model name is required")
        if not self.get_provider(model.provider_id):
            raise ConfigurationError(f"Provider not found: {model.provider_id}")
        if any(m.model_id == model.model_id and m.id != model.id for m in self._config.models):
            raise ConfigurationError(
                f"Model id already exists in the configuration: {model.model_id}"
            )

    def add_model(self, data: Union[Model, Dict[str, Any]]) -> Model:
        """Add a model to an existing provider.

        Raises:
            ConfigurationError: If the name is empty, the provider is unknown
                or the ``modelId`` is already used by any provider
        """
        model = self._coerce_model(data)
        if self.get_model(model.id):
            raise ConfigurationError(f"Model id already exists: {model.id}")
        self._check_model(model)

        self._config.models.append(model)
        self._changed()
        self.logger.info("Model added", model_id=model.model_id, provider_id=model.provider_id)
        return model

    def update_model(self, data: Union[Model, Dict[str, Any]]) -> Model:
        """Replace an existing model."""
        model = self._coerce_model(data)
        index = self._index_of(self._config.models, model.id)
        if index is None:
            raise ConfigurationError(f"Model not found: {model.id}")
        self._check_model(model)

        self._config.models[index] = model
        self._changed()
        return model

    def delete_model(self, model_id: str) -> Model:
        """Delete a model and return it."""
        index = self._index_of(self._config.models, model_id)
        if index is None:
            raise ConfigurationError(f"Model not found: {model_id}")

        removed = self._config.models.pop(index)
        self._changed()
        self.logger.info("Model deleted", model_id=removed.model_id)
        return removed

    # Import/Export

    def import_configuration(
        self,
        providers: List[Union[Provider, Dict[str, Any]]],
        models: List[Union[Model, Dict[str, Any]]]
    ) -> UIConfig:
        """Replace the whole configuration without uniqueness checks."""
        self._config.providers = [self._coerce_provider(p) for p in providers or []]
        self._config.models = [self._coerce_model(m) for m in models or []]
        self._changed()
        self.logger.info(
            "Configuration imported",
            providers_count=len(self._config.providers),
            models_count=len(self._config.models)
        )
        return self._config

    def export_configuration(self) -> Dict[str, Any]:
        """Export the configuration in its camelCase form with a timestamp."""
        data = self.loader.to_dict(self._config)
        data["exportedAt"] = datetime.now(timezone.utc).isoformat()
        return data

    def set_project_path(self, project_path: str) -> None:
        """Remember the external project path."""
        if not project_path or not str(project_path).strip():
            raise ConfigurationError("Invalid project path")
        self._config.project_path = str(project_path)
        self._changed()

    # Helpers

    @staticmethod
    def _index_of(items: List[Any], item_id: str) -> Optional[int]:
        for index, item in enumerate(items):
            if item.id == item_id:
                return index
        return None

    def _coerce_provider(self, data: Union[Provider, Dict[str, Any]]) -> Provider:
        if isinstance(data, Provider):
            return data
        payload = dict(data)
        payload.setdefault("id", self.generate_id("provider"))
        try:
            return Provider.model_validate(payload)
        except ValueError as e:
            raise ConfigurationError(f"Invalid provider: {e}")

    def _coerce_model(self, data: Union[Model, Dict[str, Any]]) -> Model:
        if isinstance(data, Model):
            return data
        payload = dict(data)
        payload.setdefault("id", self.generate_id("model"))
        try:
            return Model.model_validate(payload)
        except ValueError as e:
            raise ConfigurationError(f"Invalid model: {e}")