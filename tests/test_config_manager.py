"""Tests for the editor configuration store."""

import json

import pytest
import yaml

from provider_sync.config.loader import ConfigLoader, ConfigurationError
from provider_sync.config.manager import ConfigManager
from provider_sync.config.schema import UIConfig, make_provider_key
from provider_sync.config.settings import (
    LoggingSettings,
    NetworkSettings,
    ProjectSettings,
    get_settings,
)


def provider_data(name="FoApi", **overrides):
    """camelCase provider payload as sent by the editor."""
    data = {"name": name, "endpoint": "https://v2.voct.top", "apiKey": "fo-test-value",
            "type": "openai"}
    data.update(overrides)
    return data


class TestProviderKey:
    """Provider key normalization."""

    @pytest.mark.parametrize("name,key", [
        ("FoApi", "foapi"),
        ("Fo Api", "foapi"),
        ("Open-Router 2", "openrouter2"),
        ("!!!", ""),
        ("", ""),
    ])
    def test_make_provider_key(self, name, key):
        """Lowercase, alphanumerics only."""
        assert make_provider_key(name) == key


class TestProviders:
    """Provider management."""

    def test_add_generates_id(self):
        """Missing ids are generated."""
        manager = ConfigManager()
        provider = manager.add_provider(provider_data())

        assert provider.id.startswith("provider_")
        assert provider.api_key == "fo-test-value"
        assert manager.get_provider(provider.id) is provider
        assert manager.get_provider_by_key("foapi") is provider

    def test_duplicate_name_rejected(self):
        """Names are unique."""
        manager = ConfigManager()
        manager.add_provider(provider_data())

        with pytest.raises(ConfigurationError, match="already exists"):
            manager.add_provider(provider_data())

    def test_key_collision_rejected(self):
        """Names normalizing to the same key are rejected."""
        manager = ConfigManager()
        manager.add_provider(provider_data("FoApi"))

        with pytest.raises(ConfigurationError, match="collides"):
            manager.add_provider(provider_data("Fo-Api"))

    def test_name_without_key_rejected(self):
        """A name needs at least one letter or digit."""
        with pytest.raises(ConfigurationError):
            ConfigManager().add_provider(provider_data("***"))

    def test_invalid_payload(self):
        """Schema errors become configuration errors."""
        with pytest.raises(ConfigurationError, match="Invalid provider"):
            ConfigManager().add_provider(provider_data(type="telepathy"))

    def test_update_keeps_position(self):
        """Updates replace the record in place."""
        manager = ConfigManager()
        first = manager.add_provider(provider_data("FoApi"))
        manager.add_provider(provider_data("WhiApi"))

        updated = manager.update_provider({**provider_data("FoApi2"), "id": first.id})

        assert [p.name for p in manager.providers] == ["FoApi2", "WhiApi"]
        assert updated.provider_key == "foapi2"

    def test_update_unknown(self):
        """Unknown ids cannot be updated."""
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigManager().update_provider({**provider_data(), "id": "nope"})

    def test_delete_cascades_to_models(self):
        """Deleting a provider removes its models."""
        manager = ConfigManager()
        foapi = manager.add_provider(provider_data("FoApi"))
        whi = manager.add_provider(provider_data("WhiApi"))
        manager.add_model({"name": "GPT-4o", "providerId": foapi.id, "modelId": "gpt-4o"})
        manager.add_model({"name": "o1", "providerId": whi.id, "modelId": "o1"})

        removed = manager.delete_provider(foapi.id)

        assert removed.id == foapi.id
        assert [m.model_id for m in manager.models] == ["o1"]


class TestModels:
    """Model management."""

    def test_model_id_unique_across_providers(self):
        """The same modelId cannot be used twice."""
        manager = ConfigManager()
        foapi = manager.add_provider(provider_data("FoApi"))
        whi = manager.add_provider(provider_data("WhiApi"))
        manager.add_model({"name": "GPT-4o", "providerId": foapi.id, "modelId": "gpt-4o"})

        with pytest.raises(ConfigurationError, match="gpt-4o"):
            manager.add_model({"name": "GPT-4o", "providerId": whi.id, "modelId": "gpt-4o"})

    def test_unknown_provider(self):
        """Models must belong to a configured provider."""
        with pytest.raises(ConfigurationError, match="Provider not found"):
            ConfigManager().add_model({"name": "x", "providerId": "ghost", "modelId": "x"})

    def test_lookup_and_delete(self):
        """Models are found by id, provider and role."""
        manager = ConfigManager()
        foapi = manager.add_provider(provider_data())
        model = manager.add_model({
            "name": "GPT-4o", "providerId": foapi.id, "modelId": "gpt-4o",
            "allowedRoles": ["research"],
        })

        assert manager.get_model(model.id) is model
        assert manager.get_models_by_provider(foapi.id) == [model]
        assert manager.get_models_by_role("research") == [model]
        assert manager.get_models_by_role("main") == []

        assert manager.delete_model(model.id) is model
        with pytest.raises(ConfigurationError):
            manager.delete_model(model.id)

    def test_update_model(self):
        """Models can be edited; their modelId stays unique."""
        manager = ConfigManager()
        foapi = manager.add_provider(provider_data())
        gpt = manager.add_model({"name": "GPT-4o", "providerId": foapi.id, "modelId": "gpt-4o"})
        manager.add_model({"name": "o1", "providerId": foapi.id, "modelId": "o1"})

        updated = manager.update_model({**gpt.model_dump(by_alias=True), "maxTokens": 4096})
        assert manager.get_model(gpt.id).max_tokens == 4096
        assert updated.model_id == "gpt-4o"

        with pytest.raises(ConfigurationError, match="o1"):
            manager.update_model({**gpt.model_dump(by_alias=True), "modelId": "o1"})


class TestPersistence:
    """Saving and loading configuration files."""

    @pytest.mark.parametrize("filename", ["providers.json", "providers.yaml"])
    def test_auto_save_and_reload(self, tmp_path, filename):
        """Changes are saved and read back by a new manager."""
        config_file = tmp_path / "data" / filename
        manager = ConfigManager(config_file)
        provider = manager.add_provider(provider_data())
        manager.add_model({"name": "GPT-4o", "providerId": provider.id, "modelId": "gpt-4o",
                           "costPer1MTokens": {"input": 0.5, "output": 1.5}})
        manager.set_project_path("/path/to/taskmaster")

        reloaded = ConfigManager(config_file)
        config = reloaded.load_config()

        assert config.project_path == "/path/to/taskmaster"
        assert reloaded.providers[0].name == "FoApi"
        assert reloaded.models[0].cost_per_1m_tokens.output == 1.5

    def test_saved_json_uses_camel_case(self, tmp_path):
        """Files use the editor's field names."""
        config_file = tmp_path / "providers.json"
        manager = ConfigManager(config_file)
        manager.add_provider(provider_data())

        saved = json.loads(config_file.read_text())

        assert saved["providers"][0]["apiKey"] == "fo-test-value"
        assert "projectPath" in saved

    def test_missing_file_loads_empty(self, tmp_path):
        """No file means an empty configuration."""
        config = ConfigManager(tmp_path / "absent.json").load_config()
        assert config == UIConfig()

    def test_export_configuration(self):
        """Exports carry a timestamp."""
        manager = ConfigManager()
        manager.add_provider(provider_data())

        exported = manager.export_configuration()

        assert exported["providers"][0]["name"] == "FoApi"
        assert "exportedAt" in exported

    def test_import_configuration(self):
        """Imports replace everything."""
        manager = ConfigManager()
        manager.add_provider(provider_data("Old"))

        manager.import_configuration(
            [{"id": "provider_1", **provider_data()}],
            [{"id": "model_1", "name": "GPT-4o", "providerId": "provider_1", "modelId": "gpt-4o"}],
        )

        assert [p.id for p in manager.providers] == ["provider_1"]
        assert manager.get_models_by_provider("provider_1")[0].id == "model_1"

    def test_invalid_project_path(self):
        """Blank project paths are rejected."""
        with pytest.raises(ConfigurationError):
            ConfigManager().set_project_path("  ")


class TestLoader:
    """ConfigLoader error handling."""

    def test_invalid_json(self, tmp_path):
        """Malformed JSON is reported."""
        path = tmp_path / "broken.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            ConfigLoader().load_from_file(path)

    def test_invalid_yaml(self, tmp_path):
        """Malformed YAML is reported."""
        path = tmp_path / "broken.yaml"
        path.write_text("providers: [\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigLoader().load_from_file(path)

    def test_unsupported_suffix(self, tmp_path):
        """Only JSON and YAML files are read."""
        path = tmp_path / "config.toml"
        path.write_text("x = 1")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            ConfigLoader().load_from_file(path)

    def test_missing_file(self, tmp_path):
        """A missing file is an error for the loader."""
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader().load_from_file(tmp_path / "none.json")

    def test_schema_errors(self):
        """Invalid records are rejected."""
        with pytest.raises(ConfigurationError):
            ConfigLoader().load_from_dict({"providers": [{"name": "no id"}]})
        with pytest.raises(ConfigurationError):
            ConfigLoader().load_from_dict(["not", "an", "object"])

    def test_yaml_round_trip(self, tmp_path):
        """YAML output is readable by PyYAML."""
        path = tmp_path / "providers.yml"
        loader = ConfigLoader()
        loader.save_to_file(loader.load_from_dict({"version": "1.0.0"}), path)

        assert yaml.safe_load(path.read_text())["version"] == "1.0.0"


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self):
        """Network defaults match the documented retry policy."""
        network = NetworkSettings()
        assert network.timeout_seconds == 30
        assert network.retries == 3
        assert network.max_retry_delay_seconds == 10
        assert ProjectSettings().capability_key == "taskmaster-project"

    def test_environment_overrides(self, monkeypatch):
        """Each section reads its own prefix."""
        monkeypatch.setenv("NETWORK_RETRIES", "5")
        monkeypatch.setenv("LOG_FORMAT", "console")

        assert NetworkSettings().retries == 5
        assert LoggingSettings().format == "console"

    def test_global_instance(self):
        """The application settings are shared."""
        assert get_settings() is get_settings()
