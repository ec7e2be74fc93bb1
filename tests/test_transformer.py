"""Tests for record to catalog conversion and validation."""

import pytest

from provider_sync.config.schema import CostPer1M, Model, Provider
from provider_sync.core.transformer import ConfigTransformer, ExternalConfig


@pytest.fixture
def transformer():
    """A transformer instance."""
    return ConfigTransformer()


class TestToExternal:
    """Editor records to catalog."""

    def test_descriptor_shape(self, transformer, foapi_provider, gpt4o_model):
        """Scores are scaled to fractions and costs copied."""
        gpt4o_model.swe_score = 45

        external = transformer.to_external([foapi_provider], [gpt4o_model])

        assert external.supported_models == {
            "foapi": [{
                "id": "gpt-4o",
                "swe_score": 0.45,
                "cost_per_1m_tokens": {"input": 0.5, "output": 1.5},
                "allowed_roles": ["main", "fallback"],
                "max_tokens": 128000,
            }]
        }
        assert external.secrets == {"FOAPI_API_KEY": "fo-test-value"}
        assert external.providers["foapi"]["endpoint"] == "https://v2.voct.top"

    def test_provider_without_models_gets_empty_bucket(self, transformer, foapi_provider):
        """Every provider appears in the catalog."""
        foapi_provider.api_key = ""
        external = transformer.to_external([foapi_provider], [])

        assert external.supported_models == {"foapi": []}
        assert external.secrets == {}

    def test_defaults(self, transformer):
        """Missing roles, limits and scores fall back to defaults."""
        model = Model(id="m", name="o1", provider_id="p", model_id="o1")

        descriptor = transformer.model_to_descriptor(model, "foapi-o1", default_score=0)

        assert descriptor == {
            "id": "foapi-o1",
            "swe_score": 0,
            "cost_per_1m_tokens": {"input": 0, "output": 0},
            "allowed_roles": ["main", "fallback"],
            "max_tokens": 200000,
        }
        assert transformer.model_to_descriptor(model)["swe_score"] is None


class TestToInternal:
    """Catalog to editor records."""

    def test_round_trip(self, transformer, foapi_provider, gpt4o_model):
        """Converting back yields equivalent records with fresh ids."""
        gpt4o_model.swe_score = 33.2
        external = transformer.to_external([foapi_provider], [gpt4o_model])

        providers, models = transformer.to_internal(external)

        assert len(providers) == 1 and len(models) == 1
        provider, model = providers[0], models[0]
        assert provider.id != foapi_provider.id
        assert provider.id.startswith("provider_")
        assert (provider.name, provider.endpoint, provider.api_key) == (
            "FoApi", "https://v2.voct.top", "fo-test-value"
        )
        assert provider.is_valid
        assert model.provider_id == provider.id
        assert model.model_id == "gpt-4o"
        assert model.swe_score == pytest.approx(33.2)
        assert model.cost_per_1m_tokens == CostPer1M(input=0.5, output=1.5)

    def test_builtin_metadata(self, transformer):
        """Known keys get their display names and endpoints."""
        providers, models = transformer.to_internal({
            "supportedModels": {"openrouter": [{"id": "openrouter-meta/llama-3"}]}
        })

        assert providers[0].name == "OpenRouter"
        assert providers[0].endpoint == "https://openrouter.ai/api"
        assert providers[0].is_valid is False
        assert models[0].name == "llama-3"
        assert models[0].max_tokens == 200000

    def test_unknown_key(self, transformer):
        """Unknown keys get a capitalized name and a guessed endpoint."""
        providers, _ = transformer.to_internal(ExternalConfig(supported_models={"acme": []}))

        assert providers[0].name == "Acme"
        assert providers[0].endpoint == "https://api.acme.com"
        assert providers[0].type == "openai"

    def test_display_name_strips_prefix(self, transformer):
        """Prefixed catalog ids are shown without the key."""
        assert transformer.model_display_name("foapi-gpt-4o", "foapi") == "gpt-4o"
        assert transformer.model_display_name("gpt-4o", "foapi") == "gpt-4o"

    def test_model_map_restores_api_names(self, transformer):
        """Catalog ids listed in a stub's modelMap map back to API model names."""
        _, models = transformer.to_internal(ExternalConfig(
            supported_models={"foapi": [{"id": "foapi-gpt-4o"}, {"id": "o1"}]},
            providers={"foapi": {"modelMap": {"foapi-gpt-4o": "gpt-4o-2024-08-06"}}},
        ))

        assert [(m.name, m.model_id) for m in models] == [
            ("gpt-4o", "gpt-4o-2024-08-06"), ("o1", "o1")
        ]


class TestValidation:
    """validate and validate_external."""

    def test_valid(self, transformer, foapi_provider, gpt4o_model):
        """A consistent configuration has no errors."""
        result = transformer.validate([foapi_provider], [gpt4o_model])
        assert result.to_dict() == {"isValid": True, "errors": []}

    def test_missing_fields_and_references(self, transformer):
        """Each problem is reported with its position."""
        provider = Provider(id="p1", name="", endpoint="")
        model = Model(id="m1", name="", provider_id="ghost", model_id="")

        result = transformer.validate([provider], [model])

        assert not result.is_valid
        assert result.errors == [
            "Provider 1: Name is required",
            "Provider 1: Endpoint is required",
            "Model 1: Name is required",
            "Model 1: Model ID is required",
            "Model 1: Referenced provider not found",
        ]

    def test_key_collision(self, transformer):
        """Two providers may not share a key."""
        first = Provider(id="p1", name="FoApi", endpoint="https://a")
        second = Provider(id="p2", name="fo-api", endpoint="https://b")

        result = transformer.validate([first, second], [])

        assert result.errors == ["Provider 2: Provider key 'foapi' is already used"]

    def test_value_ranges(self, transformer, foapi_provider):
        """Out of range numbers and unknown roles are rejected."""
        model = Model(
            id="m1", name="x", provider_id=foapi_provider.id, model_id="x",
            max_tokens=0, swe_score=150, allowed_roles=["main"],
            cost_per_1m_tokens=CostPer1M(input=-1, output=0),
        )

        errors = transformer.validate([foapi_provider], [model]).errors

        assert "Model 1: Max tokens must be positive" in errors
        assert "Model 1: Costs must not be negative" in errors
        assert "Model 1: SWE score must be between 0 and 100" in errors

    @pytest.mark.parametrize("config,expected", [
        (None, ["Missing supportedModels section"]),
        ({"supportedModels": []}, ["supportedModels must be an object"]),
        ({"supported_models": {"foapi": {}}}, ["Provider foapi: Models must be an array"]),
        ({"supportedModels": {"foapi": [{"id": ""}]}}, ["Provider foapi, Model 1: ID is required"]),
        ({"supportedModels": {"foapi": [{"id": "foapi-o1"}]}}, []),
    ])
    def test_validate_external(self, transformer, config, expected):
        """The catalog shape is checked without raising."""
        assert transformer.validate_external(config).errors == expected
