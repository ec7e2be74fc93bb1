"""Provider validation, connection tests and remote model discovery."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base import ModelInfo, NetworkError, NetworkErrorKind
from .network import NetworkClient
from ..config.schema import Provider, ProviderType
from ..config.settings import get_settings
from ..performance.async_optimizer import ConcurrentExecutor
from ..utils.logging import get_logger, mask_secret


ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_CHECK_MODEL = "claude-3-haiku-20240307"

_KEYLESS_TYPES = (ProviderType.CUSTOM.value, ProviderType.OLLAMA.value)

_ERROR_MESSAGES = {
    NetworkErrorKind.TIMEOUT: "Request timed out",
    NetworkErrorKind.AUTH: "API key is invalid or expired",
    NetworkErrorKind.PERMISSION: "API access denied, check the key's permissions",
    NetworkErrorKind.RATE_LIMIT: "Rate limited by the provider, try again later",
    NetworkErrorKind.NOT_FOUND: "Endpoint not found, check the URL",
}


class ProviderCheckError(Exception):
    """Raised when a provider cannot be queried for its models."""
    pass


@dataclass
class ProviderTestResult:
    """Result of validating or probing a provider."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the editor's camelCase wire shape."""
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "message": self.message,
            "details": dict(self.details),
        }


def _base_url(endpoint: str) -> str:
    return (endpoint or "").rstrip("/")


def _as_cost(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        cost = float(value)
    except (TypeError, ValueError):
        return None
    if cost != cost or cost < 0:
        return None
    return cost


def extract_cost(model: Dict[str, Any], cost_type: str) -> Optional[float]:
    """Find an ``input`` or ``output`` price in a provider's model record.

    Providers spell price fields differently; flat fields such as
    ``input_cost``, ``inputCost``, ``cost_per_1m_tokens_input`` and
    ``costPer1MTokensInput`` are tried first, then the generic ``pricing``,
    ``cost`` and ``price`` values, then nested ``pricing.<type>`` and
    ``cost_per_1m_tokens.<type>`` objects.

    Args:
        model: Raw model record
        cost_type: ``"input"`` or ``"output"``

    Returns:
        The first non-negative number found, or None
    """
    candidates = [
        f"{cost_type}_cost",
        f"{cost_type}Cost",
        f"cost_per_1m_tokens_{cost_type}",
        f"costPer1MTokens{cost_type.capitalize()}",
        "pricing",
        "cost",
        "price",
    ]
    for name in candidates:
        cost = _as_cost(model.get(name))
        if cost is not None:
            return cost

    for container in ("pricing", "cost_per_1m_tokens"):
        nested = model.get(container)
        if isinstance(nested, dict):
            cost = _as_cost(nested.get(cost_type))
            if cost is not None:
                return cost

    return None


def _model_info(model_id: str, name: str, raw: Dict[str, Any]) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        max_tokens=raw.get("max_tokens") or raw.get("maxTokens") or 4096,
        input_cost=extract_cost(raw, "input") or 0.001,
        output_cost=extract_cost(raw, "output") or 0.001,
        swe_score=raw.get("swe_score") or 0.3,
        extra=raw,
    )


def parse_models_response(data: Any) -> List[ModelInfo]:
    """Normalize a ``/v1/models`` payload.

    OpenAI-style payloads carry ``{"data": [{"id": ...}]}``; Google-style
    payloads carry ``{"models": [{"name": "models/<id>", "displayName": ...}]}``.
    Anything else yields an empty list.
    """
    models: List[ModelInfo] = []
    if not isinstance(data, dict):
        return models

    if isinstance(data.get("data"), list):
        for raw in data["data"]:
            if isinstance(raw, dict) and isinstance(raw.get("id"), str) and raw["id"]:
                models.append(_model_info(raw["id"], raw["id"], raw))
    elif isinstance(data.get("models"), list):
        for raw in data["models"]:
            if isinstance(raw, dict) and raw.get("name"):
                model_id = str(raw["name"]).split("/")[-1]
                models.append(_model_info(model_id, raw.get("displayName") or model_id, raw))

    return models


class ProviderValidator:
    """Validates provider records and checks their APIs."""

    def __init__(self, network_client: Optional[NetworkClient] = None):
        """Initialize the validator.

        Args:
            network_client: Client used for connection checks; defaults to the API test profile
        """
        self.network_client = network_client or NetworkClient.create_api_test_client()
        self.logger = get_logger(self.__class__.__name__)

    def validate_provider(self, provider: Optional[Provider]) -> ProviderTestResult:
        """Check required fields without any network access."""
        if provider is None:
            return ProviderTestResult(False, ["Provider is required"])

        errors = []
        for label, value in (("name", provider.name), ("endpoint", provider.endpoint)):
            if not value or not value.strip():
                errors.append(f"Provider {label} is required")
        if not provider.type:
            errors.append("Provider type is required")
        if errors:
            return ProviderTestResult(False, errors)

        if not provider.api_key and provider.type not in _KEYLESS_TYPES:
            errors.append("An API key is required for this provider type")

        return ProviderTestResult(not errors, errors)

    def validate_provider_models(self, descriptors: Any) -> ProviderTestResult:
        """Check catalog descriptors for a provider bucket."""
        if not isinstance(descriptors, list):
            return ProviderTestResult(False, ["Models must be a list"])

        errors = []
        for index, descriptor in enumerate(descriptors, start=1):
            if not isinstance(descriptor, dict):
                errors.append(f"Model {index}: must be an object")
                continue
            if not isinstance(descriptor.get("id"), str) or not descriptor["id"]:
                errors.append(f"Model {index}: id is required and must be a string")
            score = descriptor.get("swe_score")
            if score is not None and (
                isinstance(score, bool) or not isinstance(score, (int, float))
                or not 0 <= score <= 1
            ):
                errors.append(f"Model {index}: swe_score must be a number between 0 and 1")
            max_tokens = descriptor.get("max_tokens")
            if max_tokens is not None and (not isinstance(max_tokens, int) or max_tokens < 1):
                errors.append(f"Model {index}: max_tokens must be a positive integer")
            roles = descriptor.get("allowed_roles")
            if roles is not None and not isinstance(roles, list):
                errors.append(f"Model {index}: allowed_roles must be a list")

        return ProviderTestResult(not errors, errors)

    async def test_provider_connection(self, provider: Provider) -> ProviderTestResult:
        """Validate the record, then call the provider's API.

        Never raises; failures are described in the returned result.
        """
        validation = self.validate_provider(provider)
        if not validation.is_valid:
            return validation

        start_time = time.perf_counter()
        try:
            if provider.type == ProviderType.ANTHROPIC.value:
                result = await self._test_anthropic(provider)
            elif provider.type == ProviderType.CUSTOM.value:
                result = await self._test_custom(provider)
            else:
                result = await self._test_models_endpoint(provider)
        except NetworkError as e:
            result = self._failure(provider, e, self._check_url(provider))

        result.details["duration_ms"] = int((time.perf_counter() - start_time) * 1000)
        result.details["timestamp"] = datetime.now(timezone.utc).isoformat()

        self.logger.info(
            "Provider connection tested",
            provider=provider.name,
            api_key=mask_secret(provider.api_key),
            is_valid=result.is_valid,
            status=result.details.get("status")
        )
        return result

    def _check_url(self, provider: Provider) -> str:
        if provider.type == ProviderType.ANTHROPIC.value:
            return f"{_base_url(provider.endpoint)}/v1/messages"
        if provider.type == ProviderType.CUSTOM.value:
            return provider.endpoint
        return f"{_base_url(provider.endpoint)}/v1/models"

    @staticmethod
    def _bearer_headers(provider: Provider) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {provider.api_key or ''}",
            "Content-Type": "application/json",
        }

    async def _test_models_endpoint(self, provider: Provider) -> ProviderTestResult:
        url = self._check_url(provider)
        response = await self.network_client.get(url, headers=self._bearer_headers(provider))
        try:
            data = response.json()
        except ValueError:
            data = {}
        return ProviderTestResult(
            True,
            message=f"{provider.name} API connection succeeded",
            details={
                "status": response.status,
                "models_count": len(parse_models_response(data)),
                "endpoint": url,
            }
        )

    async def _test_anthropic(self, provider: Provider) -> ProviderTestResult:
        url = self._check_url(provider)
        try:
            response = await self.network_client.post(
                url,
                {
                    "model": ANTHROPIC_CHECK_MODEL,
                    "max_tokens": 10,
                    "messages": [{"role": "user", "content": "test"}],
                },
                headers={"x-api-key": provider.api_key, "anthropic-version": ANTHROPIC_VERSION}
            )
            status = response.status
        except NetworkError as e:
            # A rejected test message still proves the endpoint and key work
            if e.status != 400:
                raise
            status = e.status

        return ProviderTestResult(
            True,
            message=f"{provider.name} API connection succeeded",
            details={"status": status, "endpoint": url}
        )

    async def _test_custom(self, provider: Provider) -> ProviderTestResult:
        response = await self.network_client.get(
            provider.endpoint,
            headers=self._bearer_headers(provider),
            timeout=10.0,
            retries=1
        )
        return ProviderTestResult(
            True,
            message=f"{provider.name} connection succeeded",
            details={"status": response.status, "endpoint": provider.endpoint}
        )

    @staticmethod
    def _failure(provider: Provider, error: NetworkError, url: str) -> ProviderTestResult:
        if error.kind == NetworkErrorKind.SERVER:
            message = f"Server error ({error.status})"
        else:
            message = _ERROR_MESSAGES.get(error.kind, str(error))
        return ProviderTestResult(
            False,
            [message],
            message=f"{provider.name} connection failed",
            details={
                "error": str(error),
                "error_type": error.kind.value,
                "status": error.status,
                "endpoint": url,
            }
        )

    async def fetch_models(self, provider: Provider) -> List[ModelInfo]:
        """List the models a provider's API reports.

        Raises:
            ProviderCheckError: If the provider lacks an endpoint or key, or
                its type has no model listing API
            NetworkError: If the request fails
        """
        if not provider.endpoint:
            raise ProviderCheckError("Provider endpoint is required to list models")
        if provider.type == ProviderType.ANTHROPIC.value:
            raise ProviderCheckError("Anthropic does not offer a model listing API")
        if not provider.api_key and provider.type not in _KEYLESS_TYPES:
            raise ProviderCheckError("Provider API key is required to list models")

        url = f"{_base_url(provider.endpoint)}/v1/models"
        response = await self.network_client.get(
            url, headers=self._bearer_headers(provider), timeout=15.0, retries=2
        )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderCheckError(f"Model list from {url} is not valid JSON: {e}")

        models = parse_models_response(data)
        self.logger.info("Fetched provider models", provider=provider.name, count=len(models))
        return models

    async def fetch_models_batch(
        self,
        providers: List[Provider],
        concurrency: Optional[int] = None
    ) -> Dict[str, Any]:
        """Fetch model lists for several providers concurrently.

        Args:
            providers: Providers to query
            concurrency: Requests in flight at once; defaults to the
                ``network.model_fetch_concurrency`` setting

        Returns:
            Mapping of provider id to a list of ModelInfo or the raised exception
        """
        executor = ConcurrentExecutor(
            max_concurrent=concurrency or get_settings().network.model_fetch_concurrency
        )

        def _task(provider: Provider):
            async def _run():
                return await self.fetch_models(provider)
            return _run

        results = await executor.execute_batch(
            [_task(p) for p in providers], return_exceptions=True
        )
        return {provider.id: result for provider, result in zip(providers, results)}
