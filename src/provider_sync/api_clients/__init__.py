"""API clients package for outbound provider HTTP calls."""

from .base import (
    NetworkError,
    NetworkErrorKind,
    HTTPResponse,
    ModelInfo
)
from .network import NetworkClient, ConnectionTestResult
from .provider_check import (
    ProviderValidator,
    ProviderTestResult,
    ProviderCheckError,
    parse_models_response,
    extract_cost
)

__all__ = [
    "NetworkError",
    "NetworkErrorKind",
    "HTTPResponse",
    "ModelInfo",
    "NetworkClient",
    "ConnectionTestResult",
    "ProviderValidator",
    "ProviderTestResult",
    "ProviderCheckError",
    "parse_models_response",
    "extract_cost"
]
