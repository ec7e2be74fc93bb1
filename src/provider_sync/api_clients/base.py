"""Common HTTP types and errors shared by the API clients."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class NetworkErrorKind(str, Enum):
    """Classification of a failed HTTP exchange."""
    TIMEOUT = "timeout"
    NETWORK = "network"
    AUTH = "auth"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NOT_FOUND = "not_found"
    CLIENT = "client"


RETRYABLE_KINDS = {
    NetworkErrorKind.TIMEOUT,
    NetworkErrorKind.NETWORK,
    NetworkErrorKind.RATE_LIMIT,
    NetworkErrorKind.SERVER,
}


class NetworkError(Exception):
    """Raised when an HTTP request fails after its retry budget."""

    def __init__(
        self,
        message: str,
        kind: NetworkErrorKind,
        status: Optional[int] = None,
        url: Optional[str] = None,
        body: Optional[str] = None
    ):
        """Initialize the error.

        Args:
            message: Human readable description
            kind: Failure classification
            status: HTTP status when a response was received
            url: Requested URL
            body: Response body text, if any
        """
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.url = url
        self.body = body

    @property
    def retryable(self) -> bool:
        """Whether the request may succeed when repeated."""
        return self.kind in RETRYABLE_KINDS

    @classmethod
    def from_status(cls, status: int, url: str, body: str = "") -> "NetworkError":
        """Build an error for a non-2xx HTTP status."""
        if status == 401:
            kind = NetworkErrorKind.AUTH
        elif status == 403:
            kind = NetworkErrorKind.PERMISSION
        elif status == 404:
            kind = NetworkErrorKind.NOT_FOUND
        elif status == 408:
            kind = NetworkErrorKind.TIMEOUT
        elif status == 429:
            kind = NetworkErrorKind.RATE_LIMIT
        elif status >= 500:
            kind = NetworkErrorKind.SERVER
        else:
            kind = NetworkErrorKind.CLIENT
        return cls(f"HTTP {status} from {url}", kind, status=status, url=url, body=body)


@dataclass
class HTTPResponse:
    """A fully read HTTP response."""

    status: int
    headers: Dict[str, str]
    body: bytes
    url: str = ""
    attempts: int = 1

    @property
    def ok(self) -> bool:
        """True for 2xx statuses."""
        return 200 <= self.status < 300

    def text(self) -> str:
        """Decode the body as UTF-8."""
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON."""
        return json.loads(self.text() or "null")


@dataclass
class ModelInfo:
    """Normalized description of a model reported by a provider API."""

    id: str
    name: str
    max_tokens: int = 4096
    input_cost: float = 0.001
    output_cost: float = 0.001
    swe_score: float = 0.3
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape returned to the editor."""
        return {
            "id": self.id,
            "name": self.name,
            "maxTokens": self.max_tokens,
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "swe_score": self.swe_score,
        }
