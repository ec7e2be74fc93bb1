"""HTTP client with per-attempt timeouts and exponential-backoff retries."""

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from .base import HTTPResponse, NetworkError, NetworkErrorKind
from ..config.settings import get_settings
from ..performance.async_optimizer import ConcurrentExecutor
from ..utils.logging import get_logger


RetryCallback = Callable[[int, float, NetworkError], Union[None, Awaitable[None]]]


@dataclass
class ConnectionTestResult:
    """Outcome of a connectivity check."""

    success: bool
    status: Optional[int] = None
    duration_ms: int = 0
    message: str = ""
    error: Optional[str] = None
    kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "success": self.success,
            "status": self.status,
            "durationMs": self.duration_ms,
            "message": self.message,
            "error": self.error,
            "kind": self.kind,
        }


class NetworkClient:
    """aiohttp based request helper used to check provider APIs.

    Every attempt is bounded by ``timeout`` seconds. Timeouts, connection
    failures, HTTP 5xx, 429 and 408 are retried up to ``retries`` more times
    with a delay of ``min(retry_delay * 2 ** (attempt - 1), max_retry_delay)``.
    Any other HTTP error status is raised immediately.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retries: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the client.

        Args:
            timeout: Per-attempt timeout in seconds
            retries: Additional attempts after the first one
            retry_delay: Base backoff delay in seconds
            max_retry_delay: Upper bound for a single backoff delay
            session: Optional shared aiohttp session; one is created lazily otherwise
        """
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.logger = get_logger(self.__class__.__name__)

        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls) -> "NetworkClient":
        """Create a client configured from application settings."""
        network = get_settings().network
        return cls(
            timeout=network.timeout_seconds,
            retries=network.retries,
            retry_delay=network.retry_delay_seconds,
            max_retry_delay=network.max_retry_delay_seconds,
        )

    @classmethod
    def create_api_test_client(cls) -> "NetworkClient":
        """Client tuned for provider API checks."""
        return cls(timeout=15.0, retries=2, retry_delay=2.0)

    async def __aenter__(self):
        """Async context manager entry."""
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def calculate_retry_delay(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number ``attempt`` (1-based)."""
        delay = self.retry_delay * (2 ** (attempt - 1))
        return min(delay, self.max_retry_delay)

    async def sleep(self, delay: float) -> None:
        """Wait between attempts."""
        await asyncio.sleep(delay)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        data: Optional[Union[str, bytes]] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        on_retry: Optional[RetryCallback] = None
    ) -> HTTPResponse:
        """Perform a request with timeout and retry handling.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers
            json_body: Value sent as a JSON body
            data: Raw body sent as-is
            timeout: Per-attempt timeout override in seconds
            retries: Retry budget override
            on_retry: Called as ``on_retry(attempt, delay, error)`` before each wait

        Returns:
            The successful response, fully read

        Raises:
            NetworkError: When the request fails with a fatal status or the
                retry budget is exhausted
        """
        timeout = self.timeout if timeout is None else timeout
        retries = self.retries if retries is None else retries
        total_attempts = max(retries, 0) + 1

        for attempt in range(1, total_attempts + 1):
            try:
                response = await self._attempt(method, url, headers, json_body, data, timeout)
                response.attempts = attempt
                return response
            except NetworkError as e:
                if not e.retryable or attempt == total_attempts:
                    self.logger.warning(
                        "Request failed",
                        method=method,
                        url=url,
                        kind=e.kind.value,
                        status=e.status,
                        attempts=attempt
                    )
                    raise

                delay = self.calculate_retry_delay(attempt)
                self.logger.info(
                    "Retrying request",
                    method=method,
                    url=url,
                    attempt=attempt,
                    delay=delay,
                    kind=e.kind.value
                )
                await self._notify_retry(on_retry, attempt, delay, e)
                await self.sleep(delay)

        raise RuntimeError("retry loop exited without a result")

    async def _attempt(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]],
        json_body: Any,
        data: Optional[Union[str, bytes]],
        timeout: float
    ) -> HTTPResponse:
        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                data=data,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                body = await resp.read()
                status = resp.status
                response_headers = dict(resp.headers)
        except asyncio.TimeoutError:
            raise NetworkError(
                f"Request timed out after {timeout}s", NetworkErrorKind.TIMEOUT, url=url
            )
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error: {e}", NetworkErrorKind.NETWORK, url=url)

        if not 200 <= status < 300:
            raise NetworkError.from_status(
                status, url, body.decode("utf-8", errors="replace")
            )

        return HTTPResponse(status=status, headers=response_headers, body=body, url=url)

    async def _notify_retry(
        self,
        on_retry: Optional[RetryCallback],
        attempt: int,
        delay: float,
        error: NetworkError
    ) -> None:
        if on_retry is None:
            return
        try:
            result = on_retry(attempt, delay, error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.warning("Retry callback failed", error=str(e))

    async def get(self, url: str, **kwargs) -> HTTPResponse:
        """GET request."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, payload: Any = None, **kwargs) -> HTTPResponse:
        """POST request; strings are sent verbatim, other payloads as JSON."""
        return await self.request("POST", url, **self._body_kwargs(payload, kwargs))

    async def put(self, url: str, payload: Any = None, **kwargs) -> HTTPResponse:
        """PUT request; strings are sent verbatim, other payloads as JSON."""
        return await self.request("PUT", url, **self._body_kwargs(payload, kwargs))

    async def delete(self, url: str, **kwargs) -> HTTPResponse:
        """DELETE request."""
        return await self.request("DELETE", url, **kwargs)

    @staticmethod
    def _body_kwargs(payload: Any, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", **(kwargs.pop("headers", None) or {})}
        if isinstance(payload, (str, bytes)):
            return {"headers": headers, "data": payload, **kwargs}
        return {"headers": headers, "json_body": payload, **kwargs}

    async def test_connection(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        retries: int = 1
    ) -> ConnectionTestResult:
        """Request a URL without raising.

        Returns:
            ConnectionTestResult with the status and elapsed milliseconds
        """
        start_time = time.perf_counter()
        try:
            response = await self.get(url, headers=headers, timeout=timeout, retries=retries)
        except NetworkError as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            return ConnectionTestResult(
                success=False,
                status=e.status,
                duration_ms=duration_ms,
                message=f"Connection failed: {e}",
                error=str(e),
                kind=e.kind.value
            )

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        return ConnectionTestResult(
            success=True,
            status=response.status,
            duration_ms=duration_ms,
            message=f"Connected ({duration_ms}ms)"
        )

    async def batch_request(
        self,
        requests: List[Dict[str, Any]],
        concurrency: int = 3
    ) -> List[Dict[str, Any]]:
        """Issue several requests with a concurrency limit.

        Args:
            requests: Dictionaries with ``url`` and optional ``method``,
                ``headers``, ``json_body``, ``timeout`` and ``retries``
            concurrency: Maximum requests in flight

        Returns:
            One entry per request, in order, with ``index``, ``success`` and
            either ``response`` or ``error``
        """
        executor = ConcurrentExecutor(max_concurrent=concurrency)

        def _task(index: int, item: Dict[str, Any]):
            async def _run() -> Dict[str, Any]:
                options = {k: v for k, v in item.items() if k not in ("url", "method")}
                try:
                    response = await self.request(item.get("method", "GET"), item["url"], **options)
                    return {"index": index, "success": True, "response": response, "request": item}
                except NetworkError as e:
                    return {"index": index, "success": False, "error": e, "request": item}
            return _run

        return await executor.execute_batch(
            [_task(index, item) for index, item in enumerate(requests)]
        )
