"""Base async HTTP client for gateway collaborators.

Scanners and the notification endpoint all live behind the API gateway and
share the same calling conventions:
- JSON in, JSON out over httpx
- A token bucket keeps us under the gateway's per-IP rate limit
- 429/502/503/504, timeouts and network errors retry with exponential backoff
- Anything else surfaces as GatewayError

Usage:
    class MyServiceClient(GatewayClient):
        async def ping(self) -> dict:
            return await self.get("/api/status")

    async with MyServiceClient(base_url="http://localhost:5000") as client:
        status = await client.ping()
"""

import asyncio
import logging
from typing import Any

import httpx


logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})
_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BACKOFF = 1.0  # seconds, doubled per attempt


class RateLimiter:
    """Token bucket rate limiter for async callers.

    Args:
        rate: Maximum requests per second
    """

    def __init__(self, rate: int) -> None:
        self.rate = rate
        self.tokens = float(rate)
        self.updated_at: float | None = None
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        if self.updated_at is None:
            self.updated_at = now
            return
        elapsed = now - self.updated_at
        self.tokens = min(float(self.rate), self.tokens + elapsed * self.rate)
        self.updated_at = now

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            self._refill(loop.time())
            while self.tokens < 1:
                await asyncio.sleep((1 - self.tokens) / self.rate)
                self._refill(loop.time())
            self.tokens -= 1


class GatewayError(Exception):
    """A gateway collaborator call failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code in _RETRYABLE_STATUS_CODES


class GatewayClient:
    """Async JSON client with rate limiting and bounded retries.

    Args:
        base_url: Base URL for all requests
        headers: Default headers
        rate_limit: Maximum requests per second (default: 10)
        timeout: Request timeout in seconds (default: 30)
        max_retries: Extra attempts for transient failures (default: 3)
        backoff: Initial backoff in seconds (default: 1.0)
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        rate_limit: int = 10,
        timeout: float = 30.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        backoff: float = _DEFAULT_BACKOFF,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GatewayClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send_once(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None,
        json_data: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> dict[str, Any]:
        """One attempt. Raises GatewayError; retryable() tells the caller what to do."""
        try:
            response = await self._client.request(
                method=method,
                url=endpoint,
                params=params,
                json=json_data,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise GatewayError(f"Request timeout: {e}") from e
        except httpx.NetworkError as e:
            raise GatewayError(f"Network error: {e}") from e

        logger.debug("Response: %d for %s %s", response.status_code, method, endpoint)

        if response.status_code >= 400:
            raise GatewayError(
                message=f"Gateway request failed: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(
                message=f"Invalid JSON response: {e}",
                status_code=response.status_code,
                response_body=response.text[:500],
            ) from e

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Make a request with rate limiting and retries.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Path relative to base_url
            params: Query parameters
            json_data: JSON body
            headers: Per-request headers merged over the defaults

        Returns:
            Parsed JSON response

        Raises:
            GatewayError: If the request fails after all retries
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async with context manager.")

        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            await self._rate_limiter.acquire()
            logger.debug(
                "%s %s%s (attempt %d/%d)",
                method, self.base_url, endpoint, attempt + 1, attempts,
            )

            try:
                return await self._send_once(method, endpoint, params, json_data, headers)
            except GatewayError as e:
                if not e.retryable or attempt + 1 >= attempts:
                    logger.error("Gateway error for %s %s: %s", method, endpoint, e)
                    raise
                delay = self.backoff * (2 ** attempt)
                logger.warning(
                    "%s for %s, retrying in %.1fs (attempt %d/%d)",
                    e, endpoint, delay, attempt + 1, attempts,
                )
                await asyncio.sleep(delay)

        raise GatewayError("Request failed after retries")

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Convenience method for GET requests."""
        return await self._request("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Convenience method for POST requests."""
        return await self._request("POST", endpoint, json_data=json_data, headers=headers)
