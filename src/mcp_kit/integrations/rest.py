"""
REST client for upstream APIs.

``RESTClient`` wraps a pooled ``httpx.AsyncClient`` with the kit's
resilience pieces: outbound pacing with a token bucket, retries with
backoff for 429/5xx and transport errors, a per-service circuit breaker and
a TTL cache for GET responses.
"""

import email.utils
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import httpx

from mcp_kit.auth.credentials import CredentialManager
from mcp_kit.auth.oauth import OAuth2TokenManager
from mcp_kit.cache import TTLCache
from mcp_kit.protocol.exceptions import UpstreamError
from mcp_kit.resilience import (
    CircuitBreakerManager,
    CircuitBreakerOpenError,
    RetryPolicy,
    retry,
)
from mcp_kit.rl import TokenBucket

logger = logging.getLogger(__name__)

USER_AGENT = "mcp-kit/0.1"


class RetryableUpstreamError(UpstreamError):
    """Upstream answered 429 or 5xx; worth another attempt."""


def default_retry_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        retry_on=(RetryableUpstreamError, httpx.TransportError),
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, when.timestamp() - time.time())


class UpstreamAuth(ABC):
    """Supplies authentication headers for upstream requests."""

    #: Whether ``invalidate`` can produce different credentials after a 401
    can_refresh = False

    @abstractmethod
    async def headers(self) -> Dict[str, str]:
        ...

    def invalidate(self) -> None:
        pass

    async def close(self) -> None:
        pass


class BearerTokenAuth(UpstreamAuth):
    """OAuth 2.0 bearer tokens from an ``OAuth2TokenManager``."""

    can_refresh = True

    def __init__(self, token_manager: OAuth2TokenManager):
        self.token_manager = token_manager

    async def headers(self) -> Dict[str, str]:
        return await self.token_manager.authorization_header()

    def invalidate(self) -> None:
        self.token_manager.invalidate()

    async def close(self) -> None:
        await self.token_manager.close()


class APIKeyAuth(UpstreamAuth):
    """
    Static API key read from the credential manager on every request.

    Reading per request lets a rotated key take effect without a restart.
    """

    def __init__(self, header: str, credential_name: str, credentials: CredentialManager,
                 prefix: Optional[str] = None):
        self.header = header
        self.credential_name = credential_name
        self.credentials = credentials
        self.prefix = prefix

    async def headers(self) -> Dict[str, str]:
        key = self.credentials.require(self.credential_name)
        return {self.header: f"{self.prefix} {key}" if self.prefix else key}


class RESTClient:
    """
    Resilient async client for one upstream API.

    Usage:
        client = RESTClient(
            "https://api.example.com",
            name="example",
            auth=APIKeyAuth("X-API-Key", "example_key", credentials),
            cache=TTLCache(),
        )
        items = await client.request("GET", "/items", params={"limit": 10})
    """

    def __init__(
        self,
        base_url: str,
        name: Optional[str] = None,
        auth: Optional[UpstreamAuth] = None,
        timeout: float = 30.0,
        max_connections: int = 20,
        max_keepalive_connections: int = 10,
        headers: Optional[Dict[str, str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        breaker_manager: Optional[CircuitBreakerManager] = None,
        rate_bucket: Optional[TokenBucket] = None,
        cache: Optional[TTLCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL; request paths are resolved against it
            name: Service name for logs, errors and the circuit breaker key
            auth: Authentication provider
            timeout: Per-request timeout in seconds
            max_connections: Connection pool size
            max_keepalive_connections: Idle connections kept open
            headers: Headers sent with every request
            retry_policy: Backoff policy for retryable failures
            breaker_manager: Circuit breakers shared across clients
            rate_bucket: Token bucket pacing outbound calls
            cache: Cache for GET responses
            transport: httpx transport override, e.g. ``httpx.MockTransport`` in tests
            sleep: Backoff sleep override
        """
        self.base_url = base_url.rstrip("/")
        self.name = name or urlparse(base_url).hostname or base_url
        self.auth = auth
        self.retry_policy = retry_policy or default_retry_policy()
        self.breaker_manager = breaker_manager
        self.rate_bucket = rate_bucket
        self.cache = cache

        self.http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json", **(headers or {})},
            transport=transport,
        )
        self._send_with_retry = retry(self.retry_policy, sleep=sleep)(self._send_once)

        logger.info(
            "REST client initialized",
            extra={
                "service": self.name,
                "base_url": self.base_url,
                "auth": type(auth).__name__ if auth else None,
                "max_attempts": self.retry_policy.max_attempts,
                "cached": cache is not None
            }
        )

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        cache_ttl: Optional[float] = None,
    ) -> Any:
        """
        Send a request and return the parsed response body.

        JSON responses are decoded, other content is returned as text and an
        empty body as None.

        Raises:
            UpstreamError: On a final non-2xx status, an open circuit, or a
                transport failure that outlasted the retries
        """
        method = method.upper()
        if method == "GET" and self.cache is not None:
            key = self._cache_key(path, params)
            return await self.cache.get_or_set(
                key, lambda: self._execute(method, path, params, json, headers), cache_ttl
            )
        return await self._execute(method, path, params, json, headers)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Optional[Any] = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    def _cache_key(self, path: str, params: Optional[Dict[str, Any]]) -> str:
        query = json.dumps(params or {}, sort_keys=True, default=str)
        return f"{self.name}:GET:{path}?{query}"

    async def _execute(self, method, path, params, body, headers) -> Any:
        try:
            if self.breaker_manager is not None:
                return await self.breaker_manager.check_and_call(
                    self.name, self._send_with_retry, method, path, params, body, headers
                )
            return await self._send_with_retry(method, path, params, body, headers)
        except CircuitBreakerOpenError as e:
            raise UpstreamError(
                f"{self.name} is temporarily unavailable (circuit open)",
                status_code=503,
                service=self.name,
                retry_after=e.cooldown_remaining,
            )
        except httpx.TransportError as e:
            logger.error(
                "Upstream request failed",
                extra={"service": self.name, "method": method, "path": path, "error": str(e)}
            )
            raise UpstreamError(
                f"Request to {self.name} failed: {type(e).__name__}: {e}",
                service=self.name,
            )

    async def _send_once(self, method, path, params, body, headers) -> Any:
        if self.rate_bucket is not None:
            waited = await self.rate_bucket.acquire()
            if waited:
                logger.debug("Paced outbound request", extra={"service": self.name, "waited": waited})

        request_headers = dict(headers or {})
        if self.auth is not None:
            request_headers.update(await self.auth.headers())

        start = time.monotonic()
        response = await self.http_client.request(
            method, path, params=params, json=body, headers=request_headers
        )

        if response.status_code == 401 and self.auth is not None and self.auth.can_refresh:
            logger.info("Upstream rejected token, refreshing", extra={"service": self.name, "path": path})
            self.auth.invalidate()
            request_headers.update(await self.auth.headers())
            response = await self.http_client.request(
                method, path, params=params, json=body, headers=request_headers
            )

        logger.debug(
            "Upstream response",
            extra={
                "service": self.name,
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "latency_ms": round((time.monotonic() - start) * 1000, 1)
            }
        )
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Any:
        body = self._parse_body(response)
        if response.is_success:
            return body

        status_code = response.status_code
        message = f"{self.name} returned HTTP {status_code}"
        if status_code == 429 or status_code >= 500:
            raise RetryableUpstreamError(
                message,
                status_code=status_code,
                service=self.name,
                body=body,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        raise UpstreamError(message, status_code=status_code, service=self.name, body=body)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    async def close(self) -> None:
        await self.http_client.aclose()
        if self.auth is not None:
            await self.auth.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
