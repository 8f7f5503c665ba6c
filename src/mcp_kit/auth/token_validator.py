"""
JWT bearer token validation for the HTTP transport.

Tokens are verified with authlib's ``JsonWebToken`` against either a shared
HMAC secret or a JWKS document fetched (and cached) from the configured URL.
Standard claims (exp, nbf, iss, aud) are checked with the configured clock
skew tolerance, then required scopes are enforced.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from .models import AuthConfig, TokenClaims
from .exceptions import (
    AuthServerConnectionError,
    InsufficientScopeError,
    TokenValidationError,
)

logger = logging.getLogger(__name__)


class TokenValidator:
    """
    JWT validator with HMAC-secret or JWKS key sources.

    The JWKS document is cached for ``jwks_cache_ttl`` seconds.
    """

    def __init__(self, auth_config: AuthConfig, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the token validator.

        Args:
            auth_config: Authentication configuration
            http_client: Client used to fetch the JWKS document
        """
        self.config = auth_config
        self.jwt = JsonWebToken(self.config.algorithms)

        self._own_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0),
            headers={'User-Agent': 'mcp-kit/0.1', 'Accept': 'application/json'}
        )

        self._jwks_cache: Optional[Any] = None
        self._jwks_cache_time: Optional[float] = None
        self._jwks_lock = asyncio.Lock()

        logger.info(
            "TokenValidator initialized",
            extra={
                "key_source": "jwks" if self.config.jwks_url else "secret",
                "issuer": self.config.issuer,
                "audience": self.config.audience
            }
        )

    def _claims_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "exp": {"essential": True},
            "sub": {"essential": True},
        }
        if self.config.issuer:
            options["iss"] = {"essential": True, "value": self.config.issuer}
        if self.config.audience:
            options["aud"] = {"essential": True, "value": self.config.audience}
        return options

    async def _get_key(self) -> Any:
        if self.config.jwt_secret:
            return self.config.jwt_secret.encode("utf-8")
        return await self._get_jwks()

    async def validate_token(self, token: str) -> TokenClaims:
        """
        Validate a JWT access token.

        Args:
            token: The compact-serialized JWT

        Returns:
            TokenClaims: Parsed and validated token claims

        Raises:
            TokenValidationError: If the token is malformed, badly signed or its claims are invalid
            InsufficientScopeError: If the token lacks a required scope
            AuthServerConnectionError: If the JWKS document cannot be fetched
        """
        if not token or not token.strip():
            raise TokenValidationError("Token is empty or missing")

        key = await self._get_key()

        try:
            claims = self.jwt.decode(token, key, claims_options=self._claims_options())
            claims.validate(leeway=self.config.clock_skew_tolerance)
        except JoseError as e:
            raise TokenValidationError(f"JWT verification failed: {e.description or e.error}", e.error)
        except ValueError as e:
            raise TokenValidationError(f"Malformed token: {str(e)}", "malformed")

        try:
            token_claims = TokenClaims(**dict(claims))
        except Exception as e:
            raise TokenValidationError(f"Unexpected claim structure: {str(e)}", "invalid_claims")

        missing = token_claims.missing_scopes(self.config.required_scopes)
        if missing:
            raise InsufficientScopeError(
                f"Token missing required scopes: {missing}",
                required_scopes=self.config.required_scopes,
            )

        logger.debug(
            "Token validation successful",
            extra={"sub": token_claims.sub, "scopes": token_claims.scopes}
        )
        return token_claims

    async def _get_jwks(self) -> Any:
        """
        Get the JWKS key set with caching.

        Raises:
            AuthServerConnectionError: If the JWKS document cannot be retrieved
        """
        async with self._jwks_lock:
            now = time.monotonic()
            if (self._jwks_cache is not None and self._jwks_cache_time is not None
                    and now - self._jwks_cache_time < self.config.jwks_cache_ttl):
                return self._jwks_cache

            try:
                logger.info(f"Fetching JWKS from {self.config.jwks_url}")
                response = await self.http_client.get(self.config.jwks_url)
                response.raise_for_status()
                jwks_data = response.json()
                jwks = JsonWebKey.import_key_set(jwks_data)
            except httpx.HTTPError as e:
                logger.error(
                    "Failed to fetch JWKS",
                    extra={"jwks_url": self.config.jwks_url, "error": str(e)}
                )
                raise AuthServerConnectionError(f"Unable to fetch JWKS: {str(e)}", str(e))
            except (ValueError, JoseError) as e:
                raise AuthServerConnectionError(f"Invalid JWKS document: {str(e)}", str(e))

            self._jwks_cache = jwks
            self._jwks_cache_time = now
            logger.info(
                "JWKS refreshed",
                extra={"keys_count": len(jwks_data.get('keys', []))}
            )
            return jwks

    async def close(self) -> None:
        if self._own_client:
            await self.http_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
