"""
OAuth 2.0 token manager for calling upstream APIs.

Obtains access tokens with the client credentials grant, keeps them cached
until shortly before expiry, refreshes them with a refresh token when one is
available, and supports the authorization code grant with PKCE (RFC 7636)
for user-delegated access.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

import httpx
from authlib.common.security import generate_token
from authlib.common.urls import add_params_to_uri
from authlib.oauth2.rfc7636 import create_s256_code_challenge

from .models import OAuthToken
from .exceptions import AuthServerConnectionError, TokenRequestError

logger = logging.getLogger(__name__)

SUPPORTED_GRANTS = ("client_credentials", "refresh_token", "authorization_code")


def generate_pkce_pair() -> Tuple[str, str]:
    """Return a (code_verifier, S256 code_challenge) pair."""
    verifier = generate_token(64)
    return verifier, create_s256_code_challenge(verifier)


class OAuth2TokenManager:
    """
    Caching OAuth 2.0 token source.

    Concurrent callers share one in-flight token request: the first caller
    fetches while the rest wait on the lock and then reuse the cached token.

    Usage:
        manager = OAuth2TokenManager(
            token_url="https://auth.example.com/oauth/token",
            client_id="mcp-server",
            client_secret=credentials.require("crm_client_secret"),
            scopes=["contacts.read"],
        )
        headers = await manager.authorization_header()
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        grant_type: str = "client_credentials",
        refresh_token: Optional[str] = None,
        audience: Optional[str] = None,
        auth_method: str = "client_secret_post",
        http_client: Optional[httpx.AsyncClient] = None,
        expiry_skew: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the token manager.

        Args:
            token_url: Token endpoint of the authorization server
            client_id: OAuth client id
            client_secret: OAuth client secret (omit for public clients)
            scopes: Scopes requested with each grant
            grant_type: Grant used when no valid or refreshable token exists
            refresh_token: Initial refresh token, e.g. from a prior consent
            audience: Optional audience parameter some providers require
            auth_method: ``client_secret_post`` or ``client_secret_basic``
            http_client: Shared client; one is created and owned if omitted
            expiry_skew: Seconds before expiry at which a token counts as expired
            clock: Time source, injectable for tests
        """
        if grant_type not in SUPPORTED_GRANTS:
            raise ValueError(f"Unsupported grant type: {grant_type}")
        if auth_method not in ("client_secret_post", "client_secret_basic"):
            raise ValueError(f"Unsupported client auth method: {auth_method}")

        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes or []
        self.grant_type = grant_type
        self.refresh_token = refresh_token
        self.audience = audience
        self.auth_method = auth_method
        self.expiry_skew = expiry_skew
        self._clock = clock

        self._own_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0),
            headers={'User-Agent': 'mcp-kit-oauth/0.1', 'Accept': 'application/json'}
        )

        self._token: Optional[OAuthToken] = None
        self._lock = asyncio.Lock()

        logger.info(
            "OAuth2 token manager initialized",
            extra={"token_url": token_url, "client_id": client_id, "grant_type": grant_type}
        )

    @property
    def token(self) -> Optional[OAuthToken]:
        return self._token

    def _is_valid(self, token: Optional[OAuthToken]) -> bool:
        return token is not None and not token.is_expired(self.expiry_skew, now=self._clock())

    async def get_token(self) -> OAuthToken:
        """
        Return a valid token, fetching or refreshing one if needed.

        Raises:
            TokenRequestError: If the authorization server rejects the request
            AuthServerConnectionError: If the authorization server is unreachable
        """
        if self._is_valid(self._token):
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._is_valid(self._token):
                return self._token

            refresh_token = (self._token.refresh_token if self._token else None) or self.refresh_token
            if refresh_token:
                try:
                    self._token = await self._refresh(refresh_token)
                    return self._token
                except TokenRequestError as e:
                    if self.grant_type != "client_credentials":
                        raise
                    logger.warning(
                        "Refresh failed, falling back to client credentials",
                        extra={"oauth_error": e.oauth_error}
                    )
                    self.refresh_token = None

            if self.grant_type != "client_credentials":
                raise TokenRequestError(
                    "No valid token and no refresh token; the authorization flow must be completed",
                    oauth_error="invalid_grant",
                )

            self._token = await self._client_credentials()
            return self._token

    async def get_access_token(self) -> str:
        return (await self.get_token()).access_token

    async def authorization_header(self) -> Dict[str, str]:
        token = await self.get_token()
        token_type = "Bearer" if token.token_type.lower() == "bearer" else token.token_type
        return {"Authorization": f"{token_type} {token.access_token}"}

    def invalidate(self) -> None:
        """Drop the cached access token; the refresh token is kept."""
        if self._token is not None and self._token.refresh_token:
            self.refresh_token = self._token.refresh_token
        self._token = None
        logger.debug("OAuth2 token invalidated", extra={"client_id": self.client_id})

    async def _client_credentials(self) -> OAuthToken:
        data = {"grant_type": "client_credentials"}
        if self.scopes:
            data["scope"] = " ".join(self.scopes)
        if self.audience:
            data["audience"] = self.audience
        return await self._request_token(data)

    async def _refresh(self, refresh_token: str) -> OAuthToken:
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        if self.scopes:
            data["scope"] = " ".join(self.scopes)
        token = await self._request_token(data)
        # Providers that do not rotate refresh tokens omit them from the response
        if not token.refresh_token:
            token.refresh_token = refresh_token
        return token

    def build_authorization_url(
        self,
        authorize_url: str,
        redirect_uri: str,
        state: Optional[str] = None,
        code_challenge: Optional[str] = None,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        """Build the URL the user visits to grant access (authorization code grant)."""
        params = [
            ("response_type", "code"),
            ("client_id", self.client_id),
            ("redirect_uri", redirect_uri),
        ]
        if self.scopes:
            params.append(("scope", " ".join(self.scopes)))
        if state:
            params.append(("state", state))
        if code_challenge:
            params.append(("code_challenge", code_challenge))
            params.append(("code_challenge_method", "S256"))
        for key, value in (extra_params or {}).items():
            params.append((key, value))
        return add_params_to_uri(authorize_url, params)

    async def exchange_code(self, code: str, redirect_uri: str,
                            code_verifier: Optional[str] = None) -> OAuthToken:
        """Exchange an authorization code for tokens and cache the result."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        async with self._lock:
            self._token = await self._request_token(data)
            if self._token.refresh_token:
                self.refresh_token = self._token.refresh_token
            return self._token

    async def _request_token(self, data: Dict[str, str]) -> OAuthToken:
        """POST a grant to the token endpoint and parse the response."""
        auth = None
        if self.auth_method == "client_secret_basic" and self.client_secret:
            auth = (self.client_id, self.client_secret)
        else:
            data = {**data, "client_id": self.client_id}
            if self.client_secret:
                data["client_secret"] = self.client_secret

        logger.debug(
            "Requesting OAuth2 token",
            extra={"token_url": self.token_url, "grant_type": data["grant_type"]}
        )

        try:
            if auth:
                response = await self.http_client.post(self.token_url, data=data, auth=auth)
            else:
                response = await self.http_client.post(self.token_url, data=data)
        except httpx.HTTPError as e:
            logger.error(
                "Authorization server unreachable",
                extra={"token_url": self.token_url, "error": str(e)}
            )
            raise AuthServerConnectionError(
                f"Unable to reach token endpoint: {str(e)}",
                str(e)
            )

        if response.status_code != 200:
            oauth_error, description = self._parse_error_response(response)
            logger.warning(
                "Token request rejected",
                extra={
                    "status_code": response.status_code,
                    "oauth_error": oauth_error,
                    "grant_type": data["grant_type"]
                }
            )
            raise TokenRequestError(
                f"Token request failed: {oauth_error}: {description}",
                oauth_error=oauth_error,
                oauth_error_description=description,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            raise TokenRequestError("Token endpoint returned invalid JSON", oauth_error="invalid_response")

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenRequestError(
                "Token response missing access_token",
                oauth_error="invalid_response",
            )

        token = OAuthToken.from_response(payload, obtained_at=self._clock())
        logger.info(
            "OAuth2 token obtained",
            extra={
                "client_id": self.client_id,
                "grant_type": data["grant_type"],
                "expires_in": token.expires_in,
            }
        )
        return token

    @staticmethod
    def _parse_error_response(response: httpx.Response) -> Tuple[str, str]:
        try:
            error_data = response.json()
            return (
                error_data.get('error', 'unknown_error'),
                error_data.get('error_description', 'No description provided'),
            )
        except Exception:
            return f"http_{response.status_code}", response.text

    async def close(self) -> None:
        if self._own_client:
            await self.http_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
