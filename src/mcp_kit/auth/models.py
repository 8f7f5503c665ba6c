"""
Authentication models.

``AuthConfig`` configures inbound bearer-token validation, ``TokenClaims``
is the validated payload of an inbound token, and ``OAuthToken`` is a token
obtained from an authorization server for calling upstream APIs.
"""

import time
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuthConfig(BaseModel):
    """Configuration for validating inbound bearer tokens."""

    jwt_secret: Optional[str] = Field(default=None, description="Shared secret for HMAC-signed tokens")
    jwks_url: Optional[str] = Field(default=None, description="JWKS URL for asymmetric tokens")
    algorithms: List[str] = Field(
        default_factory=lambda: ["HS256", "RS256", "ES256"],
        description="Accepted signing algorithms"
    )
    issuer: Optional[str] = Field(default=None, description="Expected iss claim")
    audience: Optional[str] = Field(default=None, description="Expected aud claim")
    required_scopes: List[str] = Field(default_factory=list, description="Scopes every token must carry")
    clock_skew_tolerance: int = Field(default=60, ge=0, description="Allowed clock skew in seconds")
    jwks_cache_ttl: int = Field(default=3600, ge=0, description="JWKS cache TTL in seconds")
    public_paths: List[str] = Field(
        default_factory=lambda: ["/health", "/docs", "/redoc", "/openapi.json"],
        description="Paths that never require a token"
    )

    @model_validator(mode="after")
    def validate_key_source(self):
        """Exactly one key source must be configured"""
        if bool(self.jwt_secret) == bool(self.jwks_url):
            raise ValueError("Configure exactly one of jwt_secret or jwks_url")
        return self


class TokenClaims(BaseModel):
    """
    Validated JWT claims.

    Unknown claims are kept so handlers can read provider-specific fields.
    """

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., description="Subject identifier")
    iss: Optional[str] = Field(default=None, description="Issuer")
    aud: Optional[Union[str, List[str]]] = Field(default=None, description="Audience")
    exp: int = Field(..., description="Expiration time (unix seconds)")
    iat: Optional[int] = Field(default=None, description="Issued at (unix seconds)")
    nbf: Optional[int] = Field(default=None, description="Not before (unix seconds)")
    scope: Optional[str] = Field(default=None, description="Space-delimited scopes")
    client_id: Optional[str] = Field(default=None, description="OAuth client the token was issued to")

    @property
    def scopes(self) -> List[str]:
        return self.scope.split() if self.scope else []

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def has_all_scopes(self, scopes: List[str]) -> bool:
        granted = set(self.scopes)
        return all(s in granted for s in scopes)

    def missing_scopes(self, scopes: List[str]) -> List[str]:
        granted = set(self.scopes)
        return [s for s in scopes if s not in granted]


class OAuthToken(BaseModel):
    """An access token from an OAuth 2.0 token endpoint (RFC 6749 section 5.1)."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    obtained_at: float = Field(default_factory=time.time)

    @property
    def expires_at(self) -> Optional[float]:
        if self.expires_in is None:
            return None
        return self.obtained_at + self.expires_in

    def is_expired(self, skew: float = 0, now: Optional[float] = None) -> bool:
        """True when the token expires within ``skew`` seconds; tokens without expires_in never expire."""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now + skew >= self.expires_at

    @classmethod
    def from_response(cls, data: Dict[str, Any], obtained_at: Optional[float] = None) -> "OAuthToken":
        if obtained_at is not None:
            data = {**data, "obtained_at": obtained_at}
        return cls.model_validate(data)
