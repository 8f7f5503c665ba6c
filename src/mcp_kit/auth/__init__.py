"""
Authentication module for MCP Kit.

Credential lookup, OAuth 2.0 tokens for upstream APIs, and bearer-token
validation for the HTTP transport.
"""

from .credentials import CredentialManager, mask
from .oauth import OAuth2TokenManager, generate_pkce_pair
from .token_validator import TokenValidator
from .middleware import BearerAuthMiddleware
from .models import AuthConfig, OAuthToken, TokenClaims
from .exceptions import (
    AuthenticationError,
    MissingCredentialError,
    TokenValidationError,
    InsufficientScopeError,
    TokenRequestError,
    AuthServerConnectionError
)

__all__ = [
    "CredentialManager",
    "mask",
    "OAuth2TokenManager",
    "generate_pkce_pair",
    "TokenValidator",
    "BearerAuthMiddleware",
    "AuthConfig",
    "OAuthToken",
    "TokenClaims",
    "AuthenticationError",
    "MissingCredentialError",
    "TokenValidationError",
    "InsufficientScopeError",
    "TokenRequestError",
    "AuthServerConnectionError"
]
