"""
Custom exceptions for credentials, OAuth 2.0 and bearer-token authentication.

Each exception carries an ``error_code`` so HTTP and JSON-RPC boundaries
can report failures without parsing messages.
"""

from typing import Optional


class AuthenticationError(Exception):
    """
    Base exception for authentication failures.

    Raised when a caller cannot be authenticated or when the server cannot
    obtain the credentials it needs for an upstream service.
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "authentication_failed"


class MissingCredentialError(AuthenticationError):
    """Raised when a required credential is not configured anywhere."""

    def __init__(self, name: str, sources: Optional[list] = None):
        super().__init__(f"Missing credential: {name}", "missing_credential")
        self.name = name
        self.sources = sources or []


class TokenValidationError(AuthenticationError):
    """
    Exception raised when bearer token validation fails.

    This includes invalid signatures, expired tokens, malformed tokens and
    issuer or audience mismatches.
    """

    def __init__(self, message: str, token_error: Optional[str] = None):
        super().__init__(message, "token_validation_failed")
        self.token_error = token_error


class InsufficientScopeError(AuthenticationError):
    """Raised when a valid token lacks a required scope."""

    def __init__(self, message: str, required_scopes: Optional[list] = None):
        super().__init__(message, "insufficient_scope")
        self.required_scopes = required_scopes or []


class TokenRequestError(AuthenticationError):
    """
    Raised when the authorization server rejects a token request.

    ``oauth_error`` and ``oauth_error_description`` mirror the RFC 6749
    error response fields.
    """

    def __init__(
        self,
        message: str,
        oauth_error: Optional[str] = None,
        oauth_error_description: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, "token_request_failed")
        self.oauth_error = oauth_error
        self.oauth_error_description = oauth_error_description
        self.status_code = status_code


class AuthServerConnectionError(AuthenticationError):
    """Raised when the authorization server or JWKS endpoint is unreachable."""

    def __init__(self, message: str, connection_error: Optional[str] = None):
        super().__init__(message, "auth_server_unavailable")
        self.connection_error = connection_error
