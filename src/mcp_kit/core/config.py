"""Configuration management for MCP Kit."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for MCP servers built with the kit."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server identity
    SERVER_NAME: str = Field(default="mcp-kit", description="Server name reported during initialize")
    SERVER_VERSION: str = Field(default="0.1.0", description="Server version reported during initialize")
    INSTRUCTIONS: Optional[str] = Field(default=None, description="Optional usage instructions sent to clients")

    # Transport
    TRANSPORT: str = Field(default="stdio", pattern="^(stdio|http)$", description="Transport: stdio or http")
    HOST: str = Field(default="127.0.0.1", description="HTTP transport host")
    PORT: int = Field(default=8000, description="HTTP transport port")
    MCP_PATH: str = Field(default="/mcp", description="HTTP path accepting JSON-RPC messages")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Request handling
    MAX_CONCURRENT_REQUESTS: int = Field(default=16, ge=1, le=1024, description="Maximum in-flight tool calls")
    REQUEST_TIMEOUT: float = Field(default=60.0, gt=0, le=3600, description="Per tool call timeout in seconds")
    STRICT_LIFECYCLE: bool = Field(default=True, description="Reject requests before initialize")

    # Integrations
    INTEGRATIONS_FILE: Optional[str] = Field(
        default=None,
        description="Path to the YAML file describing REST integrations"
    )
    CREDENTIALS_PREFIX: str = Field(default="MCP_KIT_", description="Environment prefix for credentials")
    SECRETS_FILE: Optional[str] = Field(default=None, description="Optional YAML file holding secrets")

    # Outbound HTTP
    HTTP_TIMEOUT: float = Field(default=30.0, ge=0.1, le=300.0, description="Outbound HTTP timeout in seconds")
    HTTP_MAX_CONNECTIONS: int = Field(default=20, ge=1, le=1000, description="Connection pool size per REST client")
    HTTP_MAX_KEEPALIVE: int = Field(default=10, ge=0, le=1000, description="Keep-alive connections per REST client")
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10, description="Attempts for retryable outbound calls")

    # Bearer token authentication for the HTTP transport
    ENABLE_AUTH: bool = Field(default=False, description="Require bearer tokens on the HTTP transport")
    AUTH_JWT_SECRET: str = Field(default="", description="Shared secret for HS256 tokens")
    AUTH_JWKS_URL: Optional[str] = Field(default=None, description="JWKS URL for asymmetric tokens")
    AUTH_ISSUER: Optional[str] = Field(default=None, description="Expected token issuer")
    AUTH_AUDIENCE: Optional[str] = Field(default=None, description="Expected token audience")
    AUTH_REQUIRED_SCOPES: list[str] = Field(default_factory=list, description="Scopes required on every call")
    CLOCK_SKEW_TOLERANCE: int = Field(default=60, ge=0, le=3600, description="Clock skew tolerance in seconds")

    # Rate limiting configuration
    ENABLE_RATE_LIMITING: bool = Field(default=False, description="Enable inbound rate limiting")
    RATE_LIMIT_DEFAULT_LIMIT: int = Field(default=60, ge=1, le=100000, description="Requests per window")
    RATE_LIMIT_DEFAULT_WINDOW: int = Field(default=60, ge=1, le=3600, description="Window in seconds")

    # Response caching
    CACHE_MAX_SIZE: int = Field(default=1024, ge=1, description="Maximum cached entries")
    CACHE_DEFAULT_TTL: float = Field(default=300.0, ge=0, description="Default cache TTL in seconds")

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    def get_auth_config(self):
        """Create AuthConfig from settings, or None when auth is disabled"""
        if not self.ENABLE_AUTH:
            return None

        from mcp_kit.auth.models import AuthConfig

        return AuthConfig(
            jwt_secret=self.AUTH_JWT_SECRET or None,
            jwks_url=self.AUTH_JWKS_URL,
            issuer=self.AUTH_ISSUER,
            audience=self.AUTH_AUDIENCE,
            required_scopes=self.AUTH_REQUIRED_SCOPES,
            clock_skew_tolerance=self.CLOCK_SKEW_TOLERANCE,
        )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
