"""
REST integrations: upstream HTTP APIs exposed as MCP tools.
"""

from .models import AuthSpec, EndpointSpec, ParamSpec, RateLimitSpec, ServiceConfig
from .rest import (
    APIKeyAuth,
    BearerTokenAuth,
    RESTClient,
    RetryableUpstreamError,
    UpstreamAuth,
    parse_retry_after,
)
from .toolset import RESTToolset, build_endpoint_model, build_request
from .loader import build_auth, load_integrations

__all__ = [
    "AuthSpec",
    "EndpointSpec",
    "ParamSpec",
    "RateLimitSpec",
    "ServiceConfig",
    "APIKeyAuth",
    "BearerTokenAuth",
    "RESTClient",
    "RetryableUpstreamError",
    "UpstreamAuth",
    "parse_retry_after",
    "RESTToolset",
    "build_endpoint_model",
    "build_request",
    "build_auth",
    "load_integrations"
]
