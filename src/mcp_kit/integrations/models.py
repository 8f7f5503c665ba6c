"""
Integration configuration models.

An integrations file describes upstream REST services and the endpoints to
expose as MCP tools:

    services:
      github:
        base_url: https://api.github.com
        auth:
          type: api_key
          header: Authorization
          prefix: Bearer
          credential: github_token
        rate_limit: {rate: 1, capacity: 5}
        endpoints:
          - name: get_repo
            description: Fetch repository metadata
            method: GET
            path: /repos/{owner}/{repo}
            cache_ttl: 60
            params:
              owner: {type: string, required: true, location: path}
              repo: {type: string, required: true, location: path}
"""

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PATH_PARAM = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

ParamType = Literal["string", "integer", "number", "boolean", "object", "array"]


class ParamSpec(BaseModel):
    """One tool argument and where it goes in the HTTP request."""

    model_config = ConfigDict(extra="forbid")

    type: ParamType = Field(default="string", description="JSON Schema type of the argument")
    description: Optional[str] = Field(default=None, description="Shown to the model in the tool schema")
    required: bool = Field(default=False, description="Whether the caller must supply the argument")
    location: Literal["path", "query", "body"] = Field(default="query", description="Request placement")
    default: Any = Field(default=None, description="Value used when the argument is omitted")


class EndpointSpec(BaseModel):
    """An upstream endpoint exposed as one MCP tool."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., pattern=r"^[A-Za-z0-9_\-]{1,64}$", description="Tool name")
    description: str = Field(default="", description="Tool description")
    method: str = Field(default="GET", description="HTTP method")
    path: str = Field(..., min_length=1, description="Path relative to base_url, with {placeholders}")
    params: Dict[str, ParamSpec] = Field(default_factory=dict)
    cache_ttl: Optional[float] = Field(default=None, description="Cache lifetime for GET results")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.upper()
        if method not in ("GET", "POST", "PUT", "PATCH", "DELETE"):
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method

    @model_validator(mode="after")
    def declare_path_params(self):
        """Every placeholder becomes a required path parameter."""
        for name in PATH_PARAM.findall(self.path):
            spec = self.params.get(name)
            if spec is None:
                self.params[name] = ParamSpec(required=True, location="path")
            elif spec.location != "path":
                raise ValueError(f"Parameter '{name}' appears in the path but has location '{spec.location}'")
        for name, spec in self.params.items():
            if spec.location == "path" and f"{{{name}}}" not in self.path:
                raise ValueError(f"Path parameter '{name}' has no placeholder in {self.path}")
        return self

    def path_params(self) -> List[str]:
        return PATH_PARAM.findall(self.path)


class AuthSpec(BaseModel):
    """How requests to a service are authenticated."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["none", "api_key", "oauth2"] = "none"

    # api_key
    header: str = Field(default="X-API-Key", description="Header carrying the key")
    prefix: Optional[str] = Field(default=None, description="Scheme placed before the key, e.g. Bearer")
    credential: Optional[str] = Field(default=None, description="Credential name holding the key")

    # oauth2
    token_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret_credential: Optional[str] = None
    refresh_token_credential: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    grant_type: str = "client_credentials"
    audience: Optional[str] = None
    auth_method: str = "client_secret_post"

    @model_validator(mode="after")
    def validate_required_fields(self):
        if self.type == "api_key" and not self.credential:
            raise ValueError("api_key auth requires 'credential'")
        if self.type == "oauth2" and not (self.token_url and self.client_id):
            raise ValueError("oauth2 auth requires 'token_url' and 'client_id'")
        return self


class RateLimitSpec(BaseModel):
    """Outbound pacing: ``rate`` calls per second with bursts up to ``capacity``."""

    model_config = ConfigDict(extra="forbid")

    rate: float = Field(..., gt=0)
    capacity: float = Field(default=1, ge=1)


class ServiceConfig(BaseModel):
    """One upstream service from the integrations file."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(..., description="Root URL of the API")
    description: str = Field(default="")
    enabled: bool = Field(default=True)
    timeout: Optional[float] = Field(default=None, gt=0, le=300)
    headers: Dict[str, str] = Field(default_factory=dict)
    tool_prefix: Optional[str] = Field(default=None, description="Prepended to every tool name")
    auth: AuthSpec = Field(default_factory=AuthSpec)
    rate_limit: Optional[RateLimitSpec] = None
    endpoints: List[EndpointSpec] = Field(default_factory=list)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")
