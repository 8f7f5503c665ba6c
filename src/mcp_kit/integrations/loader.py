"""Load REST integrations from a YAML file."""

import logging
from pathlib import Path
from typing import List, Optional, Union

import yaml

from mcp_kit.auth.credentials import CredentialManager
from mcp_kit.auth.oauth import OAuth2TokenManager
from mcp_kit.cache import TTLCache
from mcp_kit.core.config import Settings, get_settings
from mcp_kit.resilience import CircuitBreakerManager
from mcp_kit.rl import TokenBucket
from .models import AuthSpec, ServiceConfig
from .rest import APIKeyAuth, BearerTokenAuth, RESTClient, UpstreamAuth, default_retry_policy
from .toolset import RESTToolset

logger = logging.getLogger(__name__)


def build_auth(service_id: str, spec: AuthSpec, credentials: CredentialManager) -> Optional[UpstreamAuth]:
    """
    Create the auth provider for a service.

    Raises:
        MissingCredentialError: If a referenced credential is not configured
    """
    if spec.type == "none":
        return None

    if spec.type == "api_key":
        # Fail at load time rather than on the first tool call
        credentials.require(spec.credential)
        return APIKeyAuth(spec.header, spec.credential, credentials, prefix=spec.prefix)

    client_secret = None
    if spec.client_secret_credential:
        client_secret = credentials.require(spec.client_secret_credential)
    refresh_token = None
    if spec.refresh_token_credential:
        refresh_token = credentials.get(spec.refresh_token_credential)

    token_manager = OAuth2TokenManager(
        token_url=spec.token_url,
        client_id=spec.client_id,
        client_secret=client_secret,
        scopes=spec.scopes,
        grant_type=spec.grant_type,
        refresh_token=refresh_token,
        audience=spec.audience,
        auth_method=spec.auth_method,
    )
    logger.debug("Configured OAuth2 for service", extra={"service_id": service_id})
    return BearerTokenAuth(token_manager)


def build_toolset(
    service_id: str,
    service: ServiceConfig,
    credentials: CredentialManager,
    settings: Settings,
    cache: Optional[TTLCache] = None,
    breaker_manager: Optional[CircuitBreakerManager] = None,
) -> RESTToolset:
    rate_bucket = None
    if service.rate_limit:
        rate_bucket = TokenBucket(service.rate_limit.rate, service.rate_limit.capacity)

    client = RESTClient(
        service.base_url,
        name=service_id,
        auth=build_auth(service_id, service.auth, credentials),
        timeout=service.timeout or settings.HTTP_TIMEOUT,
        max_connections=settings.HTTP_MAX_CONNECTIONS,
        max_keepalive_connections=settings.HTTP_MAX_KEEPALIVE,
        headers=service.headers,
        retry_policy=default_retry_policy(settings.RETRY_MAX_ATTEMPTS),
        breaker_manager=breaker_manager,
        rate_bucket=rate_bucket,
        cache=cache,
    )
    return RESTToolset(client, service.endpoints, tool_prefix=service.tool_prefix)


def load_integrations(
    path: Union[str, Path],
    credentials: CredentialManager,
    settings: Optional[Settings] = None,
    cache: Optional[TTLCache] = None,
    breaker_manager: Optional[CircuitBreakerManager] = None,
) -> List[RESTToolset]:
    """
    Read an integrations file and build a toolset per enabled service.

    Services that fail validation or reference missing credentials are
    logged and skipped so one bad entry does not take the others down.

    Raises:
        yaml.YAMLError: If the file is not valid YAML
    """
    settings = settings or get_settings()
    path = Path(path)

    if not path.exists():
        logger.warning("Integrations file not found", extra={"path": str(path)})
        return []

    logger.info(f"Loading integrations from {path}")
    with open(path, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    services = config_data.get("services") if isinstance(config_data, dict) else None
    if not isinstance(services, dict) or not services:
        logger.warning("No services section found in integrations file", extra={"path": str(path)})
        return []

    if cache is None:
        cache = TTLCache(max_size=settings.CACHE_MAX_SIZE, default_ttl=settings.CACHE_DEFAULT_TTL)
    if breaker_manager is None:
        breaker_manager = CircuitBreakerManager()

    toolsets = []
    for service_id, raw in services.items():
        try:
            service = ServiceConfig(**(raw or {}))
            if not service.enabled:
                logger.info("Skipping disabled service", extra={"service_id": service_id})
                continue
            toolset = build_toolset(str(service_id), service, credentials, settings, cache, breaker_manager)
        except Exception as e:
            logger.error(
                f"Failed to load service {service_id}: {e}",
                extra={"service_id": service_id, "error_type": type(e).__name__}
            )
            continue

        toolsets.append(toolset)
        logger.info(
            f"Loaded service: {service_id}",
            extra={
                "service_id": service_id,
                "base_url": service.base_url,
                "auth": service.auth.type,
                "endpoints": len(service.endpoints)
            }
        )

    logger.info(f"Successfully loaded {len(toolsets)} integrations")
    return toolsets
