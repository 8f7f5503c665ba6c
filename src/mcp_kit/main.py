"""Main entry point for running an MCP Kit server."""

import json
import logging
from typing import Optional

from mcp_kit.auth.credentials import CredentialManager
from mcp_kit.cache import TTLCache
from mcp_kit.core.config import Settings, get_settings
from mcp_kit.core.logging import setup_logging
from mcp_kit.integrations import load_integrations
from mcp_kit.resilience import CircuitBreakerManager
from mcp_kit.server import BaseMCPServer, run_http, run_stdio

logger = logging.getLogger(__name__)

STATUS_URI = "mcp-kit://status"


def create_server(settings: Optional[Settings] = None,
                  credentials: Optional[CredentialManager] = None) -> BaseMCPServer:
    """
    Build a server with the configured REST integrations registered as tools.

    A ``mcp-kit://status`` resource reports the loaded integrations, circuit
    breaker states and which credentials are configured (values masked).
    """
    settings = settings or get_settings()
    credentials = credentials or CredentialManager(
        env_prefix=settings.CREDENTIALS_PREFIX,
        secrets_file=settings.SECRETS_FILE,
    )
    server = BaseMCPServer(settings=settings)

    cache = TTLCache(max_size=settings.CACHE_MAX_SIZE, default_ttl=settings.CACHE_DEFAULT_TTL)
    breakers = CircuitBreakerManager()
    services = {}

    if settings.INTEGRATIONS_FILE:
        toolsets = load_integrations(
            settings.INTEGRATIONS_FILE,
            credentials,
            settings=settings,
            cache=cache,
            breaker_manager=breakers,
        )
        for toolset in toolsets:
            try:
                services[toolset.client.name] = toolset.register(server)
            except ValueError as e:
                logger.error(
                    "Failed to register integration tools",
                    extra={"service_id": toolset.client.name, "error": str(e)}
                )

    @server.resource(STATUS_URI, name="status", description="Server and integration status",
                     mime_type="application/json")
    async def status() -> str:
        return json.dumps({
            "server": server.name,
            "version": server.version,
            "state": server.state.value,
            "integrations": services,
            "circuit_breakers": await breakers.get_all_stats(),
            "cache": cache.stats(),
            "credentials": credentials.describe(),
        }, indent=2, default=str)

    return server


def main() -> None:
    """Load settings, configure logging and serve on the configured transport."""
    settings = get_settings()
    setup_logging(settings)

    server = create_server(settings)
    logger.info(
        "Starting MCP server",
        extra={
            "server": server.name,
            "transport": settings.TRANSPORT,
            "tools": len(server.tools),
            "integrations_file": settings.INTEGRATIONS_FILE
        }
    )

    if settings.TRANSPORT == "http":
        run_http(server, settings)
    else:
        run_stdio(server)


if __name__ == "__main__":
    main()
