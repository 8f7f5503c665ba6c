"""Tests for the HTTP transport."""

import json
import time

import pytest
from authlib.jose import JsonWebToken
from fastapi.testclient import TestClient

from mcp_kit.core.config import Settings
from mcp_kit.protocol.exceptions import PARSE_ERROR, RATE_LIMITED, UNAUTHORIZED
from mcp_kit.server import BaseMCPServer, create_http_app

SECRET = "test-secret-with-enough-length-for-hs256"

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {"protocolVersion": "2025-03-26", "capabilities": {}},
}


def make_token(scope="mcp:call", sub="user-1", expires_in=300):
    payload = {"sub": sub, "exp": int(time.time()) + expires_in, "scope": scope}
    token = JsonWebToken(["HS256"]).encode({"alg": "HS256"}, payload, SECRET.encode("utf-8"))
    return token.decode("utf-8")


def build_client(settings):
    server = BaseMCPServer("http-test", "9.9.9", settings=settings, strict_lifecycle=False)

    @server.tool()
    async def echo(text: str) -> str:
        return text

    return TestClient(create_http_app(server, settings))


@pytest.fixture
def client():
    with build_client(Settings()) as client:
        yield client


class TestHTTPTransport:
    """Test the JSON-RPC endpoint without auth or rate limits."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "server": "http-test",
            "version": "9.9.9",
            "state": "created",
            "tools": 1,
        }

    def test_initialize_sets_session_header(self, client):
        response = client.post("/mcp", json=INITIALIZE)

        assert response.status_code == 200
        assert response.headers["Mcp-Session-Id"]
        assert response.json()["result"]["protocolVersion"] == "2025-03-26"

    def test_notification_is_accepted_without_body(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert response.status_code == 202
        assert response.content == b""

    def test_tool_call(self, client):
        response = client.post("/mcp", json={
            "jsonrpc": "2.0", "id": 7, "method": "tools/call",
            "params": {"name": "echo", "arguments": {"text": "hello"}},
        })

        assert response.status_code == 200
        assert response.json()["result"]["content"][0]["text"] == "hello"
        assert "Mcp-Session-Id" not in response.headers

    def test_protocol_errors_use_status_200(self, client):
        response = client.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 200
        assert response.json()["error"]["code"] == PARSE_ERROR

    def test_batch(self, client):
        batch = [
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 2, "method": "ping"},
        ]
        response = client.post("/mcp", content=json.dumps(batch))
        assert [item["id"] for item in response.json()] == [1, 2]


class TestHTTPAuth:
    """Test bearer authentication on the MCP endpoint."""

    @pytest.fixture
    def client(self):
        settings = Settings(
            ENABLE_AUTH=True,
            AUTH_JWT_SECRET=SECRET,
            AUTH_REQUIRED_SCOPES=["mcp:call"],
        )
        with build_client(settings) as client:
            yield client

    def test_missing_token(self, client):
        response = client.post("/mcp", json=INITIALIZE)

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Bearer error="invalid_request"'
        assert response.json()["error"]["code"] == UNAUTHORIZED

    def test_invalid_token(self, client):
        response = client.post("/mcp", json=INITIALIZE, headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Bearer error="invalid_token"'

    def test_expired_token(self, client):
        token = make_token(expires_in=-3600)
        response = client.post("/mcp", json=INITIALIZE, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_missing_scope(self, client):
        token = make_token(scope="other")
        response = client.post("/mcp", json=INITIALIZE, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403
        assert response.headers["WWW-Authenticate"] == 'Bearer error="insufficient_scope"'

    def test_valid_token(self, client):
        response = client.post("/mcp", json=INITIALIZE, headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 200
        assert "result" in response.json()

    def test_health_is_public(self, client):
        assert client.get("/health").status_code == 200


class TestHTTPRateLimit:
    """Test inbound rate limiting."""

    @pytest.fixture
    def client(self):
        settings = Settings(
            ENABLE_RATE_LIMITING=True,
            RATE_LIMIT_DEFAULT_LIMIT=2,
            RATE_LIMIT_DEFAULT_WINDOW=60,
        )
        with build_client(settings) as client:
            yield client

    def test_limit_exceeded(self, client):
        ping = {"jsonrpc": "2.0", "id": "p", "method": "ping"}

        assert client.post("/mcp", json=ping).status_code == 200
        assert client.post("/mcp", json=ping).status_code == 200
        response = client.post("/mcp", json=ping)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1
        body = response.json()
        assert body["id"] == "p"
        assert body["error"]["code"] == RATE_LIMITED

    def test_limits_are_per_client(self, client):
        ping = {"jsonrpc": "2.0", "id": 1, "method": "ping"}
        for _ in range(2):
            client.post("/mcp", json=ping, headers={"X-Client-Id": "a"})

        assert client.post("/mcp", json=ping, headers={"X-Client-Id": "a"}).status_code == 429
        assert client.post("/mcp", json=ping, headers={"X-Client-Id": "b"}).status_code == 200

    def test_health_is_not_limited(self, client):
        for _ in range(5):
            assert client.get("/health").status_code == 200
