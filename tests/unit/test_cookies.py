"""
Unit tests for encrypted cookie sessions.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from vaultapi.vault_server.api.cookies import CookieSessionMiddleware, cookie_cipher
from vaultapi.vault_server.config import CookieConfig


@pytest.fixture
def cookie_config():
    return CookieConfig(id="sid", hash="h" * 32, encryption="e" * 32)


@pytest.fixture
def client(cookie_config):
    app = FastAPI()
    app.add_middleware(CookieSessionMiddleware, config=cookie_config)

    @app.post("/set/{value}")
    async def set_value(value: str, request: Request):
        request.session["value"] = value
        return {"ok": True}

    @app.get("/get")
    async def get_value(request: Request):
        return {"value": request.session.get("value")}

    @app.delete("/clear")
    async def clear(request: Request):
        request.session.clear()
        return {"ok": True}

    with TestClient(app) as client:
        yield client


class TestCookieSession:
    """Tests for CookieSessionMiddleware."""

    def test_round_trip(self, client):
        response = client.post("/set/secret")
        assert "sid" in response.cookies

        assert client.get("/get").json() == {"value": "secret"}

    def test_cookie_is_encrypted(self, client):
        response = client.post("/set/plaintext-marker")
        assert "plaintext-marker" not in response.cookies["sid"]

    def test_unchanged_session_not_resent(self, client):
        client.post("/set/x")
        response = client.get("/get")
        assert "set-cookie" not in response.headers

    def test_cleared_session_deletes_cookie(self, client):
        client.post("/set/x")
        client.delete("/clear")
        assert client.get("/get").json() == {"value": None}

    def test_tampered_cookie_ignored(self, client):
        client.cookies.set("sid", "not-a-token")
        assert client.get("/get").json() == {"value": None}

    def test_other_secrets_cannot_read(self, cookie_config):
        token = cookie_cipher(cookie_config).encrypt(b'{"value":"x"}').decode()
        middleware = CookieSessionMiddleware(FastAPI(), CookieConfig(id="sid", hash="x" * 32, encryption="y" * 32))
        assert middleware.load(token) == {}

        own = CookieSessionMiddleware(FastAPI(), cookie_config)
        assert own.load(token) == {"value": "x"}
