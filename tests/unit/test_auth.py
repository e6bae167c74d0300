"""
Unit tests for deckhand_server.auth.

The token dependency is mounted on a small FastAPI app so the bearer
scheme, hash comparison and error response are exercised end to end.
"""

import re
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from deckhand_common.config import DeckhandConfig
from deckhand_common.models import StatusSnapshot
from deckhand_server import app as server_app
from deckhand_server.auth import (
    create_verify_token_dependency,
    generate_api_token,
    hash_api_token,
)

TOKEN = "dh_auth_test_token_00000000000000000000000"


@pytest.fixture
def guarded_client():
    """Create a client for an app whose only route requires TOKEN."""
    verify = create_verify_token_dependency(lambda: hash_api_token(TOKEN))
    guarded = FastAPI()

    @guarded.post("/api/git/pull", dependencies=[Depends(verify)])
    async def pull():
        return {"success": True}

    return TestClient(guarded)


class TestGenerateApiToken:
    def test_format(self):
        assert re.match(r"^dh_[A-Za-z0-9_-]{40}$", generate_api_token())

    def test_generated_token_passes_its_own_hash(self):
        token = generate_api_token()
        verify = create_verify_token_dependency(lambda: hash_api_token(token))
        guarded = FastAPI()

        @guarded.get("/ping", dependencies=[Depends(verify)])
        async def ping():
            return {"ok": True}

        response = TestClient(guarded).get(
            "/ping", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200


class TestVerifyToken:
    def test_correct_bearer_is_accepted(self, guarded_client):
        response = guarded_client.post(
            "/api/git/pull", headers={"Authorization": f"Bearer {TOKEN}"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_wrong_bearer_is_rejected(self, guarded_client):
        response = guarded_client.post(
            "/api/git/pull", headers={"Authorization": "Bearer dh_not_the_token"}
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid API token"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_hash_itself_is_not_a_token(self, guarded_client):
        response = guarded_client.post(
            "/api/git/pull", headers={"Authorization": f"Bearer {hash_api_token(TOKEN)}"}
        )

        assert response.status_code == 401

    @pytest.mark.parametrize(
        "headers", [{}, {"Authorization": f"Basic {TOKEN}"}, {"Authorization": TOKEN}]
    )
    def test_missing_or_non_bearer_credentials(self, guarded_client, headers):
        response = guarded_client.post("/api/git/pull", headers=headers)

        assert response.status_code in (401, 403)


class TestServerTokenConfiguration:
    """The running server derives its token hash from configuration."""

    @pytest.fixture
    def server_client(self, monkeypatch, tmp_path, compose_file):
        repo = tmp_path / "repo"
        repo.mkdir()

        def start(**token_env):
            environ = {
                "DECKHAND_REPO_PATH": str(repo),
                "DECKHAND_COMPOSE_FILE": str(compose_file),
                "DECKHAND_CONTAINERS": "web",
                **token_env,
            }
            services = MagicMock()
            services.status.get_snapshot = AsyncMock(return_value=StatusSnapshot())

            for name in ("services", "token_hash", "configured", "prepared"):
                monkeypatch.setattr(server_app, name, None)
            server_app.configure(DeckhandConfig.from_env(environ), services)
            return TestClient(server_app.app)

        return start

    def test_plaintext_token(self, server_client):
        with server_client(DECKHAND_API_TOKEN=TOKEN) as client:
            ok = client.get("/api/status", headers={"Authorization": f"Bearer {TOKEN}"})
            bad = client.get("/api/status", headers={"Authorization": "Bearer dh_other"})

        assert ok.status_code == 200
        assert bad.status_code == 401

    def test_configured_hash(self, server_client):
        with server_client(DECKHAND_API_TOKEN_HASH=hash_api_token(TOKEN)) as client:
            ok = client.get("/api/status", headers={"Authorization": f"Bearer {TOKEN}"})

        assert ok.status_code == 200
        assert server_app.token_hash == hash_api_token(TOKEN)
