"""End-to-end tests for the HTTP surface against the fake provider."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from fakes import ISSUER, FakeProvider
from oidclogin.models import Settings
from oidclogin.server import create_app
from oidclogin.session import MemorySessionStore


def _login(client: TestClient, provider: FakeProvider) -> tuple[str, str]:
    """Follow /login to the provider and return the ``(code, state)`` it issues."""
    response = client.get("/login", follow_redirects=False)
    assert response.status_code == 302
    return provider.authorize(response.headers["location"])


def _callback(client: TestClient, code: str, state: str):
    return client.get("/callback", params={"code": code, "state": state}, follow_redirects=False)


# ---------------------------------------------------------------------------
# Login round trip
# ---------------------------------------------------------------------------


class TestLoginRoundTrip:
    def test_login_redirects_to_provider(self, client: TestClient) -> None:
        response = client.get("/login", follow_redirects=False)
        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(f"{ISSUER}/authorize?")
        params = parse_qs(urlsplit(location).query)
        assert params["code_challenge_method"] == ["S256"]
        assert "sid" in client.cookies

    def test_full_login(self, client: TestClient, provider: FakeProvider) -> None:
        code, state = _login(client, provider)
        response = _callback(client, code, state)

        assert response.status_code == 302
        assert response.headers["location"] == "/"

        me = client.get("/me")
        assert me.status_code == 200
        claims = me.json()["claims"]
        assert claims["sub"] == "u1"
        assert claims["iss"] == ISSUER

        assert "signed in" in client.get("/").text

    def test_session_id_changes_on_login(self, client: TestClient, provider) -> None:
        code, state = _login(client, provider)
        before = client.cookies["sid"]
        _callback(client, code, state)
        assert client.cookies["sid"] != before

    def test_replayed_callback_is_rejected(self, client: TestClient, provider) -> None:
        code, state = _login(client, provider)
        assert _callback(client, code, state).status_code == 302

        replay = _callback(client, code, state)
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_state"
        assert client.get("/me").status_code == 200

    def test_parallel_logins_only_latest_completes(self, client: TestClient, provider) -> None:
        first = _login(client, provider)
        second = _login(client, provider)

        assert _callback(client, *first).status_code == 400
        assert _callback(client, *second).status_code == 302
        assert client.get("/me").status_code == 200

    def test_callback_from_another_browser_is_rejected(
        self, client: TestClient, provider: FakeProvider
    ) -> None:
        code, state = _login(client, provider)
        with TestClient(client.app) as other:
            response = _callback(other, code, state)
        assert response.status_code == 400
        assert provider.count("/token") == 0
        assert _callback(client, code, state).status_code == 302


class TestCallbackErrors:
    def test_missing_state(self, client: TestClient, provider) -> None:
        _login(client, provider)
        response = client.get("/callback", params={"code": "c"}, follow_redirects=False)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"

    def test_tampered_state(self, client: TestClient, provider) -> None:
        code, state = _login(client, provider)
        response = _callback(client, code, "tampered")
        assert response.status_code == 400
        assert client.get("/me").status_code == 401
        # The pending attempt survives a forged callback.
        assert _callback(client, code, state).status_code == 302

    def test_provider_denied(self, client: TestClient, provider) -> None:
        _, state = _login(client, provider)
        response = client.get(
            "/callback",
            params={"state": state, "error": "access_denied", "error_description": "nope"},
            follow_redirects=False,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "access_denied"
        assert "nope" in body["error_description"]

    def test_token_exchange_failure(self, client: TestClient, provider: FakeProvider) -> None:
        provider.token_status = 400
        code, state = _login(client, provider)
        response = _callback(client, code, state)

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "token_exchange_failed"
        assert body["upstream_status"] == 400
        assert client.get("/me").status_code == 401

    def test_invalid_id_token(self, client: TestClient, provider: FakeProvider) -> None:
        provider.id_token_claims = {"aud": "another-client"}
        code, state = _login(client, provider)
        response = _callback(client, code, state)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_id_token"
        assert client.get("/me").status_code == 401

    def test_discovery_failure_on_login(self, client: TestClient, provider) -> None:
        provider.discovery_status = 500
        response = client.get("/login", follow_redirects=False)
        assert response.status_code == 502
        assert response.json()["error"] == "discovery_failed"
        assert "sid" not in client.cookies


# ---------------------------------------------------------------------------
# Claims, userinfo, logout
# ---------------------------------------------------------------------------


class TestProtectedRoutes:
    def test_me_requires_login(self, client: TestClient) -> None:
        response = client.get("/me")
        assert response.status_code == 401
        assert response.json() == {"error": "not_authenticated"}

    def test_userinfo_requires_token(self, client: TestClient) -> None:
        response = client.get("/userinfo")
        assert response.status_code == 401
        assert response.json() == {"error": "no_access_token"}

    def test_userinfo_passthrough(self, client: TestClient, provider: FakeProvider) -> None:
        _callback(client, *_login(client, provider))
        response = client.get("/userinfo")
        assert response.status_code == 200
        assert response.json() == {"sub": "u1", "email": "u1@example.com"}

    def test_userinfo_provider_error_passthrough(
        self, client: TestClient, provider: FakeProvider
    ) -> None:
        _callback(client, *_login(client, provider))
        provider.userinfo_status = 503
        provider.userinfo_body = "maintenance"
        response = client.get("/userinfo")
        assert response.status_code == 503
        assert response.text == "maintenance"
        assert response.headers["content-type"].startswith("text/plain")

    def test_userinfo_signed_response_keeps_content_type(
        self, client: TestClient, provider: FakeProvider
    ) -> None:
        _callback(client, *_login(client, provider))
        signed = provider.mint_id_token()
        provider.userinfo_body = signed
        provider.userinfo_content_type = "application/jwt"
        response = client.get("/userinfo")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/jwt"
        assert response.text == signed

    def test_home_signed_out(self, client: TestClient) -> None:
        response = client.get("/")
        assert response.status_code == 200
        assert "signed out" in response.text

    def test_logout(self, client: TestClient, provider: FakeProvider) -> None:
        _callback(client, *_login(client, provider))
        assert client.get("/me").status_code == 200

        response = client.post("/logout")
        assert response.status_code == 204
        assert client.get("/me").status_code == 401
        assert client.get("/userinfo").status_code == 401
        assert len(client.app.state.session_store) == 0

    def test_logout_when_signed_out(self, client: TestClient) -> None:
        assert client.post("/logout").status_code == 204


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_provider_objects_shared_on_state(self, client: TestClient) -> None:
        state = client.app.state
        assert state.flow is not None
        assert state.discovery.discovery_url == f"{ISSUER}/.well-known/openid-configuration"

    def test_discovery_fetched_once_across_requests(
        self, client: TestClient, provider: FakeProvider
    ) -> None:
        _callback(client, *_login(client, provider))
        _callback(client, *_login(client, provider))
        assert provider.count("/.well-known/openid-configuration") == 1

    def test_cors_headers(self, settings: Settings, http) -> None:
        settings = settings.model_copy(update={"cors_origin": "http://localhost:5173"})
        app = create_app(settings, http=http, session_store=MemorySessionStore())
        with TestClient(app) as client:
            response = client.get("/me", headers={"Origin": "http://localhost:5173"})
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"
        assert response.headers["access-control-allow-credentials"] == "true"

    def test_post_login_redirect(self, settings: Settings, http, provider) -> None:
        settings = settings.model_copy(update={"post_login_redirect": "http://localhost:5173/"})
        app = create_app(settings, http=http, session_store=MemorySessionStore())
        with TestClient(app) as client:
            response = _callback(client, *_login(client, provider))
        assert response.headers["location"] == "http://localhost:5173/"

    def test_factory_reads_environment(
        self, isolated_env, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from oidclogin.server import create_app_from_env

        monkeypatch.setenv("ISSUER", ISSUER)
        monkeypatch.setenv("CLIENT_ID", "env-client")
        app = create_app_from_env()
        assert app.state.settings.client_id == "env-client"
        assert isinstance(app.state.session_store, MemorySessionStore)
