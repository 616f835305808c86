"""Shared test fixtures for oidclogin.

Provides the fake provider, settings pointing at it, ready-wired flow
objects and a FastAPI test client. These fixtures are automatically
discovered by pytest and available to all test modules.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import httpx
import pytest
from rich.logging import RichHandler

from fakes import CLIENT_ID, ISSUER, REDIRECT_URI, FakeProvider
from oidclogin.claims import SessionClaims
from oidclogin.discovery import DiscoveryCache
from oidclogin.flow import AuthorizationFlow
from oidclogin.keys import KeySet
from oidclogin.models import Settings
from oidclogin.output import reset_output

# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global output and drop handlers installed by ``setup_logging``."""
    yield
    reset_output()
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(handler)


# ---------------------------------------------------------------------------
# Provider and settings
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def http(provider: FakeProvider) -> httpx.AsyncClient:
    """Async HTTP client whose requests are answered by the fake provider."""
    return httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        session_secret="test-session-secret",
        cors_origin=None,
    )


@pytest.fixture
def discovery(settings: Settings, http: httpx.AsyncClient) -> DiscoveryCache:
    return DiscoveryCache(settings.discovery_url, http, issuer=settings.issuer)


@pytest.fixture
def key_set(http: httpx.AsyncClient) -> KeySet:
    return KeySet(http)


@pytest.fixture
def flow(
    settings: Settings,
    discovery: DiscoveryCache,
    key_set: KeySet,
    http: httpx.AsyncClient,
) -> AuthorizationFlow:
    return AuthorizationFlow(settings, discovery, key_set, http)


@pytest.fixture
def session_claims(discovery: DiscoveryCache, http: httpx.AsyncClient) -> SessionClaims:
    return SessionClaims(discovery, http)


# ---------------------------------------------------------------------------
# HTTP app
# ---------------------------------------------------------------------------


@pytest.fixture
def client(settings: Settings, http: httpx.AsyncClient):
    """FastAPI TestClient for the login backend, backed by the fake provider."""
    from fastapi.testclient import TestClient

    from oidclogin.server import create_app
    from oidclogin.session import MemorySessionStore

    app = create_app(settings, http=http, session_store=MemorySessionStore())
    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Clear oidclogin environment variables and run in an empty directory.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    from oidclogin.config import _ENV_FIELDS

    for var in _ENV_FIELDS:
        # setenv first so teardown also removes values a test loads from .env
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    monkeypatch.setattr("oidclogin.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()
