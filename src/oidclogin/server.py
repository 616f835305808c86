"""FastAPI application factory and HTTP routes.

:func:`create_app` wires the flow components into a FastAPI app:

=========  ============  ====================================================
Method     Path          Behaviour
=========  ============  ====================================================
GET        ``/``         Minimal HTML status page
GET        ``/login``    302 to the provider authorization endpoint
GET        ``/callback`` Completes the login, 302 to ``post_login_redirect``
GET        ``/me``       ``{"claims": {...}}`` or 401 ``not_authenticated``
GET        ``/userinfo`` Provider userinfo passed through, 401 without token
POST       ``/logout``   Destroys the local session, 204
=========  ============  ====================================================

Every :class:`~oidclogin.exceptions.OIDCLoginError` is rendered by one
exception handler as a JSON body with the error's ``status_code``.

The provider-facing objects (:class:`~oidclogin.discovery.DiscoveryCache`,
:class:`~oidclogin.keys.KeySet`, the ``httpx.AsyncClient``) are created once
per application and kept on ``app.state``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.responses import Response

from oidclogin import __version__
from oidclogin.claims import SessionClaims
from oidclogin.discovery import DiscoveryCache
from oidclogin.exceptions import OIDCLoginError
from oidclogin.flow import AuthorizationFlow
from oidclogin.keys import KeySet
from oidclogin.models import CallbackQuery, Settings
from oidclogin.session import (
    ServerSessionMiddleware,
    SessionBinding,
    SessionStore,
    create_session_store,
    regenerate_session,
)

logger = logging.getLogger(__name__)

_HOME_PAGE = """<!DOCTYPE html>
<html>
<head><title>Auth Code + PKCE</title></head>
<body>
  <h1>Auth Code + PKCE</h1>
  <p>Status: {status}</p>
  <p>
    <a href="/login">Login</a> |
    <a href="/me">/me</a> |
    <a href="/userinfo">/userinfo</a>
  </p>
  <form method="post" action="/logout"><button>Logout</button></form>
</body>
</html>"""


def create_app(
    settings: Settings,
    http: Optional[httpx.AsyncClient] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """Build the login backend.

    Args:
        settings: Effective configuration.
        http: HTTP client for provider requests. When omitted, one is
            created with ``settings.http_timeout`` and closed on shutdown.
        session_store: Server-side session storage. Defaults to the store
            named by ``settings.session_backend``.

    Returns:
        The configured :class:`fastapi.FastAPI` application.
    """
    owns_http = http is None
    if http is None:
        http = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout))
    store = session_store or create_session_store(settings.session_backend, settings.session_dir)

    discovery = DiscoveryCache(settings.discovery_url, http, issuer=settings.issuer)
    key_set = KeySet(http)
    flow = AuthorizationFlow(settings, discovery, key_set, http)
    claims = SessionClaims(discovery, http)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("[STARTUP] Relying party %s for issuer %s", settings.client_id, settings.issuer)
        try:
            yield
        finally:
            if owns_http:
                await http.aclose()
            store.close()

    app = FastAPI(title="oidclogin", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.http = http
    app.state.discovery = discovery
    app.state.key_set = key_set
    app.state.flow = flow
    app.state.claims = claims
    app.state.session_store = store

    app.add_middleware(
        ServerSessionMiddleware,
        store=store,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=settings.https_only,
    )
    if settings.cors_origin:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[settings.cors_origin],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(OIDCLoginError)
    async def _oidc_error_handler(request: Request, exc: OIDCLoginError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("[HTTP] %s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("[HTTP] %s %s -> %s %s", request.method, request.url.path,
                        exc.status_code, exc.error)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request) -> HTMLResponse:
        signed_in = SessionBinding(request.session).read().is_authenticated
        return HTMLResponse(_HOME_PAGE.format(status="signed in" if signed_in else "signed out"))

    @app.get("/login")
    async def login(request: Request) -> RedirectResponse:
        url = await flow.begin_login(request.session)
        return RedirectResponse(url, status_code=302)

    @app.get("/callback")
    async def callback(request: Request) -> RedirectResponse:
        query = CallbackQuery.model_validate(dict(request.query_params))
        await flow.handle_callback(request.session, query)
        regenerate_session(request.scope)
        return RedirectResponse(settings.post_login_redirect, status_code=302)

    @app.get("/me")
    async def me(request: Request) -> dict:
        return {"claims": claims.get_claims(request.session).model_dump(mode="json")}

    @app.get("/userinfo")
    async def userinfo(request: Request) -> Response:
        result = await claims.get_userinfo(request.session)
        if isinstance(result.body, str):
            return Response(
                result.body, status_code=result.status_code, media_type=result.content_type
            )
        return JSONResponse(result.body, status_code=result.status_code)

    @app.post("/logout", status_code=204)
    async def logout(request: Request) -> Response:
        SessionBinding(request.session).destroy()
        return Response(status_code=204)

    return app


def create_app_from_env() -> FastAPI:
    """App factory for ``uvicorn --factory``; reads settings from the environment."""
    from oidclogin.config import load_settings

    return create_app(load_settings())
