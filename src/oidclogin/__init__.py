"""oidclogin -- OAuth 2.0 Authorization Code + PKCE login against an OpenID Connect provider.

This package runs a small web backend that signs users in through a
discovered OpenID Connect provider and binds the resulting tokens and
verified identity claims to a server-side browser session.

Typical workflow::

    export ISSUER=https://login.example.com CLIENT_ID=my-app
    oidclogin discover     # check the provider metadata
    oidclogin serve        # run the login backend on :3000

Modules:
    app: Typer application and CLI entry point.
    server: FastAPI application factory and HTTP routes.
    flow: Login initiation and callback handling state machine.
    discovery: Provider metadata discovery cache.
    pkce: PKCE verifier/challenge and state generation.
    keys: JWKS fetching with key-rotation support.
    id_token: ID token signature and claim verification.
    claims: Session claims and userinfo access.
    session: Typed session binding, session stores and cookie middleware.
    models: Pydantic models shared across the package.
    config: Settings resolution from flags, env, project file and defaults.
    exceptions: Exception hierarchy with HTTP status and exit-code mapping.
    output: stdout/stderr formatting for the CLI with Rich support.
"""

__version__ = "0.1.0"
