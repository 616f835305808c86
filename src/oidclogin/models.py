"""Canonical Pydantic models shared across all oidclogin modules.

This is the single source of truth for data shapes in the project. The models
fall into two groups:

**Configuration models** -- resolved once at startup by
:func:`oidclogin.config.load_settings`:
    :class:`Settings`.

**Flow models** -- produced and consumed by the login flow and stored in the
browser session:
    :class:`ProviderMetadata`, :class:`PendingAuthAttempt`,
    :class:`TokenSet`, :class:`IdentityClaims`, :class:`SessionState`,
    :class:`CallbackQuery`, :class:`CallbackResult` and
    :class:`UserinfoResponse`.

Models that mirror provider documents (metadata, token responses, ID token
claims) use ``extra="allow"`` so provider-defined fields are preserved in
``model_extra`` and survive a round trip through the session store.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Settings ---


class Settings(BaseModel):
    """Effective runtime configuration for the login backend.

    Example::

        Settings(
            issuer="https://login.example.com",
            client_id="my-app",
            redirect_uri="http://localhost:3000/callback",
        )
    """

    issuer: str = Field(description="OpenID provider issuer URL")
    client_id: str = Field(description="OAuth client identifier")
    client_secret: Optional[str] = Field(
        default=None,
        description="Client secret; only set for confidential clients",
    )
    redirect_uri: str = Field(
        default="http://localhost:3000/callback",
        description="Callback URL registered with the provider",
    )
    audience: Optional[str] = Field(
        default=None, description="Resource server audience for the access token"
    )
    scopes: list[str] = Field(
        default_factory=lambda: ["openid", "profile", "email"],
        description="Requested scopes; 'openid' is always included",
    )
    host: str = "127.0.0.1"
    port: int = 3000
    session_secret: str = Field(
        default="dev_secret", description="Key used to sign the session cookie"
    )
    session_cookie: str = "sid"
    session_max_age: int = Field(
        default=24 * 60 * 60, description="Session lifetime in seconds"
    )
    session_backend: Literal["memory", "disk"] = "memory"
    session_dir: Optional[str] = Field(
        default=None, description="Directory for the disk session backend"
    )
    https_only: bool = False
    cors_origin: Optional[str] = Field(
        default="http://localhost:5173",
        description="SPA origin allowed to call the API with credentials",
    )
    http_timeout: float = Field(
        default=10.0, gt=0, description="Timeout in seconds for provider requests"
    )
    clock_skew: int = Field(
        default=60, ge=0, description="Leeway in seconds for exp/iat checks"
    )
    post_login_redirect: str = "/"

    @field_validator("issuer")
    @classmethod
    def _strip_issuer(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("scopes")
    @classmethod
    def _require_openid(cls, value: list[str]) -> list[str]:
        if "openid" not in value:
            return ["openid", *value]
        return value

    @property
    def is_confidential(self) -> bool:
        """Whether the client authenticates to the token endpoint with a secret."""
        return bool(self.client_secret)

    @property
    def discovery_url(self) -> str:
        """URL of the provider's OpenID configuration document."""
        return f"{self.issuer}/.well-known/openid-configuration"


# --- Provider metadata ---


class ProviderMetadata(BaseModel):
    """The subset of the OpenID provider configuration used by the flow.

    Frozen once fetched; the :class:`~oidclogin.discovery.DiscoveryCache`
    holds one instance for the lifetime of the process.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: Optional[str] = None
    id_token_signing_alg_values_supported: list[str] = Field(
        default_factory=lambda: ["RS256"]
    )


# --- Session contents ---


class PendingAuthAttempt(BaseModel):
    """Per-attempt secrets stashed in the session between login and callback."""

    state: str = Field(description="Anti-forgery token round-tripped via the provider")
    verifier: str = Field(description="PKCE code verifier, never sent to the browser")


class TokenSet(BaseModel):
    """Token endpoint response for a successful code exchange."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None


class IdentityClaims(BaseModel):
    """Verified ID token payload. Only built after signature verification."""

    model_config = ConfigDict(extra="allow")

    iss: str
    sub: str
    aud: Union[str, list[str]]
    exp: Union[int, float]
    iat: Union[int, float]


class SessionState(BaseModel):
    """Typed view of the login-related part of a browser session."""

    pending_attempt: Optional[PendingAuthAttempt] = None
    tokens: Optional[TokenSet] = None
    claims: Optional[IdentityClaims] = None

    @property
    def is_authenticated(self) -> bool:
        return self.claims is not None


# --- Callback and userinfo ---


class CallbackQuery(BaseModel):
    """Query parameters the provider appends to the redirect URI."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class CallbackResult(BaseModel):
    """What a completed callback committed to the session."""

    tokens: TokenSet
    claims: Optional[IdentityClaims] = None


class UserinfoResponse(BaseModel):
    """Userinfo endpoint response passed through to the caller unchanged."""

    status_code: int
    body: Any = None
    content_type: str = "application/json"
