"""Access to the authenticated identity stored in a session.

:class:`SessionClaims` answers two questions for the HTTP layer:

* *Who is signed in?* -- :meth:`~SessionClaims.get_claims` returns the
  verified ID token claims committed by the callback.
* *What does the provider say about them?* --
  :meth:`~SessionClaims.get_userinfo` forwards the stored access token to
  the provider's userinfo endpoint and hands back its status and body
  unchanged, including error responses.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping

import httpx

from oidclogin.discovery import DiscoveryCache
from oidclogin.exceptions import NotAuthenticatedError, UpstreamError
from oidclogin.models import IdentityClaims, UserinfoResponse
from oidclogin.session import SessionBinding

logger = logging.getLogger(__name__)


class SessionClaims:
    """Claims and userinfo accessor.

    Args:
        discovery: Provider metadata cache (for ``userinfo_endpoint``).
        http: Shared async HTTP client.
    """

    def __init__(self, discovery: DiscoveryCache, http: httpx.AsyncClient) -> None:
        self._discovery = discovery
        self._http = http

    def get_claims(self, session: MutableMapping[str, Any]) -> IdentityClaims:
        """Return the verified claims for the session.

        Raises:
            NotAuthenticatedError: If no login has completed in this session.
        """
        claims = SessionBinding(session).read().claims
        if claims is None:
            raise NotAuthenticatedError()
        return claims

    async def get_userinfo(self, session: MutableMapping[str, Any]) -> UserinfoResponse:
        """Call the provider's userinfo endpoint with the stored access token.

        The provider's answer is not reinterpreted: a 401 from the provider is
        returned as a 401 :class:`~oidclogin.models.UserinfoResponse`, not
        raised.

        Raises:
            NotAuthenticatedError: If the session holds no access token
                (error code ``no_access_token``).
            DiscoveryError: If provider metadata is unavailable.
            UpstreamError: If the provider advertises no userinfo endpoint or
                the request fails at the transport level.
        """
        tokens = SessionBinding(session).read().tokens
        if tokens is None or not tokens.access_token:
            raise NotAuthenticatedError("No access token in session", error="no_access_token")

        metadata = await self._discovery.get_provider_metadata()
        if not metadata.userinfo_endpoint:
            raise UpstreamError("Provider does not advertise a userinfo endpoint")

        try:
            response = await self._http.get(
                metadata.userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {tokens.access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Userinfo request failed: {exc}") from exc

        logger.debug("[USERINFO] Provider answered %s", response.status_code)
        content_type = response.headers.get("content-type", "application/json")
        try:
            body: Any = response.json()
            content_type = "application/json"
        except ValueError:
            body = response.text
        return UserinfoResponse(
            status_code=response.status_code,
            body=body,
            content_type=content_type,
        )
