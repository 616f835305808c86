"""OpenID provider discovery with a process-lifetime cache.

This module provides :class:`DiscoveryCache`, which fetches the provider's
``/.well-known/openid-configuration`` document on first use and keeps the
parsed :class:`~oidclogin.models.ProviderMetadata` for the lifetime of the
owning application. There is no invalidation; a restart picks up changed
metadata.

Concurrent first callers are not deduplicated. Each may fetch the document;
since metadata is frozen once parsed, the redundant fetches only overwrite
the cache with an equal value.

See Also:
    :class:`oidclogin.flow.AuthorizationFlow`, the main consumer.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from oidclogin.exceptions import DiscoveryError
from oidclogin.models import ProviderMetadata

logger = logging.getLogger(__name__)


class DiscoveryCache:
    """Lazily fetched, memoized provider metadata.

    Args:
        discovery_url: URL of the provider's OpenID configuration document.
        http: Shared async HTTP client, configured with the request timeout.
        issuer: Expected issuer. When given, the document's ``issuer`` must
            match it, ignoring a trailing slash.

    Example::

        cache = DiscoveryCache(settings.discovery_url, http, issuer=settings.issuer)
        metadata = await cache.get_provider_metadata()
        metadata.token_endpoint
    """

    def __init__(
        self,
        discovery_url: str,
        http: httpx.AsyncClient,
        issuer: Optional[str] = None,
    ) -> None:
        self._discovery_url = discovery_url
        self._http = http
        self._issuer = issuer
        self._metadata: Optional[ProviderMetadata] = None

    @property
    def discovery_url(self) -> str:
        return self._discovery_url

    @property
    def cached(self) -> Optional[ProviderMetadata]:
        """The cached metadata, or ``None`` before the first successful fetch."""
        return self._metadata

    async def get_provider_metadata(self) -> ProviderMetadata:
        """Return the provider metadata, fetching it on first use.

        Returns:
            The cached :class:`~oidclogin.models.ProviderMetadata`.

        Raises:
            DiscoveryError: If the document cannot be fetched, is not JSON,
                or lacks a required endpoint, or names a different issuer.
                Nothing is cached on failure.
        """
        if self._metadata is not None:
            return self._metadata

        doc = await self._fetch()
        try:
            metadata = ProviderMetadata.model_validate(doc)
        except ValidationError as exc:
            raise DiscoveryError(
                f"OpenID discovery document at {self._discovery_url} is invalid: {exc}"
            ) from exc

        if self._issuer is not None and metadata.issuer.rstrip("/") != self._issuer.rstrip("/"):
            raise DiscoveryError(
                f"OpenID discovery issuer '{metadata.issuer}' does not match "
                f"configured issuer '{self._issuer}'"
            )

        logger.info("[DISCOVERY] Loaded metadata for issuer %s", metadata.issuer)
        self._metadata = metadata
        return metadata

    async def _fetch(self) -> dict[str, Any]:
        """GET the discovery document and return it as a dict."""
        logger.debug("[DISCOVERY] Fetching %s", self._discovery_url)
        try:
            response = await self._http.get(
                self._discovery_url,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            doc = response.json()
        except httpx.HTTPStatusError as exc:
            raise DiscoveryError(
                f"OpenID discovery failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"OpenID discovery failed: {exc}") from exc
        except ValueError as exc:
            raise DiscoveryError(f"OpenID discovery returned invalid JSON: {exc}") from exc

        if not isinstance(doc, dict):
            raise DiscoveryError("OpenID discovery document is not a JSON object")
        return doc
