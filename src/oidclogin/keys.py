"""Provider signing keys (JWKS) with support for key rotation.

:class:`KeySet` downloads the provider's published JSON Web Key Set and
keeps it for the lifetime of the application. Providers rotate keys by
publishing a new key id (``kid``) before signing with it, so a token whose
``kid`` is not in the cached set triggers one refetch of the key set. A
verification attempt never fetches more than once.

Keys are parsed with :class:`jwt.PyJWKSet`; keys marked for encryption
(``"use": "enc"``) or of an unsupported type are ignored.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
import jwt

from oidclogin.exceptions import IdTokenVerificationError

logger = logging.getLogger(__name__)


class KeySet:
    """Cached JWKS for one provider.

    Args:
        http: Shared async HTTP client, configured with the request timeout.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http
        self._keys: Optional[jwt.PyJWKSet] = None
        self.fetch_count = 0

    async def get_signing_key(self, jwks_uri: str, kid: Optional[str]) -> jwt.PyJWK:
        """Return the public key that signed a token.

        Uses the cached key set when it contains *kid*. Otherwise the key set
        is fetched (again) once and searched a second time.

        Args:
            jwks_uri: The provider's ``jwks_uri`` from discovery.
            kid: The ``kid`` header of the token, or ``None`` if absent. A
                token without ``kid`` is accepted only when the key set
                holds exactly one signing key.

        Returns:
            The matching :class:`jwt.PyJWK`.

        Raises:
            IdTokenVerificationError: If the key set cannot be fetched or no
                key matches after the refetch.
        """
        fetched = False
        if self._keys is None:
            self._keys = await self._fetch(jwks_uri)
            fetched = True

        key = self._find(kid)
        if key is None and not fetched:
            logger.info("[JWKS] Key id %s not in cached key set, refetching", kid)
            self._keys = await self._fetch(jwks_uri)
            key = self._find(kid)

        if key is None:
            if kid is None:
                raise IdTokenVerificationError(
                    "ID token has no 'kid' header and the key set is ambiguous"
                )
            raise IdTokenVerificationError(f"No signing key found for key id '{kid}'")
        return key

    def _find(self, kid: Optional[str]) -> Optional[jwt.PyJWK]:
        assert self._keys is not None
        keys = self._keys.keys
        if kid is None:
            return keys[0] if len(keys) == 1 else None
        for key in keys:
            if key.key_id == kid:
                return key
        return None

    async def _fetch(self, jwks_uri: str) -> jwt.PyJWKSet:
        """Download and parse the key set."""
        self.fetch_count += 1
        logger.debug("[JWKS] Fetching %s", jwks_uri)
        try:
            response = await self._http.get(jwks_uri, headers={"Accept": "application/json"})
            response.raise_for_status()
            data: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise IdTokenVerificationError(
                f"Key set fetch failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise IdTokenVerificationError(f"Key set fetch failed: {exc}") from exc
        except ValueError as exc:
            raise IdTokenVerificationError(f"Key set is not valid JSON: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise IdTokenVerificationError("Key set document has no 'keys' list")

        signing = [
            k for k in data["keys"]
            if isinstance(k, dict) and k.get("use", "sig") == "sig"
        ]
        try:
            return jwt.PyJWKSet(signing)
        except jwt.PyJWTError as exc:
            raise IdTokenVerificationError(f"Key set has no usable keys: {exc}") from exc
