"""ID token verification.

:func:`verify_id_token` checks everything a relying party must check before
trusting an ID token's identity claims:

1. The ``alg`` header is an asymmetric algorithm the provider advertises in
   ``id_token_signing_alg_values_supported`` (``none`` and HMAC algorithms
   are never accepted).
2. The signature verifies against the provider key named by ``kid``
   (see :class:`~oidclogin.keys.KeySet` for rotation handling).
3. ``iss`` equals the discovered issuer exactly.
4. ``aud`` contains the configured client id; with several audiences,
   ``azp`` (when present) must be the client id.
5. ``exp`` has not passed and ``iat`` is not in the future, both within the
   configured clock-skew leeway.

Any failure raises :class:`~oidclogin.exceptions.IdTokenVerificationError`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import jwt
from pydantic import ValidationError

from oidclogin.exceptions import IdTokenVerificationError
from oidclogin.keys import KeySet
from oidclogin.models import IdentityClaims, ProviderMetadata

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = frozenset(
    {
        "RS256", "RS384", "RS512",
        "PS256", "PS384", "PS512",
        "ES256", "ES384", "ES512",
        "EdDSA",
    }
)

REQUIRED_CLAIMS = ["iss", "sub", "aud", "exp", "iat"]


def allowed_algorithms(metadata: ProviderMetadata) -> list[str]:
    """Return the signing algorithms acceptable for this provider's ID tokens."""
    return [
        alg for alg in metadata.id_token_signing_alg_values_supported
        if alg in ASYMMETRIC_ALGORITHMS
    ]


async def verify_id_token(
    id_token: str,
    metadata: ProviderMetadata,
    key_set: KeySet,
    client_id: str,
    leeway: int = 60,
    now: Optional[float] = None,
) -> IdentityClaims:
    """Verify an ID token and return its claims.

    Args:
        id_token: The compact-serialised JWT from the token response.
        metadata: Discovered provider metadata (issuer, JWKS location,
            supported algorithms).
        key_set: Cached provider keys.
        client_id: The configured client identifier expected in ``aud``.
        leeway: Allowed clock skew in seconds for ``exp`` and ``iat``.
        now: Current UNIX time; defaults to :func:`time.time`.

    Returns:
        The verified :class:`~oidclogin.models.IdentityClaims`.

    Raises:
        IdTokenVerificationError: If any check fails.
    """
    try:
        header = jwt.get_unverified_header(id_token)
    except jwt.PyJWTError as exc:
        raise IdTokenVerificationError(f"ID token is malformed: {exc}") from exc

    alg = header.get("alg")
    algorithms = allowed_algorithms(metadata)
    if alg not in algorithms:
        raise IdTokenVerificationError(
            f"ID token algorithm '{alg}' is not allowed (expected one of {algorithms})"
        )

    key = await key_set.get_signing_key(metadata.jwks_uri, header.get("kid"))

    try:
        payload: dict[str, Any] = jwt.decode(
            id_token,
            key.key,
            algorithms=[alg],
            audience=client_id,
            issuer=metadata.issuer,
            leeway=leeway,
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as exc:
        raise IdTokenVerificationError("ID token has expired") from exc
    except jwt.ImmatureSignatureError as exc:
        raise IdTokenVerificationError("ID token was issued in the future") from exc
    except jwt.InvalidAudienceError as exc:
        raise IdTokenVerificationError(
            f"ID token audience does not include client '{client_id}'"
        ) from exc
    except jwt.InvalidIssuerError as exc:
        raise IdTokenVerificationError(
            f"ID token issuer does not match '{metadata.issuer}'"
        ) from exc
    except jwt.PyJWTError as exc:
        raise IdTokenVerificationError(f"ID token is invalid: {exc}") from exc

    _check_issued_at(payload["iat"], leeway, now)
    _check_authorized_party(payload, client_id)

    try:
        claims = IdentityClaims.model_validate(payload)
    except ValidationError as exc:
        raise IdTokenVerificationError(f"ID token claims are malformed: {exc}") from exc

    logger.debug("[CALLBACK] ID token verified for subject %s", claims.sub)
    return claims


def _check_issued_at(iat: Any, leeway: int, now: Optional[float]) -> None:
    if isinstance(iat, bool) or not isinstance(iat, (int, float)):
        raise IdTokenVerificationError("ID token 'iat' claim is not a number")
    current = time.time() if now is None else now
    if iat > current + leeway:
        raise IdTokenVerificationError("ID token was issued in the future")


def _check_authorized_party(payload: dict[str, Any], client_id: str) -> None:
    aud = payload.get("aud")
    azp = payload.get("azp")
    if isinstance(aud, list) and len(aud) > 1 and azp is not None and azp != client_id:
        raise IdTokenVerificationError(
            f"ID token authorized party '{azp}' is not client '{client_id}'"
        )
