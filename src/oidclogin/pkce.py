"""PKCE and anti-forgery state generation (:rfc:`7636`).

Each login attempt gets a fresh :class:`~oidclogin.models.PendingAuthAttempt`
holding two independent random values:

* ``verifier`` -- 32 random bytes (256 bits), kept server-side and only sent
  to the token endpoint.
* ``state`` -- 16 random bytes (128 bits), round-tripped through the
  provider redirect to bind the callback to the session.

Both are base64url encoded without padding. The challenge sent in the
authorization request is always ``S256``; the ``plain`` method is never used.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from oidclogin.models import PendingAuthAttempt

CHALLENGE_METHOD = "S256"
VERIFIER_BYTES = 32
STATE_BYTES = 16


def b64url(data: bytes) -> str:
    """Encode *data* as base64url without ``=`` padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_verifier() -> str:
    # 32 bytes encode to 43 characters, the RFC 7636 minimum length
    return b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_state() -> str:
    return b64url(secrets.token_bytes(STATE_BYTES))


def derive_challenge(verifier: str) -> str:
    """Return the S256 code challenge for *verifier*.

    Args:
        verifier: The PKCE code verifier.

    Returns:
        ``base64url(SHA-256(verifier))`` without padding.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def generate_attempt() -> PendingAuthAttempt:
    """Create the secrets for one login attempt."""
    return PendingAuthAttempt(state=generate_state(), verifier=generate_verifier())
