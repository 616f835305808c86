"""Authorization Code + PKCE login flow.

:class:`AuthorizationFlow` implements the two halves of a login:

1. :meth:`~AuthorizationFlow.begin_login` generates a
   :class:`~oidclogin.models.PendingAuthAttempt`, stashes it in the session
   (replacing any earlier attempt) and returns the provider authorization
   URL.
2. :meth:`~AuthorizationFlow.handle_callback` checks the returned state
   against the stash, exchanges the code at the token endpoint, verifies the
   ID token and commits tokens and claims to the session.

The callback runs through an explicit stage machine (:class:`CallbackStage`)::

    AWAITING_CODE -> STATE_VALIDATED -> CODE_EXCHANGED
        -> ID_TOKEN_VERIFIED | ID_TOKEN_ABSENT -> COMPLETE

Any stage may move to ``REJECTED``. The session is written in exactly two
places: the final commit after ``ID_TOKEN_VERIFIED``/``ID_TOKEN_ABSENT``,
and, for rejections after ``STATE_VALIDATED``, removal of the consumed
pending attempt. A rejection at ``AWAITING_CODE`` writes nothing.
"""

from __future__ import annotations

import enum
import hmac
import logging
from typing import Any, MutableMapping, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from oidclogin.discovery import DiscoveryCache
from oidclogin.exceptions import (
    AuthorizationDeniedError,
    InvalidStateError,
    OIDCLoginError,
    TokenExchangeError,
)
from oidclogin.id_token import verify_id_token
from oidclogin.keys import KeySet
from oidclogin.models import (
    CallbackQuery,
    CallbackResult,
    IdentityClaims,
    PendingAuthAttempt,
    ProviderMetadata,
    SessionState,
    Settings,
    TokenSet,
)
from oidclogin.pkce import CHALLENGE_METHOD, derive_challenge, generate_attempt
from oidclogin.session import SessionBinding

logger = logging.getLogger(__name__)


class CallbackStage(str, enum.Enum):
    """Stages of a single callback."""

    AWAITING_CODE = "awaiting_code"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    ID_TOKEN_VERIFIED = "id_token_verified"
    ID_TOKEN_ABSENT = "id_token_absent"
    COMPLETE = "complete"
    REJECTED = "rejected"


_TRANSITIONS: dict[CallbackStage, frozenset[CallbackStage]] = {
    CallbackStage.AWAITING_CODE: frozenset(
        {CallbackStage.STATE_VALIDATED, CallbackStage.REJECTED}
    ),
    CallbackStage.STATE_VALIDATED: frozenset(
        {CallbackStage.CODE_EXCHANGED, CallbackStage.REJECTED}
    ),
    CallbackStage.CODE_EXCHANGED: frozenset(
        {
            CallbackStage.ID_TOKEN_VERIFIED,
            CallbackStage.ID_TOKEN_ABSENT,
            CallbackStage.REJECTED,
        }
    ),
    CallbackStage.ID_TOKEN_VERIFIED: frozenset(
        {CallbackStage.COMPLETE, CallbackStage.REJECTED}
    ),
    CallbackStage.ID_TOKEN_ABSENT: frozenset(
        {CallbackStage.COMPLETE, CallbackStage.REJECTED}
    ),
    CallbackStage.COMPLETE: frozenset(),
    CallbackStage.REJECTED: frozenset(),
}


class CallbackTransaction:
    """Tracks one callback through :class:`CallbackStage` transitions.

    Raises :class:`RuntimeError` on a transition the stage machine does not
    allow; that is a bug in the caller, not a protocol failure.
    """

    def __init__(self) -> None:
        self.stage = CallbackStage.AWAITING_CODE
        self.history: list[CallbackStage] = [self.stage]

    def advance(self, stage: CallbackStage) -> None:
        if stage not in _TRANSITIONS[self.stage]:
            raise RuntimeError(
                f"Illegal callback transition {self.stage.value} -> {stage.value}"
            )
        self.stage = stage
        self.history.append(stage)

    @property
    def state_validated(self) -> bool:
        return CallbackStage.STATE_VALIDATED in self.history


class AuthorizationFlow:
    """Login initiation and callback handling for one OAuth client.

    Args:
        settings: Client registration and flow settings.
        discovery: Provider metadata cache.
        key_set: Provider signing keys.
        http: Shared async HTTP client used for the token request.

    Example::

        flow = AuthorizationFlow(settings, discovery, KeySet(http), http)
        url = await flow.begin_login(request.session)
        ...
        result = await flow.handle_callback(request.session, query)
    """

    def __init__(
        self,
        settings: Settings,
        discovery: DiscoveryCache,
        key_set: KeySet,
        http: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._discovery = discovery
        self._key_set = key_set
        self._http = http

    # ------------------------------------------------------------------ #
    # Login initiation
    # ------------------------------------------------------------------ #

    async def begin_login(self, session: MutableMapping[str, Any]) -> str:
        """Start a login and return the provider authorization URL.

        Args:
            session: The browser session mapping. Receives the new pending
                attempt, replacing any earlier one.

        Returns:
            The URL to redirect the browser to.

        Raises:
            DiscoveryError: If provider metadata is unavailable. The session
                is not modified in that case.
        """
        metadata = await self._discovery.get_provider_metadata()
        attempt = generate_attempt()
        SessionBinding(session).stash_pending(attempt)
        logger.info("[LOGIN] Redirecting to %s", metadata.authorization_endpoint)
        return self.authorization_url(metadata, attempt)

    def authorization_url(self, metadata: ProviderMetadata, attempt: PendingAuthAttempt) -> str:
        """Build the authorization request URL for *attempt*."""
        params: dict[str, str] = {
            "client_id": self._settings.client_id,
            "response_type": "code",
            "redirect_uri": self._settings.redirect_uri,
            "scope": " ".join(self._settings.scopes),
            "code_challenge": derive_challenge(attempt.verifier),
            "code_challenge_method": CHALLENGE_METHOD,
            "state": attempt.state,
        }
        if self._settings.audience:
            params["audience"] = self._settings.audience

        endpoint = metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    # ------------------------------------------------------------------ #
    # Callback
    # ------------------------------------------------------------------ #

    async def handle_callback(
        self,
        session: MutableMapping[str, Any],
        query: CallbackQuery,
    ) -> CallbackResult:
        """Complete a login from the provider redirect.

        Args:
            session: The browser session mapping holding the pending attempt.
            query: The callback query parameters.

        Returns:
            The tokens and (when an ID token was issued) verified claims now
            stored in the session.

        Raises:
            InvalidStateError: Missing code/state, no pending attempt, or a
                state mismatch. The session is not modified.
            AuthorizationDeniedError: The provider returned an error for this
                session's attempt.
            DiscoveryError: Provider metadata is unavailable.
            TokenExchangeError: The token endpoint refused the code.
            IdTokenVerificationError: The ID token failed verification.
        """
        binding = SessionBinding(session)
        current = binding.read()
        txn = CallbackTransaction()

        try:
            attempt = self._check_state(current, query)
            txn.advance(CallbackStage.STATE_VALIDATED)

            if query.error:
                raise AuthorizationDeniedError(query.error, query.error_description)
            assert query.code is not None

            metadata = await self._discovery.get_provider_metadata()
            tokens = await self._exchange_code(metadata, query.code, attempt.verifier)
            txn.advance(CallbackStage.CODE_EXCHANGED)

            claims: Optional[IdentityClaims] = None
            if tokens.id_token:
                claims = await verify_id_token(
                    tokens.id_token,
                    metadata,
                    self._key_set,
                    self._settings.client_id,
                    leeway=self._settings.clock_skew,
                )
                txn.advance(CallbackStage.ID_TOKEN_VERIFIED)
            else:
                txn.advance(CallbackStage.ID_TOKEN_ABSENT)
        except OIDCLoginError as exc:
            txn.advance(CallbackStage.REJECTED)
            if txn.state_validated:
                # The attempt is spent. An earlier login's tokens and any attempt
                # stashed by a newer login stay in place.
                latest = binding.read()
                if latest.pending_attempt == attempt:
                    binding.replace(latest.model_copy(update={"pending_attempt": None}))
            logger.warning("[CALLBACK] Rejected: %s", exc.message)
            raise

        binding.replace(SessionState(tokens=tokens, claims=claims))
        txn.advance(CallbackStage.COMPLETE)
        logger.info(
            "[CALLBACK] Login complete%s",
            f" for subject {claims.sub}" if claims is not None else " (no ID token)",
        )
        return CallbackResult(tokens=tokens, claims=claims)

    def _check_state(self, current: SessionState, query: CallbackQuery) -> PendingAuthAttempt:
        """Return the pending attempt the callback belongs to, or reject it."""
        if not query.state:
            raise InvalidStateError("Callback is missing the 'state' parameter")
        if not query.error and not query.code:
            raise InvalidStateError("Callback is missing the 'code' parameter")

        attempt = current.pending_attempt
        if attempt is None:
            raise InvalidStateError("No login is pending for this session")
        if not hmac.compare_digest(query.state.encode("utf-8"), attempt.state.encode("utf-8")):
            raise InvalidStateError("Callback state does not match the pending login")
        return attempt

    async def _exchange_code(
        self,
        metadata: ProviderMetadata,
        code: str,
        code_verifier: str,
    ) -> TokenSet:
        """Exchange the authorization code for tokens.

        Args:
            metadata: Provider metadata with the ``token_endpoint``.
            code: The authorization code from the callback.
            code_verifier: The stashed PKCE verifier.

        Returns:
            The parsed :class:`~oidclogin.models.TokenSet`.

        Raises:
            TokenExchangeError: On transport errors, non-2xx responses,
                non-JSON bodies or a response without ``access_token``.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "client_id": self._settings.client_id,
            "code_verifier": code_verifier,
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
        }
        if self._settings.is_confidential:
            assert self._settings.client_secret is not None
            data["client_secret"] = self._settings.client_secret

        try:
            response = await self._http.post(
                metadata.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            token_data: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise TokenExchangeError(
                f"Token exchange failed with status {exc.response.status_code}",
                upstream_status=exc.response.status_code,
                upstream_body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token exchange failed: {exc}") from exc
        except ValueError as exc:
            raise TokenExchangeError(
                "Token endpoint returned a body that is not JSON",
                upstream_status=response.status_code,
                upstream_body=response.text,
            ) from exc

        if not isinstance(token_data, dict) or "access_token" not in token_data:
            raise TokenExchangeError(
                "Token response missing 'access_token' field",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        try:
            return TokenSet.model_validate(token_data)
        except ValidationError as exc:
            raise TokenExchangeError(f"Token response is malformed: {exc}") from exc
