"""Browser-session binding for the login flow.

Three layers live here:

* :class:`SessionBinding` -- a typed read/replace view
  (:class:`~oidclogin.models.SessionState`) over the mutable session
  mapping the web framework exposes as ``request.session``. All login state
  sits under one key, so a replace is a single assignment and a half-written
  state is never observable.
* Session stores -- :class:`MemorySessionStore` (default) and
  :class:`DiskSessionStore` (:mod:`diskcache`) keep session data
  server-side, keyed by an opaque session id, with a TTL equal to the
  session lifetime.
* :class:`ServerSessionMiddleware` -- a pure ASGI middleware that carries
  the session id in a signed cookie (:mod:`itsdangerous`), loads the data
  into ``scope["session"]`` and saves it when the response starts. An
  emptied session deletes the stored entry and expires the cookie.

Cookies carry only the signed session id; tokens never reach the browser.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, MutableMapping, Optional

import diskcache
from itsdangerous import BadSignature, TimestampSigner
from pydantic import ValidationError
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from oidclogin.models import PendingAuthAttempt, SessionState

logger = logging.getLogger(__name__)

SESSION_KEY = "oidc"
"""Key under which :class:`SessionState` is stored in the session mapping."""

_REGENERATE_FLAG = "oidclogin.regenerate_session"


# --- Typed binding ---


class SessionBinding:
    """Typed access to the login state inside a session mapping.

    Args:
        session: The per-request session mapping (``request.session``).

    Example::

        binding = SessionBinding(request.session)
        state = binding.read()
        binding.replace(state.model_copy(update={"pending_attempt": None}))
    """

    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self._session = session

    def read(self) -> SessionState:
        """Return the current login state; empty if nothing valid is stored."""
        data = self._session.get(SESSION_KEY)
        if not data:
            return SessionState()
        try:
            return SessionState.model_validate(data)
        except ValidationError:
            logger.warning("[SESSION] Discarding unreadable login state")
            return SessionState()

    def replace(self, state: SessionState) -> None:
        """Replace the whole login state in one assignment."""
        data = state.model_dump(mode="json", exclude_none=True)
        if data:
            self._session[SESSION_KEY] = data
        else:
            self._session.pop(SESSION_KEY, None)

    def stash_pending(self, attempt: PendingAuthAttempt) -> None:
        """Store *attempt* as the only pending login, keeping tokens and claims."""
        state = self.read()
        self.replace(state.model_copy(update={"pending_attempt": attempt}))

    def destroy(self) -> None:
        """Remove everything from the session."""
        self._session.clear()


def regenerate_session(scope: MutableMapping[str, Any]) -> None:
    """Ask :class:`ServerSessionMiddleware` to move the session to a new id.

    Called after a successful login so a session id planted before
    authentication cannot be reused afterwards.
    """
    scope[_REGENERATE_FLAG] = True


# --- Stores ---


class SessionStore(ABC):
    """Server-side storage for session data keyed by session id.

    Values are JSON-serialisable dicts. Implementations store a serialised
    copy, so later mutation of the caller's dict does not leak into the
    store before the next :meth:`save`.
    """

    @abstractmethod
    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        """Return the session data, or ``None`` if missing or expired."""

    @abstractmethod
    def save(self, session_id: str, data: dict[str, Any], max_age: int) -> None:
        """Store *data* for *session_id*, expiring after *max_age* seconds."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove the session; no-op when it does not exist."""

    def close(self) -> None:
        """Release resources held by the store."""


class MemorySessionStore(SessionStore):
    """Process-local session store. Sessions are lost on restart."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[float, str]] = {}

    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        entry = self._data.get(session_id)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at < time.monotonic():
            self._data.pop(session_id, None)
            return None
        return json.loads(raw)

    def save(self, session_id: str, data: dict[str, Any], max_age: int) -> None:
        self._purge_expired()
        self._data[session_id] = (time.monotonic() + max_age, json.dumps(data))

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._data)

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [sid for sid, (expires_at, _) in self._data.items() if expires_at < now]
        for sid in expired:
            del self._data[sid]


class DiskSessionStore(SessionStore):
    """Session store backed by a :class:`diskcache.Cache` directory.

    Lets several worker processes on one host share sessions. Entries expire
    with the session; nothing outlives ``session_max_age``.

    Args:
        directory: Cache directory; created if missing.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._cache = diskcache.Cache(str(self._directory))

    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        raw = self._cache.get(session_id)
        if raw is None:
            return None
        return json.loads(raw)

    def save(self, session_id: str, data: dict[str, Any], max_age: int) -> None:
        self._cache.set(session_id, json.dumps(data), expire=max_age)

    def delete(self, session_id: str) -> None:
        self._cache.delete(session_id)

    def close(self) -> None:
        self._cache.close()


# --- Middleware ---


class ServerSessionMiddleware:
    """ASGI middleware binding ``scope["session"]`` to a server-side store.

    Args:
        app: The wrapped ASGI application.
        store: Where session data lives.
        secret_key: Key used to sign the session id cookie.
        session_cookie: Cookie name.
        max_age: Session lifetime in seconds; also the cookie ``Max-Age``
            and the signature age limit.
        same_site: ``SameSite`` cookie attribute.
        https_only: Add the ``Secure`` cookie attribute.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        secret_key: str,
        session_cookie: str = "sid",
        max_age: int = 24 * 60 * 60,
        same_site: str = "lax",
        https_only: bool = False,
    ) -> None:
        self.app = app
        self.store = store
        self.signer = TimestampSigner(secret_key)
        self.session_cookie = session_cookie
        self.max_age = max_age
        self.security_flags = "httponly; samesite=" + same_site
        if https_only:
            self.security_flags += "; secure"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        session_id = self._unsign(connection.cookies.get(self.session_cookie))
        data: Optional[dict[str, Any]] = None
        if session_id is not None:
            data = self.store.load(session_id)
            if data is None:
                session_id = None
        scope["session"] = data or {}

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                self._commit(scope, session_id, message)
            await send(message)

        await self.app(scope, receive, send_wrapper)

    def _commit(self, scope: Scope, session_id: Optional[str], message: Message) -> None:
        session = scope["session"]
        headers = MutableHeaders(scope=message)

        if scope.get(_REGENERATE_FLAG) and session_id is not None:
            self.store.delete(session_id)
            session_id = None

        if session:
            if session_id is None:
                session_id = secrets.token_urlsafe(32)
            self.store.save(session_id, dict(session), self.max_age)
            signed = self.signer.sign(session_id).decode("utf-8")
            headers.append(
                "Set-Cookie",
                f"{self.session_cookie}={signed}; path=/; Max-Age={self.max_age}; "
                f"{self.security_flags}",
            )
        elif session_id is not None:
            self.store.delete(session_id)
            headers.append(
                "Set-Cookie",
                f"{self.session_cookie}=null; path=/; "
                f"expires=Thu, 01 Jan 1970 00:00:00 GMT; {self.security_flags}",
            )

    def _unsign(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie, max_age=self.max_age).decode("utf-8")
        except BadSignature:
            logger.debug("[SESSION] Ignoring session cookie with a bad signature")
            return None


def create_session_store(backend: str, directory: Optional[str] = None) -> SessionStore:
    """Build the session store named by the ``session_backend`` setting."""
    if backend == "disk":
        if not directory:
            from oidclogin.config import get_data_dir

            directory = str(get_data_dir() / "sessions")
        return DiskSessionStore(directory)
    return MemorySessionStore()
