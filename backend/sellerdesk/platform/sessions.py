"""
Server-side sessions keyed by an opaque id.

The browser only ever holds the session id cookie; identity (user_id, role,
account_id) and the transient OAuth state nonce live server side.

Stores:
- InMemorySessionStore: single-process deployments and tests
- RedisSessionStore: shared store with TTL and a per-user index so every
  session of one user can be invalidated at once

Key schema (Redis):
- session:{sid}            -> JSON session data (TTL = session lifetime)
- session:user:{user_id}   -> SET of session ids for that user
"""

import json
import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, Optional

import redis
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Session data keys
USER_ID = "user_id"
ROLE = "role"
ACCOUNT_ID = "account_id"
OAUTH_STATE = "oauth_state"


def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


class ServerSession:
    """
    Mutable view of one session's data.

    Tracks whether it was modified or destroyed during the request so the
    middleware knows what to persist.
    """

    def __init__(self, session_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self.is_new = session_id is None
        self.session_id = session_id or generate_session_id()
        self._data: Dict[str, Any] = dict(data or {})
        self.modified = False
        self.destroyed = False

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if self._data.get(key, object()) != value:
            self._data[key] = value
            self.modified = True

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def pop(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            self.modified = True
            return self._data.pop(key)
        return default

    def destroy(self) -> None:
        self._data.clear()
        self.destroyed = True

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    @property
    def user_id(self) -> Optional[int]:
        return self._data.get(USER_ID)

    @property
    def is_authenticated(self) -> bool:
        return not self.destroyed and self._data.get(USER_ID) is not None


class SessionStore:
    """Interface for session persistence."""

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def save(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> None:
        raise NotImplementedError

    def delete_for_user(self, user_id: int) -> int:
        """Invalidate every session of a user. Returns the number removed."""
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Process-local store. Expired entries are dropped lazily on load."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            data, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[session_id]
                return None
            return dict(data)

    def save(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._entries[session_id] = (dict(data), self._clock() + ttl_seconds)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_id, None)

    def delete_for_user(self, user_id: int) -> int:
        with self._lock:
            doomed = [
                sid for sid, (data, _) in self._entries.items()
                if data.get(USER_ID) == user_id
            ]
            for sid in doomed:
                del self._entries[sid]
        return len(doomed)


class RedisSessionStore(SessionStore):
    """
    Redis-backed session store.

    Redis failures are logged and treated as "no session" on load; writes
    that fail are logged and dropped rather than failing the request.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "session"):
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}"

    def _user_key(self, user_id: Any) -> str:
        return f"{self._prefix}:user:{user_id}"

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._redis.get(self._key(session_id))
        except redis.RedisError:
            logger.warning("Failed to load session from Redis", exc_info=True)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable session payload")
            return None

    def save(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        try:
            self._redis.setex(self._key(session_id), ttl_seconds, json.dumps(data))
            user_id = data.get(USER_ID)
            if user_id is not None:
                user_key = self._user_key(user_id)
                self._redis.sadd(user_key, session_id)
                self._redis.expire(user_key, ttl_seconds)
        except redis.RedisError:
            logger.warning("Failed to save session to Redis", exc_info=True)

    def delete(self, session_id: str) -> None:
        try:
            self._redis.delete(self._key(session_id))
        except redis.RedisError:
            logger.warning("Failed to delete session from Redis", exc_info=True)

    def delete_for_user(self, user_id: int) -> int:
        try:
            user_key = self._user_key(user_id)
            session_ids = self._redis.smembers(user_key) or set()
            removed = 0
            for sid in session_ids:
                sid = sid.decode("utf-8") if isinstance(sid, bytes) else str(sid)
                removed += int(self._redis.delete(self._key(sid)) or 0)
            self._redis.delete(user_key)
            logger.info("Invalidated user sessions", extra={"user_id": user_id, "removed": removed})
            return removed
        except redis.RedisError:
            logger.warning(
                "Failed to invalidate user sessions in Redis",
                extra={"user_id": user_id},
                exc_info=True,
            )
            return 0


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Load the server-side session into request.state.session and persist it.

    - modified sessions are saved (and the cookie set for new ones)
    - destroyed sessions are deleted and the cookie expired
    - untouched new sessions are never stored
    """

    def __init__(
        self,
        app,
        store: SessionStore,
        cookie_name: str = "sd_session",
        ttl_seconds: int = 30 * 24 * 60 * 60,
        https_only: bool = False,
    ):
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name
        self.ttl_seconds = ttl_seconds
        self.https_only = https_only

    async def dispatch(self, request: Request, call_next):
        session = None
        session_id = request.cookies.get(self.cookie_name)
        if session_id:
            data = self.store.load(session_id)
            if data is not None:
                session = ServerSession(session_id, data)
        if session is None:
            session = ServerSession()

        request.state.session = session
        request.state.session_store = self.store
        request.state.session_ttl_seconds = self.ttl_seconds

        response = await call_next(request)

        if session.destroyed:
            if not session.is_new:
                self.store.delete(session.session_id)
            response.delete_cookie(self.cookie_name)
        elif session.modified:
            self.store.save(session.session_id, session.to_dict(), self.ttl_seconds)
            if session.is_new:
                response.set_cookie(
                    self.cookie_name,
                    session.session_id,
                    max_age=self.ttl_seconds,
                    httponly=True,
                    samesite="lax",
                    secure=self.https_only,
                )

        return response


def flush_session(request: Request) -> None:
    """
    Persist the request's session immediately instead of after the response.

    Used when a change must be visible to concurrent requests before the
    handler continues (consuming the OAuth state nonce).
    """
    session: Optional[ServerSession] = getattr(request.state, "session", None)
    store: Optional[SessionStore] = getattr(request.state, "session_store", None)
    if session is None or store is None or session.is_new or session.destroyed:
        return
    ttl = getattr(request.state, "session_ttl_seconds", None) or 30 * 24 * 60 * 60
    store.save(session.session_id, session.to_dict(), ttl)
