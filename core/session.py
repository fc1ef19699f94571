"""
Session Management

Keyed, TTL-bearing stores for order-flow sessions. Every read-modify-write
of a session happens inside ``store.lock(session_id)`` so two messages for
the same conversation never interleave.

- InMemorySessionStore: single process, one threading.Lock per session id
- RedisSessionStore: shared across instances, SETEX values + Redis locks
"""

import json
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Tuple

import redis

from app_config import (
    REDIS_URL,
    SESSION_BACKEND,
    SESSION_KEY_PREFIX,
    SESSION_LOCK_TIMEOUT_SECONDS,
    SESSION_LOCK_WAIT_SECONDS,
    SESSION_PURGE_INTERVAL_SECONDS,
    SESSION_TTL_SECONDS,
)
from chat_logger import get_logger, mask_identifier
from exceptions import PersistenceError, SessionBusy
from models import Session

logger = get_logger("order_chat")


class SessionStore:
    """Interface shared by all session backends."""

    def get(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def save(self, session: Session) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> bool:
        raise NotImplementedError

    def lock(self, session_id: str):
        """Context manager holding the per-session mutex."""
        raise NotImplementedError


class _SessionLock:
    """A session mutex plus the number of threads holding or waiting on it."""

    __slots__ = ("mutex", "users")

    def __init__(self):
        self.mutex = threading.Lock()
        self.users = 0


class InMemorySessionStore(SessionStore):
    """Process-local store; suitable for a single instance and for tests."""

    def __init__(
        self,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        lock_wait_seconds: float = SESSION_LOCK_WAIT_SECONDS,
        purge_interval_seconds: float = SESSION_PURGE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.purge_interval_seconds = purge_interval_seconds
        self.clock = clock
        self._data: Dict[str, Tuple[dict, float]] = {}
        # Only sessions with a holder or waiter have an entry
        self._locks: Dict[str, _SessionLock] = {}
        self._guard = threading.Lock()
        self._last_purge = clock()

    def get(self, session_id: str) -> Optional[Session]:
        with self._guard:
            entry = self._data.get(session_id)
            if entry is None:
                return None
            payload, expires_at = entry
            if expires_at <= self.clock():
                del self._data[session_id]
                logger.debug(f"[Session] expired {mask_identifier(session_id)}")
                return None
        # Stored as a dict so callers never share a live object
        return Session.from_dict(payload)

    def save(self, session: Session) -> None:
        now = self.clock()
        with self._guard:
            self._data[session.session_id] = (session.to_dict(), now + self.ttl_seconds)
            if now - self._last_purge >= self.purge_interval_seconds:
                self._purge_locked(now)

    def delete(self, session_id: str) -> bool:
        with self._guard:
            return self._data.pop(session_id, None) is not None

    def purge_expired(self) -> int:
        with self._guard:
            return self._purge_locked(self.clock())

    def _purge_locked(self, now: float) -> int:
        expired = [sid for sid, (_, expires_at) in self._data.items() if expires_at <= now]
        for sid in expired:
            del self._data[sid]
        self._last_purge = now
        if expired:
            logger.debug(f"[Session] purged {len(expired)} expired sessions")
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = _SessionLock()
            entry.users += 1
        try:
            if not entry.mutex.acquire(timeout=self.lock_wait_seconds):
                raise SessionBusy(session_id)
            try:
                yield
            finally:
                entry.mutex.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[session_id]


class RedisSessionStore(SessionStore):
    """
    Redis-backed store shared by every engine instance.

    Sessions are JSON documents written with SETEX, so each write refreshes
    the TTL. The per-session mutex is a Redis lock, which also serialises
    messages that land on different instances.
    """

    def __init__(
        self,
        client=None,
        url: str = REDIS_URL,
        prefix: str = SESSION_KEY_PREFIX,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        lock_timeout: int = SESSION_LOCK_TIMEOUT_SECONDS,
        lock_wait_seconds: float = SESSION_LOCK_WAIT_SECONDS,
    ):
        self.client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout
        self.lock_wait_seconds = lock_wait_seconds

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def get(self, session_id: str) -> Optional[Session]:
        try:
            raw = self.client.get(self._key(session_id))
        except redis.exceptions.RedisError as e:
            raise PersistenceError(f"Failed to load session: {e}") from e
        if not raw:
            return None
        return Session.from_dict(json.loads(raw))

    def save(self, session: Session) -> None:
        payload = json.dumps(session.to_dict(), ensure_ascii=False)
        try:
            self.client.setex(self._key(session.session_id), self.ttl_seconds, payload)
        except redis.exceptions.RedisError as e:
            raise PersistenceError(f"Failed to save session: {e}") from e

    def delete(self, session_id: str) -> bool:
        try:
            return self.client.delete(self._key(session_id)) > 0
        except redis.exceptions.RedisError as e:
            raise PersistenceError(f"Failed to delete session: {e}") from e

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        session_lock = self.client.lock(
            f"{self.prefix}lock:{session_id}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait_seconds,
        )
        if not session_lock.acquire():
            raise SessionBusy(session_id)
        try:
            yield
        finally:
            try:
                session_lock.release()
            except redis.exceptions.LockError:
                # Held past lock_timeout; Redis already expired it
                logger.warning(f"[Session] lock for {mask_identifier(session_id)} expired before release")


def create_session_store(backend: str = SESSION_BACKEND) -> SessionStore:
    """Build the configured session store."""
    if backend == "redis":
        logger.info("[Session] using Redis session store")
        return RedisSessionStore()
    logger.info("[Session] using in-memory session store")
    return InMemorySessionStore()
