"""Core package - exports session storage and shared helpers."""

from .session import (
    SessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    create_session_store,
)
from .helpers import (
    format_vnd,
    estimated_delivery_date,
    resolve_user_id,
)

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "create_session_store",
    "format_vnd",
    "estimated_delivery_date",
    "resolve_user_id",
]
