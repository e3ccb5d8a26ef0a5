"""
Session-scoped storage of pending WebAuthn challenges.

A session holds at most one pending challenge per purpose; setting a new one
overwrites whatever was there. Values are base64url strings of the raw
challenge bytes.
"""

import secrets
from typing import Protocol

from redis import Redis

from .config import settings

_client: Redis | None = None

def get_redis() -> Redis:
    global _client
    if _client is None:
        _client = Redis.from_url(settings.REDIS_URL)
    return _client

def new_session_id() -> str:
    return secrets.token_urlsafe(32)

class ChallengeStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...

    def pop(self, key: str) -> str | None: ...

class RedisChallengeStore:
    """Challenge store for one session, backed by Redis keys ``<key>:<session id>``."""

    def __init__(self, client: Redis, session_id: str, ttl_seconds: int = 300):
        if not session_id:
            raise ValueError("session_id required")
        self.client = client
        self.session_id = session_id
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{key}:{self.session_id}"

    def get(self, key: str) -> str | None:
        value = self.client.get(self._key(key))
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else value

    def set(self, key: str, value: str) -> None:
        self.client.setex(self._key(key), self.ttl_seconds, value)

    def clear(self, key: str) -> None:
        self.client.delete(self._key(key))

    def pop(self, key: str) -> str | None:
        """Read and delete in one round trip, so a challenge is consumed once."""
        full_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.get(full_key)
        pipe.delete(full_key)
        value, _ = pipe.execute()
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else value
