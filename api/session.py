"""
Table session storage.

A session is a signed table id plus one JSON document holding the table's
bankroll ledger save object. Redis is used when reachable; otherwise the
documents live in process memory until the TTL runs out.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import config

logger = logging.getLogger(__name__)

TableDocument = dict[str, Any]


class SessionSigner:
    """Sign and verify table session IDs using itsdangerous."""

    def __init__(self, secret_key: str | None = None) -> None:
        self._serializer = URLSafeTimedSerializer(
            secret_key or config.security.secret_key,
            salt="blackjack-table",
        )

    def sign(self, session_id: str) -> str:
        return self._serializer.dumps(session_id)

    def unsign(self, token: str, max_age: int | None = None) -> str | None:
        """
        Verify a signed token.

        Args:
            token: Value of the ``X-Session-ID`` header or WebSocket path
            max_age: Maximum age in seconds (defaults to session_ttl)

        Returns:
            The raw table id, or None if the token is forged or expired
        """
        try:
            return self._serializer.loads(token, max_age=max_age or config.session_ttl)
        except (BadSignature, SignatureExpired):
            return None


_session_signer: SessionSigner | None = None


def get_session_signer() -> SessionSigner:
    """Get or create the process-wide signer."""
    global _session_signer
    if _session_signer is None:
        _session_signer = SessionSigner()
    return _session_signer


class SessionStore(ABC):
    """Keyed storage for table documents."""

    @abstractmethod
    async def get(self, session_id: str) -> TableDocument | None:
        ...

    @abstractmethod
    async def set(self, session_id: str, data: TableDocument, ttl: int | None = None) -> None:
        """Store ``data``, replacing any previous document and restarting its TTL."""
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def exists(self, session_id: str) -> bool:
        ...

    async def close(self) -> None:
        """Release backend resources."""

    def create_session_id(self, signed: bool = True) -> str:
        """Create a new table id, signed unless ``signed`` is False."""
        session_id = str(uuid4())
        return get_session_signer().sign(session_id) if signed else session_id


class InMemorySessionStore(SessionStore):
    """
    Process-local store used when Redis is unavailable.

    Documents are kept JSON-encoded so callers never share mutable state
    with the store, matching what a Redis round trip gives them.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, tuple[str, datetime]] = {}

    async def get(self, session_id: str) -> TableDocument | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        raw, expiry = entry
        if expiry < datetime.now():
            del self._sessions[session_id]
            return None
        return json.loads(raw)

    async def set(self, session_id: str, data: TableDocument, ttl: int | None = None) -> None:
        expiry = datetime.now() + timedelta(seconds=ttl or config.session_ttl)
        self._sessions[session_id] = (json.dumps(data), expiry)

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def exists(self, session_id: str) -> bool:
        return await self.get(session_id) is not None

    async def cleanup_expired(self) -> int:
        """Drop expired documents; returns how many were removed."""
        now = datetime.now()
        expired = [sid for sid, (_, expiry) in self._sessions.items() if expiry < now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Expired %d table sessions", len(expired))
        return len(expired)


class RedisSessionStore(SessionStore):
    """Redis-backed store; one string key per table, expiring with the session."""

    key_prefix = "blackjack:table:"

    def __init__(self, redis_client: redis.Redis) -> None:
        self._redis = redis_client

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    async def get(self, session_id: str) -> TableDocument | None:
        data = await self._redis.get(self._key(session_id))
        return None if data is None else json.loads(data)

    async def set(self, session_id: str, data: TableDocument, ttl: int | None = None) -> None:
        await self._redis.setex(
            self._key(session_id),
            ttl or config.session_ttl,
            json.dumps(data),
        )

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))

    async def exists(self, session_id: str) -> bool:
        return await self._redis.exists(self._key(session_id)) > 0

    async def close(self) -> None:
        await self._redis.aclose()


_session_store: SessionStore | None = None


async def get_session_store() -> SessionStore:
    """Connect to Redis on first use, falling back to the in-memory store."""
    global _session_store
    if _session_store is not None:
        return _session_store

    client = redis.from_url(config.redis.url)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis unavailable (%s); table ledgers kept in memory", exc)
        await client.aclose()
        _session_store = InMemorySessionStore()
    else:
        logger.info("Using Redis session store at %s:%s", config.redis.host, config.redis.port)
        _session_store = RedisSessionStore(client)
    return _session_store


async def close_session_store() -> None:
    """Close the active store; the next call to ``get_session_store`` reconnects."""
    global _session_store
    store, _session_store = _session_store, None
    if store is not None:
        await store.close()


async def create_session(data: TableDocument | None = None) -> str:
    """Create a table session and return its signed id."""
    store = await get_session_store()
    session_id = store.create_session_id()
    await store.set(session_id, data or {})
    return session_id


async def get_session(session_id: str) -> TableDocument | None:
    store = await get_session_store()
    return await store.get(session_id)


async def update_session(session_id: str, data: TableDocument) -> None:
    store = await get_session_store()
    await store.set(session_id, data)


def extract_session_id(token: str) -> str | None:
    """Return the raw table id behind a signed token, or None if invalid."""
    return get_session_signer().unsign(token)
