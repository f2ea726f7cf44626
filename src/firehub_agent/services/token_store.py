"""Per-session input-token counts used to decide when to compact a session.

Counts are advisory: writes happen once per completed run and the last writer
wins. The in-memory store is per process; the Redis store lets several relay
instances share counts.
"""

import logging
from typing import Dict, Protocol

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..settings import get_settings
from .redis import RedisCrudService, get_redis_crud_service

logger = logging.getLogger(__name__)

TOKENS_KEY_PREFIX = "session_tokens:"


class TokenStore(Protocol):
    async def get(self, session_id: str) -> int | None: ...

    async def set(self, session_id: str, tokens: int) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class InMemoryTokenStore:
    def __init__(self) -> None:
        self._tokens: Dict[str, int] = {}

    async def get(self, session_id: str) -> int | None:
        return self._tokens.get(session_id)

    async def set(self, session_id: str, tokens: int) -> None:
        self._tokens[session_id] = tokens

    async def delete(self, session_id: str) -> None:
        self._tokens.pop(session_id, None)


class RedisTokenStore:
    """Token counts in Redis, expiring after ttl_seconds of inactivity."""

    def __init__(self, redis_crud: RedisCrudService, ttl_seconds: int) -> None:
        self._redis = redis_crud
        self._ttl = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{TOKENS_KEY_PREFIX}{session_id}"

    async def get(self, session_id: str) -> int | None:
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Invalid token count for %s: %r", session_id, raw)
            return None

    async def set(self, session_id: str, tokens: int) -> None:
        if not await self._redis.set(self._key(session_id), str(tokens), ttl_seconds=self._ttl):
            logger.warning("Token count for %s was not persisted", session_id)

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))

    async def close(self) -> None:
        await self._redis.close()


_token_store_instance: TokenStore | None = None


async def get_token_store_async() -> TokenStore:
    """Return the process token store: Redis when configured and reachable, else in-memory."""
    global _token_store_instance
    if _token_store_instance is not None:
        return _token_store_instance

    redis_crud = get_redis_crud_service()
    if redis_crud is not None:
        try:
            await redis_crud.connect()
            _token_store_instance = RedisTokenStore(
                redis_crud=redis_crud,
                ttl_seconds=get_settings().token_ttl_seconds,
            )
            return _token_store_instance
        except (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError) as e:
            logger.warning("Redis token store unavailable, using in-memory store: %s", e)

    _token_store_instance = InMemoryTokenStore()
    return _token_store_instance


async def close_token_store() -> None:
    """Release the process token store. Idempotent."""
    global _token_store_instance
    if isinstance(_token_store_instance, RedisTokenStore):
        await _token_store_instance.close()
        logger.debug("Token store (Redis) closed")
    _token_store_instance = None
