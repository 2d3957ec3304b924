"""
cache.py — Redis layer for the per-device wizard cache slot.

Namespace conventions:
  wizard:{client_id}        → serialized Session document      TTL settings.session_cache_ttl
  wizard:gen:{client_id}    → bootstrap generation counter     same TTL

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x — do NOT use aioredis separately)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param — no module-level global state
  - Every write replaces the whole document (SETEX); there are no partial writes
  - Bootstrap writes are WATCH/MULTI transactions on the generation key (last-initiated wins)
  - The slot is an offline-continuity layer only; PostgreSQL (store.py) is authoritative
  - Logs only client_id / session_id (not step data) — no PII in logs
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from onboarding.config import settings
from onboarding.wizard.errors import TransientIOError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
CACHE_PREFIX = "wizard"
GENERATION_PREFIX = "wizard:gen"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_cache_key(client_id: str) -> str:
    """Build Redis key for a client's cached session: wizard:{client_id}"""
    return f"{CACHE_PREFIX}:{client_id}"


def make_generation_key(client_id: str) -> str:
    """Build Redis key for a client's bootstrap counter: wizard:gen:{client_id}"""
    return f"{GENERATION_PREFIX}:{client_id}"


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup — stored on app.state.redis.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Session slot helpers
# ---------------------------------------------------------------------------

async def get_cached_session(client: aioredis.Redis, client_id: str) -> Optional[str]:
    """Raw cached document, or None if the slot is empty or expired."""
    return await client.get(make_cache_key(client_id))


async def set_cached_session(client: aioredis.Redis, client_id: str, document: str) -> None:
    """
    Replace the client's cached document and reset its TTL.

    Raises:
        ValueError: the document exceeds settings.max_cache_bytes.
    """
    size = len(document.encode("utf-8"))
    if size > settings.max_cache_bytes:
        raise ValueError(f"Session document is {size} bytes, limit is {settings.max_cache_bytes}")
    await client.setex(make_cache_key(client_id), settings.session_cache_ttl, document)
    logger.debug("Cached session client_id=%s bytes=%d", client_id, size)


async def set_cached_session_if_latest(
    client: aioredis.Redis, client_id: str, document: str, generation: int
) -> bool:
    """
    Replace the cached document only while `generation` is the client's latest.

    WATCH on the generation key makes the compare and the SETEX one
    transaction: an INCR from a newer bootstrap in between aborts the write.

    Raises:
        ValueError: the document exceeds settings.max_cache_bytes.
    """
    size = len(document.encode("utf-8"))
    if size > settings.max_cache_bytes:
        raise ValueError(f"Session document is {size} bytes, limit is {settings.max_cache_bytes}")
    generation_key = make_generation_key(client_id)
    async with client.pipeline(transaction=True) as pipe:
        try:
            await pipe.watch(generation_key)
            raw = await pipe.get(generation_key)
            latest = int(raw) if raw is not None else 0
            if latest != generation:
                logger.info(
                    "Skipped superseded cache write client_id=%s generation=%d latest=%d",
                    client_id, generation, latest,
                )
                return False
            pipe.multi()
            pipe.setex(make_cache_key(client_id), settings.session_cache_ttl, document)
            await pipe.execute()
        except WatchError:
            logger.info("Generation moved during cache write client_id=%s generation=%d", client_id, generation)
            return False
    logger.debug("Cached session client_id=%s bytes=%d generation=%d", client_id, size, generation)
    return True


async def clear_cached_session(client: aioredis.Redis, client_id: str) -> None:
    await client.delete(make_cache_key(client_id))
    logger.info("Cleared cached session client_id=%s", client_id)


async def next_generation(client: aioredis.Redis, client_id: str) -> int:
    """Atomically issue the next bootstrap number for this client."""
    key = make_generation_key(client_id)
    generation = await client.incr(key)
    await client.expire(key, settings.session_cache_ttl)
    return int(generation)


async def latest_generation(client: aioredis.Redis, client_id: str) -> int:
    raw = await client.get(make_generation_key(client_id))
    return int(raw) if raw is not None else 0


# ---------------------------------------------------------------------------
# LocalSessionStore adapter for the wizard core
# ---------------------------------------------------------------------------

class RedisSessionCache:
    """One client's cache slot. Redis failures surface as TransientIOError."""

    def __init__(self, client: aioredis.Redis, client_id: str) -> None:
        self.client = client
        self.client_id = client_id

    async def load(self) -> Optional[str]:
        try:
            return await get_cached_session(self.client, self.client_id)
        except RedisError as exc:
            raise TransientIOError(f"Session cache unavailable: {type(exc).__name__}") from exc

    async def save(self, document: str) -> None:
        try:
            await set_cached_session(self.client, self.client_id, document)
        except ValueError as exc:
            raise TransientIOError(str(exc), "Remove large fields from the step data") from exc
        except RedisError as exc:
            raise TransientIOError(f"Session cache unavailable: {type(exc).__name__}") from exc

    async def save_if_latest(self, document: str, generation: int) -> bool:
        try:
            return await set_cached_session_if_latest(self.client, self.client_id, document, generation)
        except ValueError as exc:
            raise TransientIOError(str(exc), "Remove large fields from the step data") from exc
        except RedisError as exc:
            raise TransientIOError(f"Session cache unavailable: {type(exc).__name__}") from exc

    async def clear(self) -> None:
        try:
            await clear_cached_session(self.client, self.client_id)
        except RedisError as exc:
            raise TransientIOError(f"Session cache unavailable: {type(exc).__name__}") from exc

    async def begin_generation(self) -> int:
        try:
            return await next_generation(self.client, self.client_id)
        except RedisError as exc:
            raise TransientIOError(f"Session cache unavailable: {type(exc).__name__}") from exc

    async def latest_generation(self) -> int:
        try:
            return await latest_generation(self.client, self.client_id)
        except RedisError as exc:
            raise TransientIOError(f"Session cache unavailable: {type(exc).__name__}") from exc
