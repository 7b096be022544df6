"""Redis: the process-wide client plus the three things escrow uses it for.

    - Idempotent creation: ``claim_idempotency`` is a single ``SET NX EX``, so
      two racing requests with the same key cannot both create a transaction.
    - Mediation single-flight lock and state (see mediation_store.py).
    - Change notifications: one pub/sub channel per transaction, consumed by
      the SSE stream route.

Redis is optional. ``get_redis_or_none()`` returns None when it was never
connected, and callers degrade instead of failing.
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from trade_escrow.config import get_settings
from trade_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Connect and ping; the client is only published once the ping succeeds."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return client


def get_redis() -> aioredis.Redis:
    """The connected client. Raises RuntimeError if init_redis() has not succeeded."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def get_redis_or_none() -> aioredis.Redis | None:
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis.disconnected")


# --- Idempotency ---


def _idempotency_key(key: str) -> str:
    return f"idempotency:{key}"


async def claim_idempotency(key: str, value: str = "pending") -> bool:
    """Claim ``key`` for this request. False means it was already used."""
    settings = get_settings()
    claimed = await get_redis().set(
        _idempotency_key(key),
        value,
        nx=True,
        ex=settings.redis_idempotency_ttl_seconds,
    )
    return bool(claimed)


async def complete_idempotency(key: str, value: str) -> None:
    """Record the outcome (e.g. the new transaction id) under a claimed key."""
    settings = get_settings()
    await get_redis().set(
        _idempotency_key(key),
        value,
        ex=settings.redis_idempotency_ttl_seconds,
    )


async def release_idempotency(key: str) -> None:
    """Give a claimed key back so the client may retry after a failure."""
    await get_redis().delete(_idempotency_key(key))


# --- Change notifications ---


def transaction_channel(transaction_id: str) -> str:
    return f"escrow:transaction:{transaction_id}"


async def publish_transaction_change(transaction_id: str, payload: dict) -> None:
    """Tell stream subscribers that a transaction changed.

    Subscribers re-read the transaction on each notification, so a lost
    message only delays them. Skipped when Redis is not configured.
    """
    redis = get_redis_or_none()
    if redis is None:
        logger.debug("redis.publish_skipped", transaction_id=transaction_id)
        return
    try:
        await redis.publish(
            transaction_channel(transaction_id),
            json.dumps(payload, default=str),
        )
    except RedisError as exc:
        logger.warning("redis.publish_failed", transaction_id=transaction_id, error=str(exc))
