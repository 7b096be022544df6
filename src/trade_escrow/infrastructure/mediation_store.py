"""Mediation state stores.

RedisMediationStore is used whenever Redis is connected: the in-flight claim
is a ``SET NX EX`` lock keyed by transaction id, so "one analysis at a time"
holds across every API worker. InMemoryMediationStore keeps the same contract
inside one process and is used when the app runs without Redis.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from trade_escrow.config import get_settings
from trade_escrow.domain.enums import MediationPhase
from trade_escrow.domain.mediation import MediationState, MediationStateStore
from trade_escrow.infrastructure.redis_client import get_redis_or_none
from trade_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)

# Headroom over the analysis timeout before a stale lock expires on its own
_LOCK_GRACE_SECONDS = 15


class RedisMediationStore:
    """Mediation state in Redis: a lock key while analyzing, a JSON state key after."""

    def __init__(
        self,
        redis: aioredis.Redis,
        lock_ttl_seconds: int,
        state_ttl_seconds: int,
    ) -> None:
        self._redis = redis
        self._lock_ttl = lock_ttl_seconds
        self._state_ttl = state_ttl_seconds

    @staticmethod
    def _lock_key(transaction_id: str) -> str:
        return f"mediation:{transaction_id}:lock"

    @staticmethod
    def _state_key(transaction_id: str) -> str:
        return f"mediation:{transaction_id}:state"

    async def get(self, transaction_id: str) -> MediationState:
        if await self._redis.exists(self._lock_key(transaction_id)):
            return MediationState.analyzing()
        raw = await self._redis.get(self._state_key(transaction_id))
        if not raw:
            return MediationState.idle()
        return MediationState.from_dict(json.loads(raw))

    async def try_begin(self, transaction_id: str) -> bool:
        acquired = await self._redis.set(
            self._lock_key(transaction_id),
            "1",
            nx=True,
            ex=self._lock_ttl,
        )
        return bool(acquired)

    async def finish(self, transaction_id: str, state: MediationState) -> None:
        await self._redis.set(
            self._state_key(transaction_id),
            json.dumps(state.to_dict()),
            ex=self._state_ttl,
        )
        await self._redis.delete(self._lock_key(transaction_id))


class InMemoryMediationStore:
    """Single-process mediation state."""

    def __init__(self) -> None:
        self._states: dict[str, MediationState] = {}

    async def get(self, transaction_id: str) -> MediationState:
        return self._states.get(transaction_id, MediationState.idle())

    async def try_begin(self, transaction_id: str) -> bool:
        # No await between the check and the claim, so this is atomic on one loop
        current = self._states.get(transaction_id)
        if current is not None and current.phase is MediationPhase.ANALYZING:
            return False
        self._states[transaction_id] = MediationState.analyzing()
        return True

    async def finish(self, transaction_id: str, state: MediationState) -> None:
        self._states[transaction_id] = state


_memory_store: InMemoryMediationStore | None = None


def get_mediation_store() -> MediationStateStore:
    """Return the Redis-backed store when Redis is up, else the process-local one."""
    global _memory_store
    redis = get_redis_or_none()
    if redis is not None:
        settings = get_settings()
        return RedisMediationStore(
            redis,
            lock_ttl_seconds=int(settings.mediation_timeout_seconds) + _LOCK_GRACE_SECONDS,
            state_ttl_seconds=settings.mediation_state_ttl_seconds,
        )
    if _memory_store is None:
        logger.warning("mediation.store_in_memory", reason="redis not initialized")
        _memory_store = InMemoryMediationStore()
    return _memory_store
