"""Tests for the mediation state stores."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from trade_escrow.domain.enums import MediationPhase
from trade_escrow.domain.mediation import MediationState, MediationStateStore
from trade_escrow.infrastructure import mediation_store
from trade_escrow.infrastructure.mediation_store import (
    InMemoryMediationStore,
    RedisMediationStore,
    get_mediation_store,
)


def _redis_store(redis: AsyncMock) -> RedisMediationStore:
    return RedisMediationStore(redis, lock_ttl_seconds=45, state_ttl_seconds=3600)


class TestRedisMediationStore:
    @pytest.mark.asyncio
    async def test_try_begin_uses_set_nx_with_expiry(self) -> None:
        redis = AsyncMock()
        redis.set.return_value = True
        store = _redis_store(redis)

        assert await store.try_begin("txn-1") is True
        redis.set.assert_awaited_once_with("mediation:txn-1:lock", "1", nx=True, ex=45)

    @pytest.mark.asyncio
    async def test_try_begin_fails_when_lock_held(self) -> None:
        redis = AsyncMock()
        redis.set.return_value = None
        assert await _redis_store(redis).try_begin("txn-1") is False

    @pytest.mark.asyncio
    async def test_get_reports_analyzing_while_locked(self) -> None:
        redis = AsyncMock()
        redis.exists.return_value = 1
        state = await _redis_store(redis).get("txn-1")
        assert state.phase is MediationPhase.ANALYZING
        redis.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_idle_when_nothing_recorded(self) -> None:
        redis = AsyncMock()
        redis.exists.return_value = 0
        redis.get.return_value = None
        state = await _redis_store(redis).get("txn-1")
        assert state.phase is MediationPhase.IDLE

    @pytest.mark.asyncio
    async def test_finish_stores_state_then_releases_lock(self) -> None:
        redis = AsyncMock()
        store = _redis_store(redis)
        state = MediationState.ready("Refund half.")

        await store.finish("txn-1", state)

        key, payload = redis.set.await_args.args
        assert key == "mediation:txn-1:state"
        assert json.loads(payload)["text"] == "Refund half."
        assert redis.set.await_args.kwargs == {"ex": 3600}
        redis.delete.assert_awaited_once_with("mediation:txn-1:lock")

    @pytest.mark.asyncio
    async def test_get_reads_stored_state(self) -> None:
        redis = AsyncMock()
        redis.exists.return_value = 0
        redis.get.return_value = json.dumps(MediationState.failed("boom").to_dict()).encode()
        state = await _redis_store(redis).get("txn-1")
        assert state.phase is MediationPhase.FAILED
        assert state.error == "boom"


class TestInMemoryMediationStore:
    @pytest.mark.asyncio
    async def test_single_claim_until_finished(self) -> None:
        store = InMemoryMediationStore()
        assert await store.try_begin("txn-1") is True
        assert await store.try_begin("txn-1") is False
        assert (await store.get("txn-1")).phase is MediationPhase.ANALYZING

        await store.finish("txn-1", MediationState.ready("ok"))
        assert (await store.get("txn-1")).text == "ok"
        assert await store.try_begin("txn-1") is True

    @pytest.mark.asyncio
    async def test_claims_are_per_transaction(self) -> None:
        store = InMemoryMediationStore()
        assert await store.try_begin("txn-1") is True
        assert await store.try_begin("txn-2") is True

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryMediationStore(), MediationStateStore)


class TestGetMediationStore:
    def test_falls_back_to_memory_without_redis(self) -> None:
        with patch.object(mediation_store, "get_redis_or_none", return_value=None):
            store = get_mediation_store()
        assert isinstance(store, InMemoryMediationStore)

    def test_uses_redis_when_connected(self) -> None:
        with patch.object(mediation_store, "get_redis_or_none", return_value=AsyncMock()):
            store = get_mediation_store()
        assert isinstance(store, RedisMediationStore)
