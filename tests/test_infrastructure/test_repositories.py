"""Repository tests against in-memory SQLite."""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from trade_escrow.domain.enums import EscrowStatus, EventType
from trade_escrow.domain.exceptions import StorageError
from trade_escrow.infrastructure.database.orm_models import EscrowTransaction
from trade_escrow.infrastructure.database.repositories import (
    EventRepository,
    MessageRepository,
    TransactionRepository,
)


def _transaction(**overrides) -> EscrowTransaction:
    values = {
        "title": "Camera",
        "description": "Body only",
        "amount": Decimal("1000.00"),
        "commission": Decimal("50.00"),
        "currency": "NGN",
        "inspection_period_days": 3,
        "creator_id": "user-seller",
        "creator_email": "seller@example.com",
        "creator_role": "SELLER",
        "partner_email": "buyer@example.com",
    }
    values.update(overrides)
    return EscrowTransaction(**values)


class TestTransactionRepository:
    @pytest.mark.asyncio
    async def test_create_assigns_uuid_and_pending(self, session) -> None:
        repo = TransactionRepository(session)
        txn = await repo.create(_transaction())
        assert isinstance(txn.id, uuid.UUID)
        assert txn.status == "PENDING"
        assert await repo.get_by_id(txn.id) is txn

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, session) -> None:
        assert await TransactionRepository(session).get_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_compare_and_set_succeeds_once(self, session) -> None:
        repo = TransactionRepository(session)
        txn = await repo.create(_transaction())

        won = await repo.compare_and_set_status(
            txn, EscrowStatus.PENDING, EscrowStatus.ACCEPTED, partner_id="user-buyer"
        )
        assert won is True
        assert txn.status == "ACCEPTED"
        assert txn.partner_id == "user-buyer"

        again = await repo.compare_and_set_status(
            txn, EscrowStatus.PENDING, EscrowStatus.CANCELLED
        )
        assert again is False
        assert txn.status == "ACCEPTED"

    @pytest.mark.asyncio
    async def test_list_for_party_newest_first(self, session) -> None:
        repo = TransactionRepository(session)
        first = await repo.create(_transaction(title="first"))
        second = await repo.create(_transaction(title="second"))
        await repo.create(
            _transaction(
                title="unrelated",
                creator_id="someone",
                partner_email="other@example.com",
            )
        )
        # Make the ordering explicit regardless of clock resolution
        first.created_at = first.created_at.replace(year=2020)
        await session.flush()

        as_creator = await repo.list_for_party("user-seller", "seller@example.com")
        assert [t.title for t in as_creator] == ["second", "first"]

        as_partner = await repo.list_for_party("user-buyer", "buyer@example.com")
        assert {t.id for t in as_partner} == {first.id, second.id}

        assert await repo.list_for_party("nobody", "nobody@example.com") == []

    @pytest.mark.asyncio
    async def test_sqlalchemy_errors_become_storage_errors(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        repo = TransactionRepository(session)

        with pytest.raises(StorageError) as exc_info:
            await repo.get_by_id(uuid.uuid4())
        assert exc_info.value.operation == "transaction.get"


class TestMessageRepository:
    @pytest.mark.asyncio
    async def test_messages_come_back_in_insertion_order(self, session) -> None:
        txn = await TransactionRepository(session).create(_transaction())
        repo = MessageRepository(session)

        m1 = await repo.append(txn.id, "user-buyer", "first")
        m2 = await repo.append(txn.id, "user-seller", "second")
        m3 = await repo.append(txn.id, "user-buyer", "third")
        # Identical timestamps fall back to insertion sequence
        m2.created_at = m1.created_at
        m3.created_at = m1.created_at
        await session.flush()

        messages = await repo.get_by_transaction(txn.id)
        assert [m.text for m in messages] == ["first", "second", "third"]
        assert len({m.id for m in messages}) == 3


class TestEventRepository:
    @pytest.mark.asyncio
    async def test_record_and_read_back(self, session) -> None:
        txn = await TransactionRepository(session).create(_transaction())
        repo = EventRepository(session)

        await repo.record(
            transaction_id=txn.id,
            event_type=EventType.TRANSACTION_CREATED,
            old_status=None,
            new_status=EscrowStatus.PENDING,
            actor="user-seller",
            metadata={"amount": "1000.00"},
        )
        events = await repo.get_by_transaction(txn.id)
        assert len(events) == 1
        assert events[0].event_type == "TRANSACTION_CREATED"
        assert events[0].old_status is None
        assert events[0].metadata_json == {"amount": "1000.00"}
