"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Any SQLAlchemy failure is re-raised as StorageError so callers see one
transient error type; the request's session is rolled back by the caller,
so a failed write never leaves a partial mutation behind.
"""

from __future__ import annotations

import functools
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from trade_escrow.domain.exceptions import StorageError
from trade_escrow.infrastructure.database.orm_models import (
    EscrowEvent,
    EscrowMessage,
    EscrowTransaction,
)
from trade_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_escrow.domain.enums import EscrowStatus, EventType

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def _storage_operation(name: str) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Wrap SQLAlchemy failures of a repository coroutine in StorageError."""

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error("storage.failed", operation=name, error=str(exc))
                raise StorageError(f"Storage operation failed: {name}", operation=name) from exc

        return wrapper

    return decorator


class TransactionRepository:
    """Data access for escrow transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @_storage_operation("transaction.create")
    async def create(self, transaction: EscrowTransaction) -> EscrowTransaction:
        """Insert a new escrow transaction."""
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    @_storage_operation("transaction.get")
    async def get_by_id(self, transaction_id: uuid.UUID) -> EscrowTransaction | None:
        """Fetch a transaction by its UUID."""
        result = await self._session.execute(
            select(EscrowTransaction).where(EscrowTransaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    @_storage_operation("transaction.list_for_party")
    async def list_for_party(self, identity_id: str, email: str) -> list[EscrowTransaction]:
        """Fetch every transaction the identity is a party to, newest first.

        An accepted invitation is found by the bound partner id only.
        """
        result = await self._session.execute(
            select(EscrowTransaction)
            .where(
                or_(
                    EscrowTransaction.creator_id == identity_id,
                    EscrowTransaction.partner_id == identity_id,
                    and_(
                        EscrowTransaction.partner_id.is_(None),
                        EscrowTransaction.partner_email == email,
                    ),
                )
            )
            .order_by(EscrowTransaction.created_at.desc())
        )
        return list(result.scalars().all())

    @_storage_operation("transaction.compare_and_set_status")
    async def compare_and_set_status(
        self,
        transaction: EscrowTransaction,
        expected: EscrowStatus,
        new_status: EscrowStatus,
        **extra_values: Any,
    ) -> bool:
        """Set status to ``new_status`` only if the stored status is still ``expected``.

        Call AFTER state machine validation. ``extra_values`` are written in the
        same statement (partner_id on acceptance, dispute_reason on dispute).

        Returns:
            True if this call won; False if the row had already moved on.
        """
        result = await self._session.execute(
            update(EscrowTransaction)
            .where(
                EscrowTransaction.id == transaction.id,
                EscrowTransaction.status == expected.value,
            )
            .values(status=new_status.value, updated_at=datetime.now(UTC), **extra_values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self._session.refresh(transaction)
        return True


class MessageRepository:
    """Data access for the append-only message log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @_storage_operation("message.append")
    async def append(
        self,
        transaction_id: uuid.UUID,
        sender_id: str,
        text: str,
    ) -> EscrowMessage:
        """Append a message. This is the ONLY write operation allowed."""
        message = EscrowMessage(
            transaction_id=transaction_id,
            sender_id=sender_id,
            text=text,
        )
        self._session.add(message)
        await self._session.flush()
        return message

    @_storage_operation("message.list")
    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[EscrowMessage]:
        """Fetch all messages for a transaction in insertion order."""
        result = await self._session.execute(
            select(EscrowMessage)
            .where(EscrowMessage.transaction_id == transaction_id)
            .order_by(EscrowMessage.created_at.asc(), EscrowMessage.seq.asc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @_storage_operation("event.record")
    async def record(
        self,
        transaction_id: uuid.UUID,
        event_type: EventType,
        old_status: EscrowStatus | None,
        new_status: EscrowStatus,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            transaction_id=transaction_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    @_storage_operation("event.list")
    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for a transaction in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.transaction_id == transaction_id)
            .order_by(EscrowEvent.created_at.asc(), EscrowEvent.seq.asc())
        )
        return list(result.scalars().all())
