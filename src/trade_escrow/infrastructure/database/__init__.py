"""Database infrastructure — engine, ORM models, and repositories."""

from trade_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from trade_escrow.infrastructure.database.orm_models import (
    Base,
    EscrowEvent,
    EscrowMessage,
    EscrowTransaction,
)
from trade_escrow.infrastructure.database.repositories import (
    EventRepository,
    MessageRepository,
    TransactionRepository,
)

__all__ = [
    "Base",
    "EscrowEvent",
    "EscrowMessage",
    "EscrowTransaction",
    "EventRepository",
    "MessageRepository",
    "TransactionRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
