"""SQLAlchemy 2.0 ORM models for the Trade Escrow service.

Three tables:
    1. escrow_transactions — The two-party trade agreements.
    2. escrow_messages     — Append-only chat log attached to a transaction.
    3. escrow_events       — Append-only audit log of every state change.

Design decisions:
    - UUIDs as public identifiers (no sequential leakage).
    - Decimal for amount and commission; commission is a snapshot taken at creation.
    - status is only ever written through a compare-and-swap UPDATE
      (see TransactionRepository.compare_and_set_status).
    - Messages are rows, not an array column, so concurrent appends from both
      parties cannot overwrite each other. The integer seq breaks timestamp ties.
    - CHECK constraints mirror the domain invariants at DB level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and simulation)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. escrow_transactions
# ---------------------------------------------------------------------------
class EscrowTransaction(Base):
    """An escrow agreement between a creator and an invited partner."""

    __tablename__ = "escrow_transactions"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Terms (immutable after creation) ---
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Headline of the item or service being traded",
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Delivery terms, quality benchmarks, shipment method",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Trade value excluding commission",
    )
    commission: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Platform fee snapshotted at creation (amount * rate)",
    )
    currency: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        default="NGN",
    )
    inspection_period_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
        comment="Informational inspection window; not timer-driven",
    )

    # --- Participants ---
    creator_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Identity id of the party who opened the transaction",
    )
    creator_email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        comment="Contact address of the creator (lower-cased)",
    )
    creator_role: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="BUYER or SELLER, as declared by the creator",
    )
    partner_email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        comment="Contact address of the invited partner (lower-cased)",
    )
    partner_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        default=None,
        comment="Identity id of the partner, bound on acceptance",
    )

    # --- Status (CAS-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )
    dispute_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        default=None,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'FUNDED', 'SHIPPED', "
            "'DELIVERED', 'COMPLETED', 'DISPUTED', 'CANCELLED')",
            name="ck_escrow_valid_status",
        ),
        CheckConstraint(
            "creator_role IN ('BUYER', 'SELLER')",
            name="ck_escrow_valid_creator_role",
        ),
        CheckConstraint(
            "amount > 0",
            name="ck_escrow_positive_amount",
        ),
        CheckConstraint(
            "commission >= 0",
            name="ck_escrow_non_negative_commission",
        ),
        CheckConstraint(
            "inspection_period_days > 0",
            name="ck_escrow_positive_inspection_period",
        ),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_creator", "creator_id"),
        Index("idx_escrow_partner_email", "partner_email"),
        Index("idx_escrow_partner_id", "partner_id"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowTransaction id={self.id} status={self.status} "
            f"amount={self.amount} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 2. escrow_messages (Append-Only)
# ---------------------------------------------------------------------------
class EscrowMessage(Base):
    """A chat message posted by one of the two parties."""

    __tablename__ = "escrow_messages"

    # --- Primary Key (insertion order) ---
    seq: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True,
        default=uuid.uuid4,
    )

    # --- Foreign Key ---
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrow_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )

    # --- Content ---
    sender_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Identity id of the author (creator or partner)",
    )
    text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # --- Timestamp ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        CheckConstraint("length(text) > 0", name="ck_message_non_empty"),
        Index("idx_message_transaction", "transaction_id", "created_at", "seq"),
    )

    def __repr__(self) -> str:
        return f"<EscrowMessage id={self.id} transaction={self.transaction_id}>"


# ---------------------------------------------------------------------------
# 3. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of every change in a transaction's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "escrow_events"

    seq: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True,
        default=uuid.uuid4,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrow_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., TRANSACTION_FUNDED, DISPUTE_RAISED)",
    )
    old_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Transaction status before this event (null for creation)",
    )
    new_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Transaction status after this event",
    )
    actor: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        default="SYSTEM",
        comment="Identity id that triggered this event, or SYSTEM",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JsonDocument,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("idx_event_transaction", "transaction_id", "created_at", "seq"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


event.listen(EscrowTransaction, "before_update", _set_updated_at)
