"""Domain enumerations for the Trade Escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

from __future__ import annotations

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow transaction.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "PENDING"  # created, waiting for the partner to accept
    ACCEPTED = "ACCEPTED"
    FUNDED = "FUNDED"  # buyer has paid into escrow
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"  # funds released to the seller
    DISPUTED = "DISPUTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowStatus.COMPLETED, EscrowStatus.CANCELLED)


class PartyRole(enum.StrEnum):
    """Trade role of a party. Exactly one BUYER and one SELLER per transaction."""

    BUYER = "BUYER"
    SELLER = "SELLER"

    @property
    def complement(self) -> PartyRole:
        return PartyRole.SELLER if self is PartyRole.BUYER else PartyRole.BUYER


class PartyRelation(enum.StrEnum):
    """How an identity relates to the record: who opened it, or who was invited."""

    CREATOR = "CREATOR"
    PARTNER = "PARTNER"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every state transition MUST produce exactly one event.
    This is the append-only forensic trail for disputes.
    """

    # Lifecycle events
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_ACCEPTED = "TRANSACTION_ACCEPTED"
    TRANSACTION_FUNDED = "TRANSACTION_FUNDED"
    ITEM_SHIPPED = "ITEM_SHIPPED"
    DELIVERY_CONFIRMED = "DELIVERY_CONFIRMED"
    FUNDS_RELEASED = "FUNDS_RELEASED"
    TRANSACTION_CANCELLED = "TRANSACTION_CANCELLED"

    # Dispute events
    DISPUTE_RAISED = "DISPUTE_RAISED"
    DISPUTE_CONCEDED_TO_SELLER = "DISPUTE_CONCEDED_TO_SELLER"
    DISPUTE_CONCEDED_TO_BUYER = "DISPUTE_CONCEDED_TO_BUYER"

    # Conversation and mediation events
    MESSAGE_POSTED = "MESSAGE_POSTED"
    MEDIATION_REQUESTED = "MEDIATION_REQUESTED"
    MEDIATION_COMPLETED = "MEDIATION_COMPLETED"
    MEDIATION_FAILED = "MEDIATION_FAILED"


class MediationPhase(enum.StrEnum):
    """Phases of the dispute mediation coordinator for one transaction."""

    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    READY = "READY"
    FAILED = "FAILED"
