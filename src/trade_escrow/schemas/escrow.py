"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from trade_escrow.domain.enums import EscrowStatus, MediationPhase, PartyRole

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTransactionRequest(BaseModel):
    """Request body for opening a new escrow transaction."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Headline of the item or service being traded",
        examples=["iPhone 14 Pro, 256GB"],
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Delivery terms, quality benchmarks and shipment method",
        examples=["Sealed box, shipped via GIG Logistics within 2 days of funding"],
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Trade value in the platform currency, excluding commission",
        examples=[Decimal("100000.00")],
    )
    partner_email: EmailStr = Field(
        ...,
        description="Email of the invited counterparty",
        examples=["partner@example.com"],
    )
    creator_role: PartyRole = Field(
        ...,
        description="Whether the creator is the BUYER or the SELLER",
    )
    inspection_period_days: int | None = Field(
        default=None,
        ge=1,
        le=30,
        description="Informational inspection window in days (defaults from config)",
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional idempotency key to prevent duplicate transaction creation",
    )


class TransitionRequest(BaseModel):
    """Request body for moving a transaction to a new status."""

    target_status: EscrowStatus = Field(
        ...,
        description="Status to move the transaction to",
        examples=[EscrowStatus.ACCEPTED],
    )
    expected_status: EscrowStatus | None = Field(
        default=None,
        description="Status the caller last saw; the request fails if it has moved on",
    )
    reason: str | None = Field(
        default=None,
        max_length=2000,
        description="Required when opening a dispute",
    )


class PostMessageRequest(BaseModel):
    """Request body for appending a chat message."""

    text: str = Field(
        ...,
        max_length=5000,
        description="Message text; must not be blank",
    )


class AdviceRequest(BaseModel):
    """Request body for the quick advice assistant."""

    query: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransactionResponse(BaseModel):
    """Response schema for an escrow transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str
    amount: Decimal
    commission: Decimal
    currency: str
    inspection_period_days: int
    creator_id: str
    creator_email: str
    creator_role: str
    partner_email: str
    partner_id: str | None
    status: str
    dispute_reason: str | None
    created_at: datetime
    updated_at: datetime


class TransactionCardResponse(TransactionResponse):
    """A transaction as shown to one of its parties."""

    viewer_relation: str
    viewer_role: str
    counterparty: str = Field(description='"With: <partner>" or "From: Creator"')
    total_due: Decimal = Field(description="amount + commission")
    currency_symbol: str


class MessageResponse(BaseModel):
    """Response schema for a chat message."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    sender_id: str
    text: str
    created_at: datetime


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class TransactionStatusResponse(BaseModel):
    """Lightweight status check response."""

    transaction_id: uuid.UUID
    status: str
    relation: str
    role: str
    allowed_targets: list[str] = Field(
        description="Statuses the caller may move the transaction to right now"
    )
    is_terminal: bool


class MediationStatusResponse(BaseModel):
    """Mediation state for a transaction."""

    transaction_id: uuid.UUID
    phase: MediationPhase
    text: str | None = Field(
        default=None,
        description="Advisory report when READY, fallback message when FAILED",
    )
    updated_at: datetime


class AdviceResponse(BaseModel):
    """Answer from the quick advice assistant."""

    answer: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
