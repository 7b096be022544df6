"""Pydantic API schemas."""

from trade_escrow.schemas.escrow import (
    AdviceRequest,
    AdviceResponse,
    CreateTransactionRequest,
    EscrowEventResponse,
    HealthResponse,
    MediationStatusResponse,
    MessageResponse,
    PostMessageRequest,
    TransactionCardResponse,
    TransactionResponse,
    TransactionStatusResponse,
    TransitionRequest,
)

__all__ = [
    "AdviceRequest",
    "AdviceResponse",
    "CreateTransactionRequest",
    "EscrowEventResponse",
    "HealthResponse",
    "MediationStatusResponse",
    "MessageResponse",
    "PostMessageRequest",
    "TransactionCardResponse",
    "TransactionResponse",
    "TransactionStatusResponse",
    "TransitionRequest",
]
