"""Escrow transaction REST API routes.

These endpoints provide the HTTP interface for opening transactions, moving
them through their lifecycle, chatting and requesting dispute mediation. The
MCP tools in mcp_server/tools.py call the same service layer, ensuring
consistency.

Every route acts on behalf of the identity in the X-User-Id / X-User-Email
headers (see api/deps.py).

Routes:
    POST   /api/v1/escrow                      — Open a new transaction
    GET    /api/v1/escrow                      — List the caller's transactions
    GET    /api/v1/escrow/{id}                 — Get transaction card
    GET    /api/v1/escrow/{id}/status          — Status plus allowed targets
    POST   /api/v1/escrow/{id}/transition      — Move to a new status
    GET    /api/v1/escrow/{id}/messages        — Read the chat log
    POST   /api/v1/escrow/{id}/messages        — Append a chat message
    GET    /api/v1/escrow/{id}/events          — Get audit trail
    POST   /api/v1/escrow/{id}/mediation       — Request dispute mediation
    GET    /api/v1/escrow/{id}/mediation       — Mediation state
    GET    /api/v1/escrow/{id}/stream          — Server-sent change notifications
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from trade_escrow.api.deps import (
    get_current_identity,
    get_escrow_service,
    get_mediation_service,
)
from trade_escrow.domain.exceptions import DuplicateOperationError
from trade_escrow.domain.parties import Identity
from trade_escrow.infrastructure.redis_client import (
    claim_idempotency,
    complete_idempotency,
    get_redis_or_none,
    release_idempotency,
    transaction_channel,
)
from trade_escrow.logging_config import get_logger
from trade_escrow.schemas.escrow import (
    CreateTransactionRequest,
    EscrowEventResponse,
    MediationStatusResponse,
    MessageResponse,
    PostMessageRequest,
    TransactionCardResponse,
    TransactionResponse,
    TransactionStatusResponse,
    TransitionRequest,
)
from trade_escrow.services.escrow_service import EscrowService
from trade_escrow.services.mediation_service import MediationService

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)

STREAM_KEEPALIVE_SECONDS = 15.0


def _card(svc: EscrowService, transaction, viewer: Identity) -> TransactionCardResponse:
    base = TransactionResponse.model_validate(transaction).model_dump()
    return TransactionCardResponse(**base, **svc.describe_for(transaction, viewer))


def _mediation_response(transaction_id: uuid.UUID, state) -> MediationStatusResponse:
    return MediationStatusResponse(
        transaction_id=transaction_id,
        phase=state.phase,
        text=state.text,
        updated_at=state.updated_at,
    )


# ---------------------------------------------------------------------------
# Create / List
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionCardResponse,
    status_code=201,
    summary="Open a new escrow transaction",
)
async def create_transaction(
    request: CreateTransactionRequest,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionCardResponse:
    """Create a transaction in PENDING state, inviting the partner by email."""
    idempotency_key = None
    if request.idempotency_key and get_redis_or_none() is not None:
        idempotency_key = f"create:{identity.id}:{request.idempotency_key}"
        if not await claim_idempotency(idempotency_key):
            raise DuplicateOperationError(request.idempotency_key)

    try:
        transaction = await svc.create_transaction(
            creator=identity,
            title=request.title,
            description=request.description,
            amount=request.amount,
            partner_email=str(request.partner_email),
            creator_role=request.creator_role,
            inspection_period_days=request.inspection_period_days,
        )
        await svc.commit()
    except Exception:
        if idempotency_key is not None:
            await release_idempotency(idempotency_key)
        raise

    if idempotency_key is not None:
        await complete_idempotency(idempotency_key, str(transaction.id))
    return _card(svc, transaction, identity)


@router.get(
    "",
    response_model=list[TransactionCardResponse],
    summary="List the caller's transactions",
)
async def list_transactions(
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[TransactionCardResponse]:
    """Transactions the caller created or was invited to, newest first."""
    transactions = await svc.list_transactions(identity)
    return [_card(svc, t, identity) for t in transactions]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/transition",
    response_model=TransactionCardResponse,
    summary="Move a transaction to a new status",
)
async def transition_transaction(
    transaction_id: uuid.UUID,
    request: TransitionRequest,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionCardResponse:
    """Apply one lifecycle step (accept, fund, ship, dispute, ...).

    Pass ``expected_status`` to make the request fail instead of acting on a
    transaction that changed since the caller last looked.
    """
    transaction = await svc.transition(
        transaction_id=transaction_id,
        actor=identity,
        target=request.target_status,
        expected_status=request.expected_status,
        reason=request.reason,
    )
    await svc.commit()
    return _card(svc, transaction, identity)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}/messages",
    response_model=list[MessageResponse],
    summary="Read the chat log",
)
async def get_messages(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[MessageResponse]:
    messages = await svc.get_messages(transaction_id, identity)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{transaction_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    summary="Append a chat message",
)
async def post_message(
    transaction_id: uuid.UUID,
    request: PostMessageRequest,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> MessageResponse:
    message = await svc.append_message(transaction_id, identity, request.text)
    await svc.commit()
    return MessageResponse.model_validate(message)


# ---------------------------------------------------------------------------
# Mediation
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/mediation",
    response_model=MediationStatusResponse,
    summary="Request AI mediation of a dispute",
)
async def request_mediation(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    mediation: MediationService = Depends(get_mediation_service),
) -> MediationStatusResponse:
    """Run the mediator once. Only valid while the transaction is DISPUTED.

    A mediator failure is not an error: the response carries phase FAILED and
    the fallback advisory.
    """
    state = await mediation.request_mediation(transaction_id, identity)
    await mediation.commit()
    return _mediation_response(transaction_id, state)


@router.get(
    "/{transaction_id}/mediation",
    response_model=MediationStatusResponse,
    summary="Get mediation state",
)
async def get_mediation_status(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    mediation: MediationService = Depends(get_mediation_service),
) -> MediationStatusResponse:
    state = await mediation.get_mediation_status(transaction_id, identity)
    return _mediation_response(transaction_id, state)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}",
    response_model=TransactionCardResponse,
    summary="Get transaction details",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionCardResponse:
    """Fetch a transaction by its UUID, as seen by the caller."""
    transaction = await svc.get_transaction(transaction_id, identity)
    return _card(svc, transaction, identity)


@router.get(
    "/{transaction_id}/status",
    response_model=TransactionStatusResponse,
    summary="Get lightweight status check",
)
async def get_status(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionStatusResponse:
    """Return the current status and the statuses the caller may move it to."""
    status_data = await svc.get_status(transaction_id, identity)
    return TransactionStatusResponse(**status_data)


@router.get(
    "/{transaction_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get audit trail",
)
async def get_events(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowEventResponse]:
    """Return the full audit trail for a transaction."""
    events = await svc.get_events(transaction_id, identity)
    return [EscrowEventResponse.model_validate(e) for e in events]


@router.get(
    "/{transaction_id}/stream",
    summary="Subscribe to change notifications",
)
async def stream_changes(
    transaction_id: uuid.UUID,
    identity: Identity = Depends(get_current_identity),
    svc: EscrowService = Depends(get_escrow_service),
) -> StreamingResponse:
    """Server-sent events, one per change. Clients re-read the transaction on each.

    The database session is only used for the party check; the stream itself
    holds no connection.
    """
    await svc.get_transaction(transaction_id, identity)
    await svc.release_connection()

    redis = get_redis_or_none()
    if redis is None:
        raise HTTPException(503, "Change notifications are unavailable")

    channel = transaction_channel(str(transaction_id))

    async def event_generator():
        pubsub = redis.pubsub()
        await pubsub.subscribe(channel)
        logger.info("stream.subscribed", transaction_id=str(transaction_id), viewer=identity.id)
        try:
            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=STREAM_KEEPALIVE_SECONDS,
                )
                if message is None:
                    yield ": keepalive\n\n"
                    continue
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode()
                yield f"data: {data}\n\n"
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info("stream.closed", transaction_id=str(transaction_id), viewer=identity.id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
