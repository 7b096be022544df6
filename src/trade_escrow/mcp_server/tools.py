"""MCP Tool definitions for the Trade Escrow service.

These tools expose the escrow operations via the Model Context Protocol,
so assistants acting for a user can discover and call them programmatically.

Tools:
    - create_transaction: Open a new escrow transaction
    - list_transactions: List the user's transactions
    - transition_transaction: Move a transaction to a new status
    - post_message: Append a chat message
    - check_status: Status and the statuses the user may move it to
    - request_mediation: Ask the AI mediator about a dispute
    - get_mediation_status: Current mediation state

Every tool takes the acting user's id and email explicitly.
The MCP server is mounted into FastAPI at /mcp via app.mount().
Each tool manages its own database session (no FastAPI Depends available).
"""

from __future__ import annotations

import uuid
from decimal import Decimal, InvalidOperation

from mcp.server.fastmcp import FastMCP

from trade_escrow.domain.enums import EscrowStatus, PartyRole
from trade_escrow.domain.exceptions import EscrowError
from trade_escrow.domain.parties import Identity
from trade_escrow.logging_config import get_logger

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Trade Escrow",
    json_response=True,
)


async def _get_session():
    """Create a database session for MCP tool context (not in FastAPI request)."""
    from trade_escrow.infrastructure.database.engine import _get_session_factory

    factory = _get_session_factory()
    return factory()


def _parse_amount(amount: str) -> Decimal:
    try:
        value = Decimal(amount.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Amount is not a decimal number: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Amount is not a decimal number: {amount!r}")
    return value


def _error(exc: Exception) -> dict:
    if isinstance(exc, EscrowError):
        return {"error": exc.code, "message": exc.message}
    return {"error": "INTERNAL_ERROR", "message": str(exc)}


@mcp.tool()
async def create_transaction(
    user_id: str,
    user_email: str,
    title: str,
    description: str,
    amount: str,
    partner_email: str,
    creator_role: str,
    inspection_period_days: int = 3,
) -> dict:
    """Open a new escrow transaction and invite a partner.

    Args:
        user_id: Your user id.
        user_email: Your email address.
        title: What is being traded.
        description: Delivery terms, quality benchmarks, shipment method.
        amount: Trade value as a decimal string (e.g. "150000.00"), excluding
            the platform commission.
        partner_email: Email of the person you are trading with.
        creator_role: 'BUYER' if you are paying, 'SELLER' if you are delivering.
        inspection_period_days: Informational inspection window (1-30).

    Returns:
        Transaction details including the transaction_id you'll need for future calls.
    """
    from trade_escrow.services.escrow_service import EscrowService

    session = await _get_session()
    try:
        async with session:
            svc = EscrowService(session)
            transaction = await svc.create_transaction(
                creator=Identity(id=user_id, email=user_email),
                title=title,
                description=description,
                amount=_parse_amount(amount),
                partner_email=partner_email,
                creator_role=PartyRole(creator_role.upper()),
                inspection_period_days=inspection_period_days,
            )
            await svc.commit()

            return {
                "transaction_id": str(transaction.id),
                "status": transaction.status,
                "amount": str(transaction.amount),
                "commission": str(transaction.commission),
                "currency": transaction.currency,
                "creator_role": transaction.creator_role,
                "partner_email": transaction.partner_email,
                "message": "Transaction created. Next step: your partner accepts it.",
            }
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception("mcp.create_transaction.error")
        return _error(exc)


@mcp.tool()
async def list_transactions(user_id: str, user_email: str) -> dict:
    """List the transactions you created or were invited to, newest first.

    Args:
        user_id: Your user id.
        user_email: Your email address.
    """
    from trade_escrow.services.escrow_service import EscrowService

    session = await _get_session()
    try:
        async with session:
            svc = EscrowService(session)
            identity = Identity(id=user_id, email=user_email)
            transactions = await svc.list_transactions(identity)
            return {
                "transactions": [
                    {
                        "transaction_id": str(t.id),
                        "title": t.title,
                        "status": t.status,
                        **{
                            k: str(v)
                            for k, v in svc.describe_for(t, identity).items()
                        },
                    }
                    for t in transactions
                ]
            }
    except Exception as exc:
        logger.exception("mcp.list_transactions.error")
        return _error(exc)


@mcp.tool()
async def transition_transaction(
    user_id: str,
    user_email: str,
    transaction_id: str,
    target_status: str,
    expected_status: str = "",
    reason: str = "",
) -> dict:
    """Move a transaction to a new status.

    Steps: ACCEPTED (partner accepts), FUNDED (buyer pays), SHIPPED (seller
    ships), DELIVERED (buyer confirms), COMPLETED (buyer releases funds),
    DISPUTED (either party, needs a reason), CANCELLED (either party while
    PENDING; the seller refunds during a dispute).

    Args:
        user_id: Your user id.
        user_email: Your email address.
        transaction_id: UUID of the transaction.
        target_status: The status to move to.
        expected_status: The status you last saw; the call fails if it changed.
        reason: Why you are opening a dispute.
    """
    from trade_escrow.services.escrow_service import EscrowService

    session = await _get_session()
    try:
        async with session:
            svc = EscrowService(session)
            transaction = await svc.transition(
                transaction_id=uuid.UUID(transaction_id),
                actor=Identity(id=user_id, email=user_email),
                target=EscrowStatus(target_status.upper()),
                expected_status=(
                    EscrowStatus(expected_status.upper()) if expected_status else None
                ),
                reason=reason or None,
            )
            await svc.commit()

            return {
                "transaction_id": str(transaction.id),
                "status": transaction.status,
                "message": f"Transaction is now {transaction.status}.",
            }
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception("mcp.transition_transaction.error")
        return _error(exc)


@mcp.tool()
async def post_message(
    user_id: str,
    user_email: str,
    transaction_id: str,
    text: str,
) -> dict:
    """Send a chat message to the other party of a transaction.

    Args:
        user_id: Your user id.
        user_email: Your email address.
        transaction_id: UUID of the transaction.
        text: The message.
    """
    from trade_escrow.services.escrow_service import EscrowService

    session = await _get_session()
    try:
        async with session:
            svc = EscrowService(session)
            message = await svc.append_message(
                uuid.UUID(transaction_id),
                Identity(id=user_id, email=user_email),
                text,
            )
            await svc.commit()
            return {
                "message_id": str(message.id),
                "created_at": message.created_at.isoformat(),
            }
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception("mcp.post_message.error")
        return _error(exc)


@mcp.tool()
async def check_status(user_id: str, user_email: str, transaction_id: str) -> dict:
    """Check the current status of a transaction.

    Args:
        user_id: Your user id.
        user_email: Your email address.
        transaction_id: UUID of the transaction.

    Returns:
        Current status, your role, and the statuses you may move it to.
    """
    from trade_escrow.services.escrow_service import EscrowService

    session = await _get_session()
    try:
        async with session:
            svc = EscrowService(session)
            return await svc.get_status(
                uuid.UUID(transaction_id),
                Identity(id=user_id, email=user_email),
            )
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception("mcp.check_status.error")
        return _error(exc)


@mcp.tool()
async def request_mediation(user_id: str, user_email: str, transaction_id: str) -> dict:
    """Ask the AI mediator for advice on a disputed transaction.

    The mediator only advises; it never moves money or changes the status.

    Args:
        user_id: Your user id.
        user_email: Your email address.
        transaction_id: UUID of a DISPUTED transaction.
    """
    from trade_escrow.services.mediation_service import (
        MediationService,
        get_mediation_coordinator,
    )

    session = await _get_session()
    try:
        async with session:
            mediation = MediationService(session, get_mediation_coordinator())
            state = await mediation.request_mediation(
                uuid.UUID(transaction_id),
                Identity(id=user_id, email=user_email),
            )
            await mediation.commit()
            return {"transaction_id": transaction_id, **state.to_dict()}
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception("mcp.request_mediation.error")
        return _error(exc)


@mcp.tool()
async def get_mediation_status(user_id: str, user_email: str, transaction_id: str) -> dict:
    """Get the mediation state of a transaction (IDLE, ANALYZING, READY, FAILED).

    Args:
        user_id: Your user id.
        user_email: Your email address.
        transaction_id: UUID of the transaction.
    """
    from trade_escrow.services.mediation_service import (
        MediationService,
        get_mediation_coordinator,
    )

    session = await _get_session()
    try:
        async with session:
            mediation = MediationService(session, get_mediation_coordinator())
            state = await mediation.get_mediation_status(
                uuid.UUID(transaction_id),
                Identity(id=user_id, email=user_email),
            )
            return {"transaction_id": transaction_id, **state.to_dict()}
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception("mcp.get_mediation_status.error")
        return _error(exc)
