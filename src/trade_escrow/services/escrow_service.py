"""Escrow Service — core business logic for the trade lifecycle.

This is the application layer that coordinates between:
    - Party resolver (who is acting on this record)
    - Domain state machine (transition guard)
    - Repositories (data access, compare-and-swap on status)
    - Event log (audit trail) and change notifications

Mutating methods only stage their writes. The caller ends the unit of work
with commit(), which also publishes the change notifications it collected;
nothing is announced for a write that was not committed.

Both REST routes and MCP tools call into this service,
ensuring a single source of truth for all business rules.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from trade_escrow.config import Settings, get_settings
from trade_escrow.domain.commission import compute_commission, total_due
from trade_escrow.domain.enums import EscrowStatus, EventType, PartyRelation, PartyRole
from trade_escrow.domain.exceptions import (
    EscrowValidationError,
    InvalidStateTransitionError,
    StorageError,
    TransactionNotFoundError,
    UnauthorizedActionError,
)
from trade_escrow.domain.mediation import ChatTurn, DisputeBrief
from trade_escrow.domain.parties import (
    Identity,
    PartyResolution,
    normalize_email,
    resolve_party,
)
from trade_escrow.domain.state_machine import (
    EVENT_AUDIT_TYPES,
    allowed_targets,
    plan_transition,
)
from trade_escrow.infrastructure.database.orm_models import (
    EscrowEvent,
    EscrowMessage,
    EscrowTransaction,
)
from trade_escrow.infrastructure.database.repositories import (
    EventRepository,
    MessageRepository,
    TransactionRepository,
)
from trade_escrow.infrastructure.redis_client import publish_transaction_change
from trade_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_INSPECTION_PERIOD_DAYS = 30


class EscrowService:
    """Manages the escrow transaction lifecycle."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._transaction_repo = TransactionRepository(session)
        self._message_repo = MessageRepository(session)
        self._event_repo = EventRepository(session)
        self._pending_changes: list[tuple[str, dict]] = []

    @property
    def require_delivery(self) -> bool:
        return self._settings.escrow_require_delivery_confirmation

    # ------------------------------------------------------------------
    # Transaction Creation
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        creator: Identity,
        title: str,
        description: str,
        amount: Decimal,
        partner_email: str,
        creator_role: PartyRole,
        inspection_period_days: int | None = None,
    ) -> EscrowTransaction:
        """Create a new transaction in PENDING state.

        The commission is computed once here and stored; later changes to the
        configured rate never touch existing records.
        """
        title = (title or "").strip()
        description = (description or "").strip()
        partner = normalize_email(partner_email or "")
        creator_email = normalize_email(creator.email or "")

        if not title:
            raise EscrowValidationError("Title must not be empty", field="title")
        if not description:
            raise EscrowValidationError("Description must not be empty", field="description")
        if amount is None or amount <= 0:
            raise EscrowValidationError("Amount must be greater than zero", field="amount")
        if not _EMAIL_PATTERN.match(partner):
            raise EscrowValidationError(
                f"Malformed partner address: {partner_email!r}", field="partner_email"
            )
        if creator_email and partner == creator_email:
            raise EscrowValidationError(
                "Partner must be someone other than the creator", field="partner_email"
            )

        inspection = (
            inspection_period_days
            if inspection_period_days is not None
            else self._settings.default_inspection_period_days
        )
        if not 1 <= inspection <= MAX_INSPECTION_PERIOD_DAYS:
            raise EscrowValidationError(
                f"Inspection period must be between 1 and {MAX_INSPECTION_PERIOD_DAYS} days",
                field="inspection_period_days",
            )

        commission = compute_commission(amount, self._settings.commission_rate)

        transaction = EscrowTransaction(
            title=title,
            description=description,
            amount=amount,
            commission=commission,
            currency=self._settings.currency,
            inspection_period_days=inspection,
            creator_id=creator.id,
            creator_email=creator_email,
            creator_role=PartyRole(creator_role).value,
            partner_email=partner,
            status=EscrowStatus.PENDING.value,
        )
        transaction = await self._transaction_repo.create(transaction)

        await self._event_repo.record(
            transaction_id=transaction.id,
            event_type=EventType.TRANSACTION_CREATED,
            old_status=None,
            new_status=EscrowStatus.PENDING,
            actor=creator.id,
            metadata={
                "amount": str(amount),
                "commission": str(commission),
                "creator_role": transaction.creator_role,
            },
        )
        self.queue_change(transaction.id, EventType.TRANSACTION_CREATED, transaction.status)

        logger.info(
            "escrow.created",
            transaction_id=str(transaction.id),
            partner_email=partner,
            amount=str(amount),
            commission=str(commission),
            creator_role=transaction.creator_role,
        )
        return transaction

    # ------------------------------------------------------------------
    # Status Transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        transaction_id: uuid.UUID,
        actor: Identity,
        target: EscrowStatus,
        expected_status: EscrowStatus | None = None,
        reason: str | None = None,
    ) -> EscrowTransaction:
        """Move a transaction to ``target`` on behalf of ``actor``.

        Applied as a compare-and-swap on the status the caller saw, so of two
        racing attempts exactly one wins and the other gets
        InvalidStateTransitionError.

        Raises:
            TransactionNotFoundError: Unknown id.
            UnauthorizedActionError: Not a party, or the wrong relation/role.
            InvalidStateTransitionError: Not reachable, stale expected status, or race lost.
            EscrowValidationError: A dispute was opened without a reason.
        """
        transaction = await self._get_transaction_or_raise(transaction_id)
        party = resolve_party(transaction, actor)
        current = EscrowStatus(transaction.status)
        target = EscrowStatus(target)

        try:
            if expected_status is not None and EscrowStatus(expected_status) is not current:
                raise InvalidStateTransitionError(
                    current.value,
                    target.value,
                    reason=f"expected status {EscrowStatus(expected_status).value}",
                )
            event_name = plan_transition(current, target, party, self.require_delivery)
        except (InvalidStateTransitionError, UnauthorizedActionError) as exc:
            logger.info(
                "escrow.transition_rejected",
                transaction_id=str(transaction_id),
                actor=actor.id,
                current=current.value,
                target=target.value,
                code=exc.code,
            )
            raise

        extra_values: dict[str, str] = {}
        if event_name == "accept":
            extra_values["partner_id"] = actor.id
        elif event_name == "open_dispute":
            reason = (reason or "").strip()
            if not reason:
                raise EscrowValidationError("A dispute needs a reason", field="reason")
            extra_values["dispute_reason"] = reason

        won = await self._transaction_repo.compare_and_set_status(
            transaction, current, target, **extra_values
        )
        if not won:
            logger.info(
                "escrow.transition_lost_race",
                transaction_id=str(transaction_id),
                actor=actor.id,
                current=current.value,
                target=target.value,
            )
            raise InvalidStateTransitionError(
                current.value, target.value, reason="status changed concurrently"
            )

        event_type = EVENT_AUDIT_TYPES[event_name]
        metadata: dict[str, str] = {
            "event": event_name,
            "relation": party.relation.value,
            "role": party.role.value,
        }
        if reason:
            metadata["reason"] = reason
        await self._event_repo.record(
            transaction_id=transaction.id,
            event_type=event_type,
            old_status=current,
            new_status=target,
            actor=actor.id,
            metadata=metadata,
        )
        self.queue_change(transaction.id, event_type, transaction.status)

        logger.info(
            "escrow.transition_applied",
            transaction_id=str(transaction_id),
            transition=event_name,
            old_status=current.value,
            new_status=target.value,
            actor=actor.id,
        )
        return transaction

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append_message(
        self,
        transaction_id: uuid.UUID,
        sender: Identity,
        text: str,
    ) -> EscrowMessage:
        """Append a chat message from one of the two parties."""
        if not text or not text.strip():
            raise EscrowValidationError("Message text must not be empty", field="text")

        transaction = await self._get_transaction_or_raise(transaction_id)
        party = resolve_party(transaction, sender)

        message = await self._message_repo.append(transaction.id, sender.id, text)

        status = EscrowStatus(transaction.status)
        await self._event_repo.record(
            transaction_id=transaction.id,
            event_type=EventType.MESSAGE_POSTED,
            old_status=status,
            new_status=status,
            actor=sender.id,
            metadata={"message_id": str(message.id), "relation": party.relation.value},
        )
        self.queue_change(transaction.id, EventType.MESSAGE_POSTED, transaction.status)

        logger.info(
            "escrow.message_posted",
            transaction_id=str(transaction_id),
            message_id=str(message.id),
            relation=party.relation.value,
        )
        return message

    async def get_messages(
        self,
        transaction_id: uuid.UUID,
        viewer: Identity,
    ) -> list[EscrowMessage]:
        """Messages in insertion order."""
        await self.get_transaction(transaction_id, viewer)
        return await self._message_repo.get_by_transaction(transaction_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(
        self,
        transaction_id: uuid.UUID,
        viewer: Identity,
    ) -> EscrowTransaction:
        """Get a transaction the viewer is a party to, or raise."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        resolve_party(transaction, viewer)
        return transaction

    async def list_transactions(self, viewer: Identity) -> list[EscrowTransaction]:
        """All transactions the viewer created or was invited to, newest first."""
        return await self._transaction_repo.list_for_party(viewer.id, viewer.normalized_email)

    async def get_status(self, transaction_id: uuid.UUID, viewer: Identity) -> dict:
        """Get transaction status with the targets the viewer may move it to."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        party = resolve_party(transaction, viewer)
        current = EscrowStatus(transaction.status)
        return {
            "transaction_id": str(transaction.id),
            "status": current.value,
            "relation": party.relation.value,
            "role": party.role.value,
            "allowed_targets": [
                target.value
                for target in allowed_targets(current, party, self.require_delivery)
            ],
            "is_terminal": current.is_terminal,
        }

    async def get_events(
        self,
        transaction_id: uuid.UUID,
        viewer: Identity,
    ) -> list[EscrowEvent]:
        """Get audit trail."""
        await self.get_transaction(transaction_id, viewer)
        return await self._event_repo.get_by_transaction(transaction_id)

    def describe_for(self, transaction: EscrowTransaction, viewer: Identity) -> dict:
        """Card view of a transaction from the viewer's side."""
        party = resolve_party(transaction, viewer)
        return {
            "viewer_relation": party.relation.value,
            "viewer_role": party.role.value,
            "counterparty": _counterparty_label(transaction, party),
            "total_due": total_due(transaction.amount, transaction.commission),
            "currency_symbol": self._settings.currency_symbol,
        }

    async def build_dispute_brief(self, transaction: EscrowTransaction) -> DisputeBrief:
        """Collect terms and the rendered chat log for the mediator."""
        messages = await self._message_repo.get_by_transaction(transaction.id)
        turns = tuple(
            ChatTurn(
                speaker=(
                    PartyRelation.CREATOR
                    if message.sender_id == transaction.creator_id
                    else PartyRelation.PARTNER
                ),
                text=message.text,
            )
            for message in messages
        )
        return DisputeBrief(
            transaction_id=str(transaction.id),
            title=transaction.title,
            description=transaction.description,
            amount=transaction.amount,
            currency=transaction.currency,
            status=transaction.status,
            creator_role=transaction.creator_role,
            dispute_reason=transaction.dispute_reason,
            turns=turns,
        )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def queue_change(
        self,
        transaction_id: uuid.UUID,
        event_type: EventType,
        status: str,
    ) -> None:
        """Stage a change notification, published by the next successful commit()."""
        self._pending_changes.append(
            (str(transaction_id), {"event": event_type.value, "status": status})
        )

    async def commit(self) -> None:
        """Commit staged writes, then publish the notifications they produced.

        Raises:
            StorageError: The commit failed. Staged writes and notifications
                are discarded.
        """
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            self._pending_changes.clear()
            await self._session.rollback()
            logger.error("storage.failed", operation="session.commit", error=str(exc))
            raise StorageError(
                "Storage operation failed: session.commit", operation="session.commit"
            ) from exc

        pending, self._pending_changes = self._pending_changes, []
        for transaction_id, payload in pending:
            await publish_transaction_change(transaction_id, payload)

    async def release_connection(self) -> None:
        """Return the session's pooled connection; later calls check out a new one."""
        self._pending_changes.clear()
        await self._session.close()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_transaction_or_raise(self, transaction_id: uuid.UUID) -> EscrowTransaction:
        transaction = await self._transaction_repo.get_by_id(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction


def _counterparty_label(transaction: EscrowTransaction, party: PartyResolution) -> str:
    if party.is_creator:
        return f"With: {transaction.partner_email}"
    return "From: Creator"
