"""Dispute mediation — advisory analysis for transactions in DISPUTED.

Two pieces:
    - DisputeMediationCoordinator: the single-flight state machine
      (IDLE -> ANALYZING -> READY | FAILED), independent of the database.
    - MediationService: loads the transaction and chat log, checks the caller,
      runs the coordinator and writes the outcome to the audit trail.

Mediation produces text only. It never changes a transaction's status; closing
a dispute stays a manual transition by one of the parties.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_escrow.domain.enums import EscrowStatus, EventType, MediationPhase
from trade_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    MediationInProgressError,
)
from trade_escrow.domain.mediation import (
    DisputeAnalyst,
    DisputeBrief,
    MediationState,
    MediationStateStore,
)
from trade_escrow.infrastructure.database.repositories import EventRepository
from trade_escrow.logging_config import get_logger
from trade_escrow.services.escrow_service import EscrowService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_escrow.domain.parties import Identity

logger = get_logger(__name__)


class DisputeMediationCoordinator:
    """Runs at most one analysis per transaction at a time."""

    def __init__(self, analyst: DisputeAnalyst, store: MediationStateStore) -> None:
        self._analyst = analyst
        self._store = store

    async def mediate(self, brief: DisputeBrief) -> MediationState:
        """Analyze ``brief`` once and record the outcome.

        Collaborator failures are not raised; they end in FAILED with the
        fallback advisory.

        Raises:
            InvalidStateTransitionError: The transaction is not DISPUTED.
            MediationInProgressError: Another analysis is already running.
        """
        if brief.status != EscrowStatus.DISPUTED.value:
            raise InvalidStateTransitionError(
                brief.status, "MEDIATION", reason="mediation requires a DISPUTED transaction"
            )

        if not await self._store.try_begin(brief.transaction_id):
            logger.info("mediation.already_running", transaction_id=brief.transaction_id)
            raise MediationInProgressError(brief.transaction_id)

        logger.info(
            "mediation.started",
            transaction_id=brief.transaction_id,
            turns=len(brief.turns),
        )
        state = MediationState.failed("Mediation was interrupted")
        try:
            report = await self._analyst.analyze(brief)
            state = MediationState.ready(report)
        except Exception as exc:
            logger.warning(
                "mediation.failed",
                transaction_id=brief.transaction_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            state = MediationState.failed(str(exc))
        finally:
            await self._store.finish(brief.transaction_id, state)

        logger.info(
            "mediation.finished",
            transaction_id=brief.transaction_id,
            phase=state.phase.value,
        )
        return state

    async def status(self, transaction_id: str) -> MediationState:
        return await self._store.get(transaction_id)


class MediationService:
    """Mediation use cases over persisted transactions."""

    def __init__(
        self,
        session: AsyncSession,
        coordinator: DisputeMediationCoordinator,
        escrow_service: EscrowService | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._escrow = escrow_service or EscrowService(session)
        self._event_repo = EventRepository(session)

    async def request_mediation(
        self,
        transaction_id: uuid.UUID,
        requester: Identity,
    ) -> MediationState:
        """Run mediation for a disputed transaction the requester is party to.

        The MEDIATION_REQUESTED event is committed before the analyst runs, so
        no database connection is held during the model call. The outcome event
        is staged for the caller's commit().
        """
        transaction = await self._escrow.get_transaction(transaction_id, requester)
        brief = await self._escrow.build_dispute_brief(transaction)
        status = EscrowStatus(transaction.status)

        if status is EscrowStatus.DISPUTED:
            await self._event_repo.record(
                transaction_id=transaction.id,
                event_type=EventType.MEDIATION_REQUESTED,
                old_status=status,
                new_status=status,
                actor=requester.id,
            )
            await self._escrow.commit()
        state = await self._coordinator.mediate(brief)

        event_type = (
            EventType.MEDIATION_COMPLETED
            if state.phase is MediationPhase.READY
            else EventType.MEDIATION_FAILED
        )
        metadata = {"requested_by": requester.id, "turns": len(brief.turns)}
        if state.error:
            metadata["error"] = state.error
        await self._event_repo.record(
            transaction_id=transaction.id,
            event_type=event_type,
            old_status=status,
            new_status=status,
            actor=requester.id,
            metadata=metadata,
        )
        self._escrow.queue_change(transaction.id, event_type, status.value)
        return state

    async def commit(self) -> None:
        await self._escrow.commit()

    async def get_mediation_status(
        self,
        transaction_id: uuid.UUID,
        viewer: Identity,
    ) -> MediationState:
        """Current mediation state for a transaction the viewer is party to."""
        await self._escrow.get_transaction(transaction_id, viewer)
        return await self._coordinator.status(str(transaction_id))


_coordinator: DisputeMediationCoordinator | None = None


def get_mediation_coordinator() -> DisputeMediationCoordinator:
    """Coordinator wired to the LiteLLM mediator and the configured state store."""
    global _coordinator
    if _coordinator is None:
        from trade_escrow.analysis.mediator import LiteLLMDisputeMediator
        from trade_escrow.infrastructure.mediation_store import get_mediation_store

        _coordinator = DisputeMediationCoordinator(
            analyst=LiteLLMDisputeMediator(),
            store=get_mediation_store(),
        )
    return _coordinator
