"""Dispute mediation contracts.

Defines the shapes the mediation coordinator works with:
    - DisputeBrief / ChatTurn: the analysis input, built from a transaction.
    - MediationState: Idle | Analyzing | Ready(report) | Failed(fallback).
    - DisputeAnalyst: the external analysis collaborator (one prompt in, one text out).
    - MediationStateStore: where per-transaction state lives, with an atomic claim
      that gives "at most one analysis in flight" per transaction.

The domain layer has ZERO imports from LiteLLM, Redis, or any external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from trade_escrow.domain.enums import MediationPhase, PartyRelation

FALLBACK_ADVISORY = (
    "The AI mediator is currently unavailable. Please contact human support "
    "to continue resolving this dispute."
)


@dataclass(frozen=True)
class ChatTurn:
    """One message in the log, labelled by who wrote it."""

    speaker: PartyRelation
    text: str

    def render(self) -> str:
        label = "Creator" if self.speaker is PartyRelation.CREATOR else "Partner"
        return f"{label}: {self.text}"


@dataclass(frozen=True)
class DisputeBrief:
    """Everything the analyst sees about a disputed transaction."""

    transaction_id: str
    title: str
    description: str
    amount: Decimal
    currency: str
    status: str
    creator_role: str
    dispute_reason: str | None
    turns: tuple[ChatTurn, ...] = ()

    def render_conversation(self) -> str:
        if not self.turns:
            return "(no messages were exchanged)"
        return "\n".join(turn.render() for turn in self.turns)


@dataclass(frozen=True)
class MediationState:
    """Per-transaction mediation state.

    Attributes:
        phase: Current coordinator phase.
        text: The advisory report (READY) or the fallback message (FAILED).
        error: Why the analysis failed, for logs and support staff.
        updated_at: When the phase last changed.
    """

    phase: MediationPhase = MediationPhase.IDLE
    text: str | None = None
    error: str | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def idle(cls) -> MediationState:
        return cls()

    @classmethod
    def analyzing(cls) -> MediationState:
        return cls(phase=MediationPhase.ANALYZING)

    @classmethod
    def ready(cls, report: str) -> MediationState:
        return cls(phase=MediationPhase.READY, text=report)

    @classmethod
    def failed(cls, error: str, fallback: str = FALLBACK_ADVISORY) -> MediationState:
        return cls(phase=MediationPhase.FAILED, text=fallback, error=error)

    def to_dict(self) -> dict:
        """Serialize for storage and API responses."""
        return {
            "phase": self.phase.value,
            "text": self.text,
            "error": self.error,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> MediationState:
        return cls(
            phase=MediationPhase(data.get("phase", MediationPhase.IDLE.value)),
            text=data.get("text") or None,
            error=data.get("error") or None,
            updated_at=datetime.fromisoformat(data["updated_at"])
            if data.get("updated_at")
            else datetime.now(UTC),
        )


@runtime_checkable
class DisputeAnalyst(Protocol):
    """The external analysis collaborator.

    Concrete implementations:
        - analysis/mediator.py  (LiteLLM-backed mediator)
    """

    async def analyze(self, brief: DisputeBrief) -> str:
        """Return the advisory text for ``brief``.

        Raises:
            MediationUnavailableError: On collaborator error, timeout or empty output.
        """
        ...


@runtime_checkable
class MediationStateStore(Protocol):
    """Storage for mediation state, keyed by transaction id.

    Concrete implementations:
        - infrastructure/mediation_store.py  (Redis, and in-process fallback)
    """

    async def get(self, transaction_id: str) -> MediationState:
        """Return the state, IDLE if nothing was recorded."""
        ...

    async def try_begin(self, transaction_id: str) -> bool:
        """Atomically move to ANALYZING. False if an analysis is already in flight."""
        ...

    async def finish(self, transaction_id: str, state: MediationState) -> None:
        """Record a READY/FAILED outcome and release the in-flight claim."""
        ...
