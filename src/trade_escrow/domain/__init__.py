"""Domain layer — pure business logic with zero framework dependencies."""

from trade_escrow.domain.commission import compute_commission, total_due
from trade_escrow.domain.enums import (
    EscrowStatus,
    EventType,
    MediationPhase,
    PartyRelation,
    PartyRole,
)
from trade_escrow.domain.exceptions import (
    DuplicateOperationError,
    EscrowError,
    EscrowValidationError,
    InvalidStateTransitionError,
    MediationInProgressError,
    MediationUnavailableError,
    NotAPartyError,
    StorageError,
    TransactionNotFoundError,
    UnauthorizedActionError,
)
from trade_escrow.domain.mediation import (
    FALLBACK_ADVISORY,
    ChatTurn,
    DisputeAnalyst,
    DisputeBrief,
    MediationState,
    MediationStateStore,
)
from trade_escrow.domain.parties import Identity, PartyResolution, resolve_party
from trade_escrow.domain.state_machine import (
    EscrowStateMachine,
    allowed_targets,
    plan_transition,
    validate_transition,
)

__all__ = [
    "EscrowStatus",
    "EventType",
    "MediationPhase",
    "PartyRelation",
    "PartyRole",
    "DuplicateOperationError",
    "EscrowError",
    "EscrowValidationError",
    "InvalidStateTransitionError",
    "MediationInProgressError",
    "MediationUnavailableError",
    "NotAPartyError",
    "StorageError",
    "TransactionNotFoundError",
    "UnauthorizedActionError",
    "FALLBACK_ADVISORY",
    "ChatTurn",
    "DisputeAnalyst",
    "DisputeBrief",
    "MediationState",
    "MediationStateStore",
    "Identity",
    "PartyResolution",
    "resolve_party",
    "EscrowStateMachine",
    "allowed_targets",
    "plan_transition",
    "validate_transition",
    "compute_commission",
    "total_due",
]
