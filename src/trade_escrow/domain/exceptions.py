"""Domain exceptions for the Trade Escrow service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Taxonomy:
    UnauthorizedActionError     — not a party, or the wrong role for the action
    InvalidStateTransitionError — not reachable from the current status (incl. lost CAS)
    EscrowValidationError       — malformed input
    MediationUnavailableError   — the analysis collaborator failed or timed out
    StorageError                — the database failed; nothing was applied
"""


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Authorization Errors ---


class UnauthorizedActionError(EscrowError):
    """Raised when the acting identity may not perform the requested action."""

    def __init__(self, message: str, actor_id: str | None = None) -> None:
        super().__init__(message=message, code="UNAUTHORIZED")
        self.actor_id = actor_id


class NotAPartyError(UnauthorizedActionError):
    """Raised when the acting identity is neither the creator nor the partner."""

    def __init__(self, transaction_id: str, actor_id: str) -> None:
        super().__init__(
            message=f"Identity {actor_id} is not a party to transaction {transaction_id}",
            actor_id=actor_id,
        )
        self.code = "NOT_A_PARTY"
        self.transaction_id = transaction_id


# --- State Machine Errors ---


class InvalidStateTransitionError(EscrowError):
    """Raised when an attempted state transition is not allowed.

    Example: PENDING -> SHIPPED (must be accepted and funded first).
    Also raised when a compare-and-swap on status loses a race.
    """

    def __init__(self, current_state: str, attempted_state: str, reason: str = "") -> None:
        message = f"Invalid state transition: {current_state} -> {attempted_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="INVALID_STATE_TRANSITION")
        self.current_state = current_state
        self.attempted_state = attempted_state


# --- Input Errors ---


class EscrowValidationError(EscrowError):
    """Raised when input is malformed (empty text, bad amount, bad address)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


# --- Lookup Errors ---


class TransactionNotFoundError(EscrowError):
    """Raised when a transaction ID does not exist."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Transaction not found: {transaction_id}",
            code="TRANSACTION_NOT_FOUND",
        )
        self.transaction_id = transaction_id


# --- Mediation Errors ---


class MediationUnavailableError(EscrowError):
    """Raised by the analysis collaborator when it fails, times out or returns nothing.

    The mediation coordinator catches this and degrades to a fallback advisory.
    """

    def __init__(self, message: str, llm_response: str = "") -> None:
        super().__init__(message=message, code="MEDIATION_UNAVAILABLE")
        self.llm_response = llm_response


class MediationInProgressError(EscrowError):
    """Raised when a mediation request arrives while one is already in flight."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Mediation already in progress for transaction: {transaction_id}",
            code="MEDIATION_IN_PROGRESS",
        )
        self.transaction_id = transaction_id


# --- Infrastructure Errors ---


class StorageError(EscrowError):
    """Raised when the persistence layer fails. Transient; safe to retry."""

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(message=message, code="STORAGE_ERROR")
        self.operation = operation


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
