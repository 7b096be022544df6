"""Escrow Transaction State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or an MCP client asks for, an illegal transition
(e.g., PENDING -> SHIPPED) raises before anything is written.

The guard answers "may this status move to that status?". The actor table
below answers "may this party do it?". plan_transition() applies both.

Transition table (actor is the effective role from the Party Resolver):
    PENDING    -> ACCEPTED   accept              partner only (never the creator)
    PENDING    -> CANCELLED  cancel              either party
    ACCEPTED   -> FUNDED     fund                buyer
    FUNDED     -> SHIPPED    ship                seller
    SHIPPED    -> DELIVERED  confirm_delivery    buyer   (delivery step enabled)
    DELIVERED  -> COMPLETED  release_funds       buyer
    SHIPPED    -> COMPLETED  release_funds       buyer   (delivery step disabled)
    FUNDED     -> DISPUTED   open_dispute        either party
    SHIPPED    -> DISPUTED   open_dispute        either party
    DELIVERED  -> DISPUTED   open_dispute        either party
    DISPUTED   -> COMPLETED  concede_to_seller   buyer   (buyer gives up the claim)
    DISPUTED   -> CANCELLED  concede_to_buyer    seller  (seller refunds the buyer)
"""

from __future__ import annotations

import enum

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from trade_escrow.domain.enums import EscrowStatus, EventType, PartyRelation, PartyRole
from trade_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    UnauthorizedActionError,
)
from trade_escrow.domain.parties import PartyResolution


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow transaction lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="ACCEPTED")
        sm.fund()            # transitions to FUNDED
        sm.status            # "FUNDED"
    """

    # --- States ---
    PENDING = State("PENDING", initial=True)
    ACCEPTED = State("ACCEPTED")
    FUNDED = State("FUNDED")
    SHIPPED = State("SHIPPED")
    DELIVERED = State("DELIVERED")
    COMPLETED = State("COMPLETED", final=True)
    DISPUTED = State("DISPUTED")
    CANCELLED = State("CANCELLED", final=True)

    # --- Events / Transitions ---

    # Agreement
    accept = PENDING.to(ACCEPTED)
    cancel = PENDING.to(CANCELLED)

    # Funding and fulfilment
    fund = ACCEPTED.to(FUNDED)
    ship = FUNDED.to(SHIPPED)
    confirm_delivery = SHIPPED.to(DELIVERED, cond="delivery_step_enabled")
    release_funds = DELIVERED.to(COMPLETED) | SHIPPED.to(
        COMPLETED, unless="delivery_step_enabled"
    )

    # Disputes
    open_dispute = FUNDED.to(DISPUTED) | SHIPPED.to(DISPUTED) | DELIVERED.to(DISPUTED)
    concede_to_seller = DISPUTED.to(COMPLETED)
    concede_to_buyer = DISPUTED.to(CANCELLED)

    def __init__(
        self,
        current_status: str = "PENDING",
        require_delivery: bool = True,
    ) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "FUNDED").
            require_delivery: When False, SHIPPED goes straight to COMPLETED and
                DELIVERED is unreachable.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        self._require_delivery = require_delivery
        super().__init__(start_value=current_status)

    def delivery_step_enabled(self) -> bool:
        return self._require_delivery

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus enum)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return the ids of the events that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class ActorRequirement(enum.StrEnum):
    """Who may fire an event, in terms of the resolved party."""

    EITHER_PARTY = "EITHER_PARTY"
    PARTNER = "PARTNER"
    BUYER = "BUYER"
    SELLER = "SELLER"

    def permits(self, party: PartyResolution) -> bool:
        if self is ActorRequirement.EITHER_PARTY:
            return True
        if self is ActorRequirement.PARTNER:
            return party.relation is PartyRelation.PARTNER
        return party.role is PartyRole(self.value)


S = EscrowStatus

TRANSITION_EVENTS: dict[tuple[EscrowStatus, EscrowStatus], str] = {
    (S.PENDING, S.ACCEPTED): "accept",
    (S.PENDING, S.CANCELLED): "cancel",
    (S.ACCEPTED, S.FUNDED): "fund",
    (S.FUNDED, S.SHIPPED): "ship",
    (S.SHIPPED, S.DELIVERED): "confirm_delivery",
    (S.DELIVERED, S.COMPLETED): "release_funds",
    (S.SHIPPED, S.COMPLETED): "release_funds",
    (S.FUNDED, S.DISPUTED): "open_dispute",
    (S.SHIPPED, S.DISPUTED): "open_dispute",
    (S.DELIVERED, S.DISPUTED): "open_dispute",
    (S.DISPUTED, S.COMPLETED): "concede_to_seller",
    (S.DISPUTED, S.CANCELLED): "concede_to_buyer",
}

EVENT_ACTORS: dict[str, ActorRequirement] = {
    "accept": ActorRequirement.PARTNER,
    "cancel": ActorRequirement.EITHER_PARTY,
    "fund": ActorRequirement.BUYER,
    "ship": ActorRequirement.SELLER,
    "confirm_delivery": ActorRequirement.BUYER,
    "release_funds": ActorRequirement.BUYER,
    "open_dispute": ActorRequirement.EITHER_PARTY,
    "concede_to_seller": ActorRequirement.BUYER,
    "concede_to_buyer": ActorRequirement.SELLER,
}

EVENT_AUDIT_TYPES: dict[str, EventType] = {
    "accept": EventType.TRANSACTION_ACCEPTED,
    "cancel": EventType.TRANSACTION_CANCELLED,
    "fund": EventType.TRANSACTION_FUNDED,
    "ship": EventType.ITEM_SHIPPED,
    "confirm_delivery": EventType.DELIVERY_CONFIRMED,
    "release_funds": EventType.FUNDS_RELEASED,
    "open_dispute": EventType.DISPUTE_RAISED,
    "concede_to_seller": EventType.DISPUTE_CONCEDED_TO_SELLER,
    "concede_to_buyer": EventType.DISPUTE_CONCEDED_TO_BUYER,
}

del S


def validate_transition(
    current_status: str,
    event_name: str,
    require_delivery: bool = True,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns the
    resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status, require_delivery=require_delivery)

    event_method = getattr(sm, event_name, None)
    if event_name not in EVENT_ACTORS or event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


def plan_transition(
    current: EscrowStatus,
    target: EscrowStatus,
    party: PartyResolution,
    require_delivery: bool = True,
) -> str:
    """Check that ``party`` may move a record from ``current`` to ``target``.

    Returns the event name to record. Does not mutate anything.

    Raises:
        InvalidStateTransitionError: The pair is not in the table, or the guard
            rejects it for the configured delivery variant.
        UnauthorizedActionError: The party's relation or role does not match.
    """
    event_name = TRANSITION_EVENTS.get((current, target))
    if event_name is None:
        raise InvalidStateTransitionError(current.value, target.value)

    try:
        new_status = validate_transition(current.value, event_name, require_delivery)
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current.value, target.value) from err
    if new_status != target.value:
        raise InvalidStateTransitionError(current.value, target.value)

    requirement = EVENT_ACTORS[event_name]
    if not requirement.permits(party):
        raise UnauthorizedActionError(
            f"{party.relation.value}/{party.role.value} may not {event_name} "
            f"({current.value} -> {target.value}); requires {requirement.value}",
        )
    return event_name


def allowed_targets(
    current: EscrowStatus,
    party: PartyResolution,
    require_delivery: bool = True,
) -> list[EscrowStatus]:
    """List the statuses ``party`` could move the record to right now."""
    targets = []
    for (source, target), _event in TRANSITION_EVENTS.items():
        if source is not current:
            continue
        try:
            plan_transition(current, target, party, require_delivery)
        except (InvalidStateTransitionError, UnauthorizedActionError):
            continue
        targets.append(target)
    return targets
