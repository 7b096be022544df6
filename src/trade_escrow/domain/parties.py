"""Party Resolver — the single place that decides who an identity is on a record.

Every authorization check (transitions, messages, mediation) goes through
resolve_party(); no caller derives "is this the buyer?" inline.

    relation = CREATOR  if identity.id == record.creator_id
    relation = PARTNER  if identity.id == record.partner_id once accepted,
                        otherwise if identity.email matches record.partner_email
                        (case-insensitive)
    otherwise           NotAPartyError

    role = creator_role             for the CREATOR
    role = complement(creator_role) for the PARTNER
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from trade_escrow.domain.enums import PartyRelation, PartyRole
from trade_escrow.domain.exceptions import NotAPartyError


@dataclass(frozen=True)
class Identity:
    """The acting user, as supplied by the identity collaborator."""

    id: str
    email: str

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)


@dataclass(frozen=True)
class PartyResolution:
    """Result of resolving an identity against a transaction."""

    relation: PartyRelation
    role: PartyRole

    @property
    def is_creator(self) -> bool:
        return self.relation is PartyRelation.CREATOR

    @property
    def is_buyer(self) -> bool:
        return self.role is PartyRole.BUYER


class PartyRecord(Protocol):
    """The fields of a transaction the resolver needs."""

    id: object
    creator_id: str
    creator_role: str
    partner_email: str
    partner_id: str | None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def resolve_party(record: PartyRecord, identity: Identity) -> PartyResolution:
    """Resolve the relation and effective role of ``identity`` on ``record``.

    Has no side effects.

    Raises:
        NotAPartyError: If the identity is neither the creator nor the partner.
    """
    creator_role = PartyRole(record.creator_role)

    if identity.id == record.creator_id:
        return PartyResolution(relation=PartyRelation.CREATOR, role=creator_role)

    if record.partner_id is not None:
        is_partner = identity.id == record.partner_id
    else:
        is_partner = bool(identity.email) and (
            identity.normalized_email == normalize_email(record.partner_email)
        )
    if is_partner:
        return PartyResolution(relation=PartyRelation.PARTNER, role=creator_role.complement)

    raise NotAPartyError(str(record.id), identity.id)
