"""Tests for domain enumerations."""

from __future__ import annotations

from trade_escrow.domain.enums import (
    EscrowStatus,
    EventType,
    MediationPhase,
    PartyRelation,
    PartyRole,
)


class TestEscrowStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "PENDING", "ACCEPTED", "FUNDED", "SHIPPED",
            "DELIVERED", "COMPLETED", "DISPUTED", "CANCELLED",
        }
        actual = {s.value for s in EscrowStatus}
        assert actual == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(EscrowStatus.PENDING, str)
        assert EscrowStatus.PENDING == "PENDING"

    def test_terminal_statuses(self) -> None:
        terminal = {s for s in EscrowStatus if s.is_terminal}
        assert terminal == {EscrowStatus.COMPLETED, EscrowStatus.CANCELLED}


class TestPartyRole:
    def test_complement_is_an_involution(self) -> None:
        assert PartyRole.BUYER.complement is PartyRole.SELLER
        assert PartyRole.SELLER.complement is PartyRole.BUYER
        for role in PartyRole:
            assert role.complement.complement is role

    def test_relations(self) -> None:
        assert {r.value for r in PartyRelation} == {"CREATOR", "PARTNER"}


class TestEventType:
    def test_all_event_types_exist(self) -> None:
        # 7 lifecycle + 3 dispute + 1 message + 3 mediation
        assert len(EventType) == 14

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.TRANSACTION_CREATED, str)


class TestMediationPhase:
    def test_phases(self) -> None:
        assert [p.value for p in MediationPhase] == ["IDLE", "ANALYZING", "READY", "FAILED"]
