"""EscrowService tests on in-memory SQLite.

Covers creation and its validation, every lifecycle transition, the
compare-and-swap on status, the message log, and party-scoped reads.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trade_escrow.domain.enums import EscrowStatus, EventType, PartyRole
from trade_escrow.domain.exceptions import (
    EscrowValidationError,
    InvalidStateTransitionError,
    NotAPartyError,
    StorageError,
    TransactionNotFoundError,
    UnauthorizedActionError,
)
from trade_escrow.domain.parties import Identity
from trade_escrow.infrastructure.database.orm_models import EscrowTransaction
from trade_escrow.services.escrow_service import EscrowService

S = EscrowStatus


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateTransaction:
    @pytest.mark.asyncio
    async def test_commission_snapshot(self, service, seller) -> None:
        txn = await service.create_transaction(
            creator=seller,
            title="Phone",
            description="Sealed",
            amount=Decimal("100000"),
            partner_email="Buyer@Example.com",
            creator_role=PartyRole.SELLER,
        )
        assert txn.status == "PENDING"
        assert txn.commission == Decimal("5000.00")
        assert txn.partner_email == "buyer@example.com"
        assert txn.partner_id is None
        assert txn.inspection_period_days == 3
        assert txn.currency == "NGN"

    @pytest.mark.asyncio
    async def test_commission_unaffected_by_later_rate_change(
        self, session, settings, seller, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.PENDING)

        cheaper = EscrowService(session, settings.model_copy(update={"commission_rate": Decimal("0.01")}))
        reread = await cheaper.get_transaction(txn.id, buyer)
        assert reread.commission == Decimal("5000.00")
        assert cheaper.describe_for(reread, buyer)["total_due"] == Decimal("105000.00")

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, service, seller, make_transaction) -> None:
        txn = await make_transaction(S.PENDING)
        events = await service.get_events(txn.id, seller)
        assert [e.event_type for e in events] == ["TRANSACTION_CREATED"]
        assert events[0].actor == seller.id

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"amount": Decimal("0")}, "amount"),
            ({"amount": Decimal("-5")}, "amount"),
            ({"title": "   "}, "title"),
            ({"description": ""}, "description"),
            ({"partner_email": "not-an-address"}, "partner_email"),
            ({"partner_email": "SELLER@example.com"}, "partner_email"),
            ({"inspection_period_days": 0}, "inspection_period_days"),
            ({"inspection_period_days": 31}, "inspection_period_days"),
        ],
    )
    @pytest.mark.asyncio
    async def test_validation(self, service, seller, overrides, field) -> None:
        kwargs = {
            "creator": seller,
            "title": "Phone",
            "description": "Sealed",
            "amount": Decimal("100"),
            "partner_email": "buyer@example.com",
            "creator_role": PartyRole.SELLER,
        }
        kwargs.update(overrides)
        with pytest.raises(EscrowValidationError) as exc_info:
            await service.create_transaction(**kwargs)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_change_is_published_after_commit(self, service, seller) -> None:
        with patch(
            "trade_escrow.services.escrow_service.publish_transaction_change",
            new_callable=AsyncMock,
        ) as publish:
            txn = await service.create_transaction(
                creator=seller,
                title="Phone",
                description="Sealed",
                amount=Decimal("10"),
                partner_email="buyer@example.com",
                creator_role=PartyRole.SELLER,
            )
            publish.assert_not_awaited()
            await service.commit()
        publish.assert_awaited_once_with(
            str(txn.id), {"event": "TRANSACTION_CREATED", "status": "PENDING"}
        )

    @pytest.mark.asyncio
    async def test_failed_commit_is_storage_error_and_publishes_nothing(
        self, service, seller
    ) -> None:
        with (
            patch(
                "trade_escrow.services.escrow_service.publish_transaction_change",
                new_callable=AsyncMock,
            ) as publish,
            patch.object(
                AsyncSession,
                "commit",
                new=AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk full"))),
            ),
        ):
            await service.create_transaction(
                creator=seller,
                title="Phone",
                description="Sealed",
                amount=Decimal("10"),
                partner_email="buyer@example.com",
                creator_role=PartyRole.SELLER,
            )
            with pytest.raises(StorageError) as exc_info:
                await service.commit()

        assert exc_info.value.operation == "session.commit"
        publish.assert_not_awaited()
        assert await service.list_transactions(seller) == []

    @pytest.mark.asyncio
    async def test_release_connection_keeps_service_usable(
        self, service, session, seller
    ) -> None:
        txn = await service.create_transaction(
            creator=seller,
            title="Phone",
            description="Sealed",
            amount=Decimal("10"),
            partner_email="buyer@example.com",
            creator_role=PartyRole.SELLER,
        )
        await service.commit()

        await service.get_transaction(txn.id, seller)
        assert session.in_transaction()
        await service.release_connection()
        assert not session.in_transaction()

        again = await service.get_transaction(txn.id, seller)
        assert again.id == txn.id


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, service, seller, buyer, make_transaction) -> None:
        txn = await make_transaction(S.DELIVERED)
        txn = await service.transition(txn.id, buyer, S.COMPLETED)
        assert txn.status == "COMPLETED"

        events = await service.get_events(txn.id, seller)
        assert [e.event_type for e in events] == [
            "TRANSACTION_CREATED",
            "TRANSACTION_ACCEPTED",
            "TRANSACTION_FUNDED",
            "ITEM_SHIPPED",
            "DELIVERY_CONFIRMED",
            "FUNDS_RELEASED",
        ]
        assert events[-1].old_status == "DELIVERED"
        assert events[-1].new_status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_accept_binds_partner_id(self, service, buyer, make_transaction) -> None:
        txn = await make_transaction(S.PENDING)
        txn = await service.transition(txn.id, buyer, S.ACCEPTED)
        assert txn.partner_id == buyer.id

    @pytest.mark.asyncio
    async def test_creator_cannot_accept_own_offer(
        self, service, seller, make_transaction
    ) -> None:
        txn = await make_transaction(S.PENDING)
        with pytest.raises(UnauthorizedActionError):
            await service.transition(txn.id, seller, S.ACCEPTED)
        assert txn.status == "PENDING"

    @pytest.mark.asyncio
    async def test_seller_creator_cannot_fund(self, service, seller, make_transaction) -> None:
        txn = await make_transaction(S.ACCEPTED)
        with pytest.raises(UnauthorizedActionError):
            await service.transition(txn.id, seller, S.FUNDED)
        assert (await service.get_transaction(txn.id, seller)).status == "ACCEPTED"

    @pytest.mark.asyncio
    async def test_buyer_creator_funds(self, service, seller, buyer) -> None:
        # Roles flipped: the buyer opens the transaction
        txn = await service.create_transaction(
            creator=buyer,
            title="Laptop",
            description="Used",
            amount=Decimal("450000"),
            partner_email=seller.email,
            creator_role=PartyRole.BUYER,
        )
        await service.transition(txn.id, seller, S.ACCEPTED)
        txn = await service.transition(txn.id, buyer, S.FUNDED)
        assert txn.status == "FUNDED"

    @pytest.mark.asyncio
    async def test_stranger_rejected(self, service, stranger, make_transaction) -> None:
        txn = await make_transaction(S.PENDING)
        with pytest.raises(NotAPartyError):
            await service.transition(txn.id, stranger, S.CANCELLED)
        assert txn.status == "PENDING"

    @pytest.mark.asyncio
    async def test_unreachable_target(self, service, buyer, make_transaction) -> None:
        txn = await make_transaction(S.PENDING)
        with pytest.raises(InvalidStateTransitionError):
            await service.transition(txn.id, buyer, S.SHIPPED)
        assert txn.status == "PENDING"

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, service, buyer) -> None:
        with pytest.raises(TransactionNotFoundError):
            await service.transition(uuid.uuid4(), buyer, S.ACCEPTED)

    @pytest.mark.asyncio
    async def test_stale_expected_status_applies_once(
        self, service, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.PENDING)
        await service.transition(txn.id, buyer, S.ACCEPTED, expected_status=S.PENDING)
        with pytest.raises(InvalidStateTransitionError):
            await service.transition(txn.id, buyer, S.ACCEPTED, expected_status=S.PENDING)

        events = await service.get_events(txn.id, buyer)
        accepted = [e for e in events if e.event_type == EventType.TRANSACTION_ACCEPTED]
        assert len(accepted) == 1

    @pytest.mark.asyncio
    async def test_concurrent_change_loses_compare_and_swap(
        self, session, service, seller, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.PENDING)

        # The other party cancels behind this session's back; the loaded
        # object still says PENDING.
        await session.execute(
            update(EscrowTransaction)
            .where(EscrowTransaction.id == txn.id)
            .values(status="CANCELLED")
            .execution_options(synchronize_session=False)
        )
        assert txn.status == "PENDING"

        with pytest.raises(InvalidStateTransitionError, match="changed concurrently"):
            await service.transition(txn.id, buyer, S.ACCEPTED)

        await session.refresh(txn)
        assert txn.status == "CANCELLED"
        assert txn.partner_id is None

    @pytest.mark.asyncio
    async def test_either_party_cancels_while_pending(
        self, service, seller, buyer, make_transaction
    ) -> None:
        first = await make_transaction(S.PENDING)
        second = await make_transaction(S.PENDING)
        assert (await service.transition(first.id, seller, S.CANCELLED)).status == "CANCELLED"
        assert (await service.transition(second.id, buyer, S.CANCELLED)).status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, service, buyer, make_transaction) -> None:
        txn = await make_transaction(S.PENDING)
        await service.transition(txn.id, buyer, S.CANCELLED)
        with pytest.raises(InvalidStateTransitionError):
            await service.transition(txn.id, buyer, S.ACCEPTED)


class TestDeliveryVariant:
    @pytest.mark.asyncio
    async def test_shipped_completes_directly_when_delivery_step_off(
        self, session, settings, seller, buyer
    ) -> None:
        svc = EscrowService(
            session,
            settings.model_copy(update={"escrow_require_delivery_confirmation": False}),
        )
        txn = await svc.create_transaction(
            creator=seller,
            title="Phone",
            description="Sealed",
            amount=Decimal("100"),
            partner_email="buyer@example.com",
            creator_role=PartyRole.SELLER,
        )
        await svc.transition(txn.id, buyer, S.ACCEPTED)
        await svc.transition(txn.id, buyer, S.FUNDED)
        await svc.transition(txn.id, seller, S.SHIPPED)

        status = await svc.get_status(txn.id, buyer)
        assert "DELIVERED" not in status["allowed_targets"]
        assert "COMPLETED" in status["allowed_targets"]

        txn = await svc.transition(txn.id, buyer, S.COMPLETED)
        assert txn.status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_shipped_cannot_skip_delivery_when_required(
        self, service, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.SHIPPED)
        with pytest.raises(InvalidStateTransitionError):
            await service.transition(txn.id, buyer, S.COMPLETED)


class TestDisputes:
    @pytest.mark.asyncio
    async def test_dispute_records_reason(self, service, seller, make_transaction) -> None:
        txn = await make_transaction(S.DISPUTED)
        assert txn.status == "DISPUTED"
        assert txn.dispute_reason == "Item arrived damaged"

        events = await service.get_events(txn.id, seller)
        assert events[-1].event_type == "DISPUTE_RAISED"
        assert events[-1].metadata_json["reason"] == "Item arrived damaged"

    @pytest.mark.asyncio
    async def test_dispute_needs_reason(self, service, seller, make_transaction) -> None:
        txn = await make_transaction(S.FUNDED)
        with pytest.raises(EscrowValidationError):
            await service.transition(txn.id, seller, S.DISPUTED, reason="  ")
        assert txn.status == "FUNDED"

    @pytest.mark.asyncio
    async def test_cannot_dispute_before_funding(
        self, service, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.ACCEPTED)
        with pytest.raises(InvalidStateTransitionError):
            await service.transition(txn.id, buyer, S.DISPUTED, reason="changed my mind")

    @pytest.mark.asyncio
    async def test_buyer_concedes_to_seller(self, service, buyer, make_transaction) -> None:
        txn = await make_transaction(S.DISPUTED)
        txn = await service.transition(txn.id, buyer, S.COMPLETED)
        assert txn.status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_seller_refunds_buyer(self, service, seller, make_transaction) -> None:
        txn = await make_transaction(S.DISPUTED)
        txn = await service.transition(txn.id, seller, S.CANCELLED)
        assert txn.status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_nobody_resolves_in_their_own_favour(
        self, service, seller, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.DISPUTED)
        with pytest.raises(UnauthorizedActionError):
            await service.transition(txn.id, seller, S.COMPLETED)
        with pytest.raises(UnauthorizedActionError):
            await service.transition(txn.id, buyer, S.CANCELLED)
        assert txn.status == "DISPUTED"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestMessages:
    @pytest.mark.asyncio
    async def test_order_is_preserved_across_parties(
        self, service, seller, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.FUNDED)
        m1 = await service.append_message(txn.id, buyer, "When will it ship?")
        m2 = await service.append_message(txn.id, seller, "Tomorrow morning")

        messages = await service.get_messages(txn.id, buyer)
        assert [m.id for m in messages] == [m1.id, m2.id]
        assert messages[0].sender_id == buyer.id

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, service, buyer, make_transaction, text) -> None:
        txn = await make_transaction(S.PENDING)
        with pytest.raises(EscrowValidationError):
            await service.append_message(txn.id, buyer, text)
        assert await service.get_messages(txn.id, buyer) == []

    @pytest.mark.asyncio
    async def test_stranger_cannot_post_or_read(
        self, service, stranger, make_transaction
    ) -> None:
        txn = await make_transaction(S.PENDING)
        with pytest.raises(NotAPartyError):
            await service.append_message(txn.id, stranger, "hello")
        with pytest.raises(NotAPartyError):
            await service.get_messages(txn.id, stranger)

    @pytest.mark.asyncio
    async def test_message_does_not_change_status(
        self, service, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.SHIPPED)
        await service.append_message(txn.id, buyer, "Got a tracking number?")
        events = await service.get_events(txn.id, buyer)
        assert events[-1].event_type == "MESSAGE_POSTED"
        assert events[-1].old_status == events[-1].new_status == "SHIPPED"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    @pytest.mark.asyncio
    async def test_list_scoped_to_identity(
        self, service, seller, buyer, stranger, make_transaction
    ) -> None:
        first = await make_transaction(S.PENDING)
        second = await make_transaction(S.ACCEPTED)

        assert {t.id for t in await service.list_transactions(seller)} == {first.id, second.id}
        assert {t.id for t in await service.list_transactions(buyer)} == {first.id, second.id}
        assert await service.list_transactions(stranger) == []

    @pytest.mark.asyncio
    async def test_bound_partner_found_by_id_after_email_change(
        self, service, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.ACCEPTED)
        renamed = Identity(id=buyer.id, email="new-address@example.com")
        assert [t.id for t in await service.list_transactions(renamed)] == [txn.id]

        other_account = Identity(id="user-other", email=buyer.email)
        assert await service.list_transactions(other_account) == []

    @pytest.mark.asyncio
    async def test_partner_email_does_not_admit_another_id_after_acceptance(
        self, service, make_transaction
    ) -> None:
        txn = await make_transaction(S.ACCEPTED)
        impostor = Identity(id="user-other", email="buyer@example.com")

        with pytest.raises(NotAPartyError):
            await service.transition(txn.id, impostor, S.FUNDED)
        with pytest.raises(NotAPartyError):
            await service.append_message(txn.id, impostor, "I am the buyer")

        refreshed = await service.get_transaction(txn.id, Identity(id="user-buyer", email=""))
        assert refreshed.status == S.ACCEPTED.value
        assert refreshed.partner_id == "user-buyer"

    @pytest.mark.asyncio
    async def test_status_lists_allowed_targets_for_viewer(
        self, service, seller, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.PENDING)

        as_buyer = await service.get_status(txn.id, buyer)
        assert as_buyer["relation"] == "PARTNER"
        assert as_buyer["role"] == "BUYER"
        assert set(as_buyer["allowed_targets"]) == {"ACCEPTED", "CANCELLED"}

        as_seller = await service.get_status(txn.id, seller)
        assert as_seller["relation"] == "CREATOR"
        assert as_seller["allowed_targets"] == ["CANCELLED"]
        assert as_seller["is_terminal"] is False

    @pytest.mark.asyncio
    async def test_card_view(self, service, seller, buyer, make_transaction) -> None:
        txn = await make_transaction(S.PENDING)

        creator_card = service.describe_for(txn, seller)
        assert creator_card["counterparty"] == "With: buyer@example.com"
        assert creator_card["viewer_role"] == "SELLER"
        assert creator_card["total_due"] == Decimal("105000.00")

        partner_card = service.describe_for(txn, buyer)
        assert partner_card["counterparty"] == "From: Creator"
        assert partner_card["viewer_role"] == "BUYER"

    @pytest.mark.asyncio
    async def test_dispute_brief_labels_speakers(
        self, service, seller, buyer, make_transaction
    ) -> None:
        txn = await make_transaction(S.DISPUTED)
        await service.append_message(txn.id, buyer, "Screen is cracked")
        await service.append_message(txn.id, seller, "It left here intact")

        brief = await service.build_dispute_brief(txn)
        assert brief.status == "DISPUTED"
        assert brief.dispute_reason == "Item arrived damaged"
        assert brief.render_conversation() == (
            "Partner: Screen is cracked\nCreator: It left here intact"
        )
