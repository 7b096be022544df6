#!/usr/bin/env python3
"""Trade Escrow — End-to-End Simulation.

Simulates three scenarios with a SellerBot and a BuyerBot trading a phone:

    Scenario 1: Happy Path
        - Seller opens a transaction and invites the buyer by email
        - Buyer accepts, funds, seller ships, buyer confirms and releases funds

    Scenario 2: Dispute and Mediation
        - Buyer receives a damaged item and opens a dispute
        - Both parties argue in the chat, buyer requests AI mediation
        - Status stays DISPUTED; the seller concedes and refunds the buyer

    Scenario 3: Guards and Races
        - Seller tries to accept their own offer -> rejected
        - A retried request carrying a stale expected status is refused
        - Seller cannot fund; nobody cancels after acceptance
        - Buyer cancels a fresh offer before anything is paid

Usage:
    # Option A: Against the database in DATABASE_URL (PostgreSQL by default):
    uv run python simulation.py

    # Option B: SQLite in-memory, nothing to install:
    uv run python simulation.py --sqlite

    # Option C: Dry-run (canned mediator, no LLM calls):
    uv run python simulation.py --sqlite --dry-run

    # Run a specific scenario:
    uv run python simulation.py --sqlite --dry-run --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from trade_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from trade_escrow.domain.enums import EscrowStatus, PartyRole  # noqa: E402
from trade_escrow.domain.exceptions import EscrowError  # noqa: E402
from trade_escrow.domain.parties import Identity  # noqa: E402

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_dry_run = False


def set_dry_run(enabled: bool) -> None:
    """Enable or disable dry-run mode (canned mediator, no API calls)."""
    global _dry_run
    _dry_run = enabled


class CannedMediator:
    """Stand-in analyst for dry runs."""

    async def analyze(self, brief: Any) -> str:
        await asyncio.sleep(0.1)
        return (
            f"Summary: the parties disagree about '{brief.title}'. "
            f"The buyer reports: {brief.dispute_reason}. "
            "Suggestion: the seller should offer a refund or replacement; "
            "the buyer should return the item in its received condition."
        )


def _build_coordinator():
    from trade_escrow.infrastructure.mediation_store import InMemoryMediationStore
    from trade_escrow.services.mediation_service import DisputeMediationCoordinator

    if _dry_run:
        analyst = CannedMediator()
    else:
        from trade_escrow.analysis.mediator import LiteLLMDisputeMediator

        analyst = LiteLLMDisputeMediator()
    return DisputeMediationCoordinator(analyst=analyst, store=InMemoryMediationStore())


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False):
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from trade_escrow.infrastructure.database.engine import (
            build_engine,
            build_session_factory,
        )
        from trade_escrow.infrastructure.database.orm_models import Base

        _sqlite_engine = build_engine("sqlite+aiosqlite:///:memory:")
        _sqlite_session_factory = build_session_factory(_sqlite_engine)
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from trade_escrow.infrastructure.database.engine import init_db
        await init_db()


async def get_session():
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from trade_escrow.infrastructure.database.engine import _get_session_factory
    factory = _get_session_factory()
    return factory()


async def shutdown_database():
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from trade_escrow.infrastructure.database.engine import close_db
        await close_db()


# ---------------------------------------------------------------------------
# Bot Traders
# ---------------------------------------------------------------------------
@dataclass
class TraderBot:
    """Simulated user acting on transactions through the service layer."""

    name: str
    email: str
    user_id: str = field(default_factory=lambda: f"user-{uuid.uuid4().hex[:8]}")
    icon: str = "🔵"

    @property
    def identity(self) -> Identity:
        return Identity(id=self.user_id, email=self.email)

    async def open_transaction(
        self,
        session: Any,
        partner: TraderBot,
        role: PartyRole,
        title: str,
        description: str,
        amount: Decimal,
    ) -> str:
        """Open a transaction inviting ``partner``. Returns transaction_id."""
        from trade_escrow.services.escrow_service import EscrowService

        svc = EscrowService(session)
        transaction = await svc.create_transaction(
            creator=self.identity,
            title=title,
            description=description,
            amount=amount,
            partner_email=partner.email,
            creator_role=role,
        )
        await svc.commit()
        logger.info(
            f"{self.icon} {self.name}: Transaction opened",
            transaction_id=str(transaction.id),
            amount=str(transaction.amount),
            commission=str(transaction.commission),
        )
        return str(transaction.id)

    async def move(
        self,
        session: Any,
        transaction_id: str,
        target: EscrowStatus,
        expected: EscrowStatus | None = None,
        reason: str | None = None,
    ) -> bool:
        """Attempt a transition. Returns False (and logs why) if rejected."""
        from trade_escrow.services.escrow_service import EscrowService

        svc = EscrowService(session)
        try:
            await svc.transition(
                uuid.UUID(transaction_id),
                self.identity,
                target,
                expected_status=expected,
                reason=reason,
            )
        except EscrowError as exc:
            await session.rollback()
            logger.info(
                f"{self.icon} {self.name}: {target.value} rejected ❌",
                code=exc.code,
                reason=exc.message,
            )
            return False
        await svc.commit()
        logger.info(f"{self.icon} {self.name}: -> {target.value} ✅", transaction_id=transaction_id)
        return True

    async def say(self, session: Any, transaction_id: str, text: str) -> None:
        from trade_escrow.services.escrow_service import EscrowService

        svc = EscrowService(session)
        await svc.append_message(uuid.UUID(transaction_id), self.identity, text)
        await svc.commit()
        print(f"  {self.icon} {self.name}: {text}")

    async def check_status(self, session: Any, transaction_id: str) -> dict:
        """Check the current status and what this trader may do next."""
        from trade_escrow.services.escrow_service import EscrowService

        svc = EscrowService(session)
        status = await svc.get_status(uuid.UUID(transaction_id), self.identity)
        logger.info(
            f"{self.icon} {self.name}: Status check",
            status=status["status"],
            role=status["role"],
            can_move_to=status["allowed_targets"],
        )
        return status


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_audit_trail(session: Any, transaction_id: str, viewer: TraderBot) -> None:
    """Print the full audit trail for a transaction."""
    from trade_escrow.services.escrow_service import EscrowService

    svc = EscrowService(session)
    events = await svc.get_events(uuid.UUID(transaction_id), viewer.identity)
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "—"
        print(f"    {i}. [{evt.event_type}] {old} → {evt.new_status} (by {evt.actor})")
    print()


def _traders() -> tuple[TraderBot, TraderBot]:
    seller = TraderBot(name="SELLER", email="ada@shop.example", icon="🟢")
    buyer = TraderBot(name="BUYER", email="Bola@Mail.example", icon="🔵")
    return seller, buyer


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    """Seller opens, buyer accepts and pays, seller ships, buyer releases."""
    banner("SCENARIO 1: Happy Path — Phone Sale")

    seller, buyer = _traders()

    session = await get_session()
    async with session:
        section("Step 1: Seller opens the transaction")
        tid = await seller.open_transaction(
            session,
            partner=buyer,
            role=PartyRole.SELLER,
            title="iPhone 14 Pro, 256GB",
            description="Sealed box, shipped within 2 days of funding.",
            amount=Decimal("100000"),
        )

        section("Step 2: Buyer accepts and funds")
        await buyer.move(session, tid, EscrowStatus.ACCEPTED)
        await buyer.move(session, tid, EscrowStatus.FUNDED)

        section("Step 3: Seller ships")
        await seller.move(session, tid, EscrowStatus.SHIPPED)

        section("Step 4: Buyer confirms delivery and releases funds")
        status = await buyer.check_status(session, tid)
        if EscrowStatus.DELIVERED.value in status["allowed_targets"]:
            await buyer.move(session, tid, EscrowStatus.DELIVERED)
        await buyer.move(session, tid, EscrowStatus.COMPLETED)

        section("Final status")
        final = await seller.check_status(session, tid)
        assert final["status"] == "COMPLETED", f"Expected COMPLETED, got {final['status']}"
        await print_audit_trail(session, tid, seller)


# ===========================================================================
# Scenario 2: Dispute and Mediation
# ===========================================================================
async def scenario_2_dispute_and_mediation() -> None:
    """Damaged item -> dispute -> AI mediation -> seller refunds."""
    banner("SCENARIO 2: Dispute and Mediation — Cracked Screen")

    from trade_escrow.services.mediation_service import MediationService

    seller, buyer = _traders()
    coordinator = _build_coordinator()

    session = await get_session()
    async with session:
        section("Step 1: Setup (Open -> Accept -> Fund -> Ship)")
        tid = await buyer.open_transaction(
            session,
            partner=seller,
            role=PartyRole.BUYER,
            title="Used MacBook Air M1",
            description="Good condition, no scratches on the screen.",
            amount=Decimal("450000"),
        )
        await seller.move(session, tid, EscrowStatus.ACCEPTED)
        await buyer.move(session, tid, EscrowStatus.FUNDED)
        await seller.move(session, tid, EscrowStatus.SHIPPED)

        section("Step 2: Buyer opens a dispute")
        await buyer.move(
            session, tid, EscrowStatus.DISPUTED, reason="Screen arrived cracked"
        )

        section("Step 3: The parties argue")
        await buyer.say(session, tid, "The screen has a crack across the top corner.")
        await seller.say(session, tid, "It was fine when I packed it. The courier must have dropped it.")
        await buyer.say(session, tid, "I have photos of the box, it was not damaged.")

        section("Step 4: Buyer requests mediation")
        mediation = MediationService(session, coordinator)
        state = await mediation.request_mediation(uuid.UUID(tid), buyer.identity)
        await mediation.commit()
        print(f"  🤖 Mediator ({state.phase.value}):\n     {state.text}\n")

        status = await buyer.check_status(session, tid)
        assert status["status"] == "DISPUTED", "Mediation must not change the status"

        section("Step 5: Seller concedes and refunds the buyer")
        await seller.move(session, tid, EscrowStatus.CANCELLED)

        await print_audit_trail(session, tid, buyer)


# ===========================================================================
# Scenario 3: Guards and Races
# ===========================================================================
async def scenario_3_guards_and_races() -> None:
    """Self-acceptance, wrong-role funding, a stale retry, and a cancel."""
    banner("SCENARIO 3: Guards and Races")

    seller, buyer = _traders()
    stranger = TraderBot(name="STRANGER", email="eve@else.example", icon="⚫")

    session = await get_session()
    async with session:
        tid = await seller.open_transaction(
            session,
            partner=buyer,
            role=PartyRole.SELLER,
            title="PS5 Digital Edition",
            description="Brand new, pickup in Lekki.",
            amount=Decimal("380000"),
        )

        section("Attempt 1: Seller accepts their own offer")
        assert not await seller.move(session, tid, EscrowStatus.ACCEPTED)

        section("Attempt 2: A stranger tries to accept")
        assert not await stranger.move(session, tid, EscrowStatus.ACCEPTED)

        section("Attempt 3: Buyer accepts twice with the same expected status")
        assert await buyer.move(session, tid, EscrowStatus.ACCEPTED, expected=EscrowStatus.PENDING)
        assert not await buyer.move(
            session, tid, EscrowStatus.ACCEPTED, expected=EscrowStatus.PENDING
        )

        section("Attempt 4: Seller tries to fund")
        assert not await seller.move(session, tid, EscrowStatus.FUNDED)

        section("Attempt 5: Cancelling after acceptance")
        assert not await buyer.move(session, tid, EscrowStatus.CANCELLED)

        final = await buyer.check_status(session, tid)
        print(f"\n  🛡️  Transaction final status: {final['status']}")
        await print_audit_trail(session, tid, buyer)

        section("A fresh offer the buyer cancels")
        tid2 = await seller.open_transaction(
            session,
            partner=buyer,
            role=PartyRole.SELLER,
            title="Xbox Series S",
            description="Used, with one controller.",
            amount=Decimal("250000"),
        )
        assert await buyer.move(session, tid2, EscrowStatus.CANCELLED)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute_and_mediation,
    3: scenario_3_guards_and_races,
}


async def run_all(use_sqlite: bool = False, dry_run: bool = False) -> None:
    """Run all scenarios sequentially."""
    set_dry_run(dry_run)
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "🚀" * 35)
        print("  TRADE ESCROW — SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "PostgreSQL"
        mode = "DRY-RUN (canned mediator)" if dry_run else "LIVE (real LLM)"
        print(f"  Database: {db_type}")
        print(f"  Mode: {mode}")
        print("🚀" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(num: int, use_sqlite: bool = False, dry_run: bool = False) -> None:
    """Run a specific scenario."""
    set_dry_run(dry_run)
    await init_database(use_sqlite=use_sqlite)

    try:
        if num not in SCENARIOS:
            print(f"Unknown scenario {num}. Available: 1, 2, 3")
            return
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trade Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of DATABASE_URL.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use a canned mediator instead of calling the LLM.",
    )
    args = parser.parse_args()

    if args.scenario:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite, dry_run=args.dry_run))
    else:
        asyncio.run(run_all(use_sqlite=args.sqlite, dry_run=args.dry_run))
