"""Shared test fixtures for the Trade Escrow test suite.

Provides:
    - In-memory SQLite sessions (aiosqlite, one shared connection)
    - Settings isolated from the developer's .env
    - Identities for the two parties and a stranger
    - Factory helpers for creating transactions in a given state
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio

from trade_escrow.config import Settings
from trade_escrow.domain.enums import EscrowStatus, PartyRole
from trade_escrow.domain.parties import Identity
from trade_escrow.infrastructure.database.engine import build_engine, build_session_factory
from trade_escrow.infrastructure.database.orm_models import Base
from trade_escrow.services.escrow_service import EscrowService

# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def seller() -> Identity:
    return Identity(id="user-seller", email="seller@example.com")


@pytest.fixture
def buyer() -> Identity:
    # Mixed case on purpose: partner matching is case-insensitive
    return Identity(id="user-buyer", email="Buyer@Example.com")


@pytest.fixture
def stranger() -> Identity:
    return Identity(id="user-stranger", email="stranger@example.com")


@pytest.fixture
def sample_transaction_id() -> uuid.UUID:
    """Return a deterministic UUID for testing."""
    return uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        commission_rate=Decimal("0.05"),
        escrow_require_delivery_confirmation=True,
    )


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(session, settings) -> EscrowService:
    return EscrowService(session, settings)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

# Steps from PENDING to each status, as (actor, target, reason)
_PATHS: dict[EscrowStatus, list[tuple[str, EscrowStatus, str | None]]] = {
    EscrowStatus.PENDING: [],
    EscrowStatus.ACCEPTED: [("buyer", EscrowStatus.ACCEPTED, None)],
    EscrowStatus.FUNDED: [
        ("buyer", EscrowStatus.ACCEPTED, None),
        ("buyer", EscrowStatus.FUNDED, None),
    ],
    EscrowStatus.SHIPPED: [
        ("buyer", EscrowStatus.ACCEPTED, None),
        ("buyer", EscrowStatus.FUNDED, None),
        ("seller", EscrowStatus.SHIPPED, None),
    ],
    EscrowStatus.DELIVERED: [
        ("buyer", EscrowStatus.ACCEPTED, None),
        ("buyer", EscrowStatus.FUNDED, None),
        ("seller", EscrowStatus.SHIPPED, None),
        ("buyer", EscrowStatus.DELIVERED, None),
    ],
    EscrowStatus.DISPUTED: [
        ("buyer", EscrowStatus.ACCEPTED, None),
        ("buyer", EscrowStatus.FUNDED, None),
        ("seller", EscrowStatus.SHIPPED, None),
        ("buyer", EscrowStatus.DISPUTED, "Item arrived damaged"),
    ],
}


@pytest.fixture
def make_transaction(service, seller, buyer):
    """Create a seller-opened transaction and walk it to ``status``."""

    async def _make(
        status: EscrowStatus = EscrowStatus.PENDING,
        amount: Decimal = Decimal("100000"),
    ):
        transaction = await service.create_transaction(
            creator=seller,
            title="iPhone 14 Pro",
            description="Sealed box, shipped within 2 days of funding",
            amount=amount,
            partner_email="buyer@example.com",
            creator_role=PartyRole.SELLER,
        )
        actors = {"seller": seller, "buyer": buyer}
        for actor, target, reason in _PATHS[status]:
            transaction = await service.transition(
                transaction.id, actors[actor], target, reason=reason
            )
        return transaction

    return _make
