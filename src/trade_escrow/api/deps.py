"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the acting identity, services and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Header

from trade_escrow.config import Settings, get_settings
from trade_escrow.domain.exceptions import UnauthorizedActionError
from trade_escrow.domain.parties import Identity
from trade_escrow.infrastructure.database.engine import get_async_session
from trade_escrow.services.escrow_service import EscrowService
from trade_escrow.services.mediation_service import (
    DisputeMediationCoordinator,
    MediationService,
    get_mediation_coordinator,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_current_identity(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> Identity:
    """The acting user, as asserted by the upstream identity provider."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedActionError("Missing X-User-Id header")
    return Identity(id=x_user_id.strip(), email=(x_user_email or "").strip())


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


async def get_escrow_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> EscrowService:
    """Provide an EscrowService bound to the current session."""
    return EscrowService(session, settings)


def get_coordinator() -> DisputeMediationCoordinator:
    """Provide the process-wide mediation coordinator."""
    return get_mediation_coordinator()


async def get_mediation_service(
    session: AsyncSession = Depends(get_db_session),
    escrow_service: EscrowService = Depends(get_escrow_service),
    coordinator: DisputeMediationCoordinator = Depends(get_coordinator),
) -> MediationService:
    """Provide a MediationService bound to the current session."""
    return MediationService(session, coordinator, escrow_service)
