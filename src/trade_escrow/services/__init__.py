"""Application services — use case orchestration."""

from trade_escrow.services.escrow_service import EscrowService
from trade_escrow.services.mediation_service import (
    DisputeMediationCoordinator,
    MediationService,
    get_mediation_coordinator,
)

__all__ = [
    "DisputeMediationCoordinator",
    "EscrowService",
    "MediationService",
    "get_mediation_coordinator",
]
