"""Quick advice assistant route.

A thin convenience endpoint; unlike mediation it is not tied to a
transaction and never fails the request when the LLM is down.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trade_escrow.analysis.advisor import QuickAdvisor
from trade_escrow.api.deps import get_current_identity
from trade_escrow.domain.parties import Identity
from trade_escrow.logging_config import get_logger
from trade_escrow.schemas.escrow import AdviceRequest, AdviceResponse

router = APIRouter(prefix="/api/v1/assistant", tags=["Assistant"])
logger = get_logger(__name__)


def get_advisor() -> QuickAdvisor:
    return QuickAdvisor()


@router.post(
    "/advice",
    response_model=AdviceResponse,
    summary="Ask the escrow assistant a question",
)
async def ask_advice(
    request: AdviceRequest,
    identity: Identity = Depends(get_current_identity),
    advisor: QuickAdvisor = Depends(get_advisor),
) -> AdviceResponse:
    logger.info("assistant.question", user=identity.id)
    answer = await advisor.ask(request.query)
    return AdviceResponse(answer=answer)
