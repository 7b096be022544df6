"""LLM-backed collaborators: the dispute mediator and the quick advisor."""

from trade_escrow.analysis.advisor import QuickAdvisor
from trade_escrow.analysis.mediator import LiteLLMDisputeMediator, build_mediation_prompt

__all__ = ["LiteLLMDisputeMediator", "QuickAdvisor", "build_mediation_prompt"]
