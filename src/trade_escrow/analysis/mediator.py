"""LiteLLMDisputeMediator — asks an LLM for a neutral resolution advisory.

Use case: a funded trade is disputed; both parties have argued in the chat.
The mediator reads the terms and the conversation and suggests a resolution.
The advisory is text only; it never moves the transaction out of DISPUTED.

Call contract:
    - Exactly one completion call per request. No retry, no fallback models:
      a second opinion must be asked for explicitly by the user.
    - Bounded by asyncio.wait_for(mediation_timeout_seconds).
    - Errors, timeouts and empty output all surface as MediationUnavailableError.
"""

from __future__ import annotations

import asyncio

import litellm

from trade_escrow.config import get_settings
from trade_escrow.domain.exceptions import MediationUnavailableError
from trade_escrow.domain.mediation import DisputeBrief
from trade_escrow.logging_config import get_logger

logger = get_logger(__name__)

MEDIATOR_SYSTEM_PROMPT = """You are a professional, neutral mediator for a two-party trade escrow platform.

Funds are held by the platform until the buyer confirms the goods or service.
A dispute has been opened. Read the agreed terms and the conversation between
the two parties, then:

1. Summarize each party's position in one or two sentences.
2. Point out what the written terms say about the disputed point, if anything.
3. Recommend a fair resolution (release funds to the seller, refund the buyer,
   or a specific next step such as providing evidence).

Rules:
- Do not take sides without support from the terms or the conversation.
- Refer to the parties as "Creator" and "Partner" with their trade roles.
- Keep it brief but thorough. Plain text, no markdown tables.
"""

MEDIATOR_USER_TEMPLATE = """## Escrow Terms
Title: {title}
Amount: {amount} {currency}
Status: {status}
Creator's role: {creator_role} (the Partner holds the other role)
Description:
{description}

## Dispute Reason
{dispute_reason}

## Conversation History
{conversation}

Provide your mediation advisory."""


def build_mediation_prompt(brief: DisputeBrief) -> str:
    """Render the user-turn prompt for a disputed transaction."""
    return MEDIATOR_USER_TEMPLATE.format(
        title=brief.title,
        amount=brief.amount,
        currency=brief.currency,
        status=brief.status,
        creator_role=brief.creator_role,
        description=brief.description,
        dispute_reason=brief.dispute_reason or "(no reason given)",
        conversation=brief.render_conversation(),
    )


class LiteLLMDisputeMediator:
    """Dispute analyst backed by any LiteLLM-compatible model."""

    def __init__(
        self,
        model: str | None = None,
        timeout_seconds: float | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        """Initialize with optional overrides (defaults come from config)."""
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens
        self._temperature = temperature

    def _get_model_config(self) -> dict:
        """Resolve model configuration from overrides or settings."""
        settings = get_settings()
        return {
            "model": self._model or settings.litellm_model,
            "timeout": self._timeout_seconds or settings.mediation_timeout_seconds,
            "max_tokens": self._max_tokens or settings.litellm_max_tokens,
            "temperature": (
                self._temperature if self._temperature is not None else settings.litellm_temperature
            ),
        }

    async def analyze(self, brief: DisputeBrief) -> str:
        """Return the advisory text for a disputed transaction.

        Raises:
            MediationUnavailableError: On any collaborator error, a timeout,
                or an empty completion.
        """
        config = self._get_model_config()
        logger.info(
            "mediator.analyze.start",
            transaction_id=brief.transaction_id,
            model=config["model"],
            turns=len(brief.turns),
        )

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=config["model"],
                    messages=[
                        {"role": "system", "content": MEDIATOR_SYSTEM_PROMPT},
                        {"role": "user", "content": build_mediation_prompt(brief)},
                    ],
                    max_tokens=config["max_tokens"],
                    temperature=config["temperature"],
                ),
                timeout=config["timeout"],
            )
        except TimeoutError as exc:
            raise MediationUnavailableError(
                f"Mediator timed out after {config['timeout']}s"
            ) from exc
        except Exception as exc:
            raise MediationUnavailableError(f"Mediator call failed: {exc}") from exc

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise MediationUnavailableError("Mediator returned an empty response")

        logger.info(
            "mediator.analyze.done",
            transaction_id=brief.transaction_id,
            length=len(content),
        )
        return content.strip()
