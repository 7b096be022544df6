"""Quick advice assistant — short answers to users' escrow questions.

Unlike dispute mediation this is a convenience feature, so transient LLM
failures are retried with exponential backoff and configured fallback models
are allowed. If everything fails the user gets a static apology instead of
an error.
"""

from __future__ import annotations

import litellm
from tenacity import retry, stop_after_attempt, wait_exponential

from trade_escrow.config import get_settings
from trade_escrow.logging_config import get_logger

logger = get_logger(__name__)

ADVISOR_SYSTEM_PROMPT = (
    "You are an assistant for an escrow platform that holds a buyer's payment "
    "until the seller delivers. Answer the user's question concisely and "
    "practically. If the question is about a specific dispute, suggest opening "
    "mediation on the transaction instead of ruling on it."
)

ADVISOR_FALLBACK = "I'm having trouble thinking right now. Please try again shortly."
ADVISOR_NO_ANSWER = "I'm not sure how to help with that."


class QuickAdvisor:
    """Answers free-form questions through LiteLLM."""

    def __init__(self, model: str | None = None) -> None:
        self._model = model

    async def ask(self, query: str) -> str:
        """Return a short answer, or a static fallback if the LLM is unavailable."""
        try:
            answer = await self._call_llm(query)
        except Exception:
            logger.exception("advisor.failed", query_preview=query[:80])
            return ADVISOR_FALLBACK
        return answer or ADVISOR_NO_ANSWER

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _call_llm(self, query: str) -> str:
        """Call the LLM via LiteLLM with retry logic."""
        settings = get_settings()
        response = await litellm.acompletion(
            model=self._model or settings.litellm_model,
            messages=[
                {"role": "system", "content": ADVISOR_SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            max_tokens=min(settings.litellm_max_tokens, 512),
            temperature=settings.litellm_temperature,
            fallbacks=settings.litellm_fallback_model_list or None,
        )
        content = response.choices[0].message.content
        return content.strip() if content else ""
