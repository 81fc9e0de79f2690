"""Automatic grammar correction of learner messages."""
import logging
from dataclasses import dataclass
from typing import Optional

from services.llm_client import LLMClient, LLMClientError
from services.tutor_prompts import GRAMMAR_PROMPT, GRAMMAR_REQUEST

logger = logging.getLogger(__name__)

NO_CORRECTION = "none"


@dataclass
class GrammarCorrection:
    """Corrected version of a learner message, e.g. ``✅ Ich gehe nach Hause``."""
    feedback: str
    original: str
    level: str


class GrammarChecker:
    """Asks the text-generation service for a correction of one learner message."""

    def __init__(self, llm_client: LLMClient, max_tokens: int = 150, temperature: float = 0.1):
        self.llm_client = llm_client
        self.max_tokens = max_tokens
        self.temperature = temperature

    def check(self, message: str, level: str) -> Optional[GrammarCorrection]:
        """
        Check a message for grammar errors.

        Args:
            message: Learner text
            level: CEFR level the correction should target

        Returns:
            GrammarCorrection, or None when the text is correct or the check failed
        """
        messages = [
            {"role": "system", "content": GRAMMAR_PROMPT},
            {"role": "user", "content": GRAMMAR_REQUEST.format(level=level, message=message)}
        ]
        try:
            response = self.llm_client.generate(
                messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except LLMClientError as e:
            # A missing correction must not block the tutor reply
            logger.warning(f"Grammar check failed: {e.error.code} {e.error.message}")
            return None

        feedback = response.text.strip().strip('"').strip()
        if NO_CORRECTION in feedback.lower() or len(feedback) <= 4:
            logger.debug("Grammar check found no correction")
            return None

        logger.info(f"Grammar check suggested a correction at level {level}")
        return GrammarCorrection(feedback=feedback, original=message, level=level)
