"""Tutor service: turns one inbound learner message into a tutor reply."""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import tiktoken

from models.conversation import Role
from services.conversation_log import ConversationLog
from services.grammar_checker import GrammarChecker
from services.level_detector import LevelDetector
from services.llm_client import LLMClient, LLMClientError
from services.tutor_prompts import (
    CLEARED_REPLY,
    EXPLAIN_CORRECTION_HINT,
    EXPLAIN_PROMPT,
    FALLBACK_REPLY,
    NOTHING_TO_EXPLAIN_REPLY,
    system_prompt_for,
)

logger = logging.getLogger(__name__)


@dataclass
class TutorReply:
    """
    Result of handling a learner message.

    Attributes:
        success: False when generation failed and ``message`` is a fallback
        message: Text to send back to the learner
        level: CEFR level used for the reply
        turn_index: Index of the stored assistant turn, if one was stored
        prompt_tokens: Size of the assembled prompt
        error: Error code of a failed generation
        correction: Grammar correction prepended to the message, if any
    """
    success: bool
    message: str
    level: Optional[str] = None
    turn_index: Optional[int] = None
    prompt_tokens: int = 0
    error: Optional[str] = None
    correction: Optional[str] = None


class TutorService:
    """Orchestrates level detection, the conversation log and text generation."""

    CLEAR_COMMAND = "/clear_logs"
    EXPLAIN_COMMAND = "/explain"

    def __init__(
        self,
        conversation_log: ConversationLog,
        llm_client: LLMClient,
        level_detector: LevelDetector,
        encoder=None,
        grammar_checker: Optional[GrammarChecker] = None
    ):
        self.conversation_log = conversation_log
        self.llm_client = llm_client
        self.level_detector = level_detector
        self.grammar_checker = grammar_checker
        # o200k_base approximates Llama 3 token counts
        self.encoder = encoder or tiktoken.get_encoding("o200k_base")

    @staticmethod
    def conversation_id_for(user_id: str) -> str:
        return f"whatsapp_{user_id}"

    def handle_message(self, user_id: str, text: str) -> TutorReply:
        """
        Handle one learner message.

        The learner's turn is persisted before generation, so a failed
        generation still leaves the conversation intact. Datastore errors
        propagate and generation is not attempted on stale context.

        Raises:
            ValueError: If the message is empty
            IntegrityViolation: If the history cannot be repaired
            StoreUnavailable: If the conversation cannot be read or written
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Message cannot be empty")

        lowered = text.lower()
        if self.CLEAR_COMMAND in lowered:
            return self._clear(user_id)
        if self.EXPLAIN_COMMAND in lowered:
            return self._explain(user_id)
        return self._converse(user_id, text)

    def _converse(self, user_id: str, text: str) -> TutorReply:
        conversation_id = self.conversation_id_for(user_id)
        learner = self.level_detector.detect(user_id)
        metadata = {
            "channel": "whatsapp",
            "phone_number": user_id,
            "level": learner.level,
            "course": learner.course_id
        }

        history = self.conversation_log.load_history_repairing(conversation_id)
        self.conversation_log.append_turn(conversation_id, Role.USER, text, metadata)

        messages = self.conversation_log.assemble_prompt(
            history,
            pending=text,
            system_prompt=system_prompt_for(learner.level)
        )
        prompt_tokens = self._count_tokens(messages)
        correction = self.grammar_checker.check(text, learner.level) if self.grammar_checker else None
        logger.info(
            f"Generating tutor reply for {conversation_id}: level={learner.level}, "
            f"messages={len(messages)}, prompt_tokens={prompt_tokens}"
        )

        try:
            response = self.llm_client.generate(messages)
        except LLMClientError as e:
            logger.error(f"Tutor reply failed for {conversation_id}: {e.error.code} {e.error.message}")
            return TutorReply(
                success=False,
                message=FALLBACK_REPLY,
                level=learner.level,
                prompt_tokens=prompt_tokens,
                error=e.error.code
            )

        message = response.text
        assistant_metadata = dict(metadata)
        if correction:
            assistant_metadata["correction"] = correction.feedback
            message = f"{correction.feedback}\n\n{response.text}\n\n{self.EXPLAIN_COMMAND}"

        # Only the plain reply is stored; the correction lives in metadata
        turn_index = self.conversation_log.append_turn(
            conversation_id, Role.ASSISTANT, response.text, assistant_metadata
        )
        return TutorReply(
            success=True,
            message=message,
            level=learner.level,
            turn_index=turn_index,
            prompt_tokens=prompt_tokens,
            correction=correction.feedback if correction else None
        )

    def _explain(self, user_id: str) -> TutorReply:
        conversation_id = self.conversation_id_for(user_id)
        history = self.conversation_log.load_history_repairing(conversation_id)
        position = next(
            (i for i in range(len(history) - 1, -1, -1) if history[i].role is Role.USER),
            None
        )
        if position is None:
            return TutorReply(success=True, message=NOTHING_TO_EXPLAIN_REPLY)

        last_user_message = history[position].content
        correction = next(
            (
                turn.metadata.get("correction")
                for turn in history[position + 1:]
                if turn.role is Role.ASSISTANT
            ),
            None
        )

        learner = self.level_detector.detect(user_id)
        system_prompt = EXPLAIN_PROMPT.format(level=learner.level)
        if correction:
            system_prompt += "\n\n" + EXPLAIN_CORRECTION_HINT.format(correction=correction)
        messages = [
            {"role": Role.SYSTEM.value, "content": system_prompt},
            {"role": Role.USER.value, "content": last_user_message}
        ]
        try:
            response = self.llm_client.generate(messages)
        except LLMClientError as e:
            logger.error(f"Explanation failed for {conversation_id}: {e.error.code}")
            return TutorReply(success=False, message=FALLBACK_REPLY, level=learner.level, error=e.error.code)

        return TutorReply(
            success=True,
            message=response.text,
            level=learner.level,
            prompt_tokens=self._count_tokens(messages)
        )

    def _clear(self, user_id: str) -> TutorReply:
        self.conversation_log.reset_dialogue(self.conversation_id_for(user_id))
        return TutorReply(success=True, message=CLEARED_REPLY)

    def _count_tokens(self, messages: List[Dict[str, str]]) -> int:
        return sum(len(self.encoder.encode(message["content"])) for message in messages)
