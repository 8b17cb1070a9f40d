"""Error taxonomy for turn orchestration."""

from typing import Optional


class TurnOrchestrationError(Exception):
    """Base error for turn orchestration failures."""


class MessageNotFoundError(TurnOrchestrationError):
    """Raised when a log operation references an unknown utterance id."""

    def __init__(self, message_id: int):
        super().__init__(f"utterance {message_id} not found in message log")
        self.message_id = message_id


class CollaboratorError(TurnOrchestrationError):
    """Raised by text-generation clients on network, model or format failure."""


class GenerationFailed(TurnOrchestrationError):
    """Raised when one persona turn could not be generated."""

    def __init__(self, persona_id: str, reason: Optional[str] = None):
        detail = f": {reason}" if reason else ""
        super().__init__(f"generation failed for {persona_id}{detail}")
        self.persona_id = persona_id
        self.reason = reason or ""


class ConversationCompletedError(TurnOrchestrationError):
    """Raised when input arrives for a conversation that already finished."""
