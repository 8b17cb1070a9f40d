"""Data types for turn orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from src.api.models.persona import Persona

    from .message_log import MessageLog


LEARNER_ID = "user"
PLACEHOLDER_TEXT = "..."
NO_ANSWER_SENTINEL = "No answer specified"

ScenarioMode = Literal["solo", "single", "multi", "group"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TurnState(str, Enum):
    """Coarse turn-taking state shared by every scenario policy."""

    IDLE = "idle"
    AWAITING_LEARNER = "awaiting_learner"
    GENERATING_AGENT = "generating_agent"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Utterance:
    """One transcript entry. Placeholders are replaced in place or removed."""

    id: int
    speaker: str
    text: str
    created_at: datetime = field(default_factory=utc_now)
    placeholder: bool = False

    @property
    def is_learner(self) -> bool:
        return self.speaker == LEARNER_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "speaker": self.speaker,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
            "placeholder": self.placeholder,
        }


@dataclass(frozen=True)
class Problem:
    """Fixed problem statement and canonical answer for one session."""

    problem_id: str
    statement: str
    answer: str


@dataclass(frozen=True)
class ScenarioConfig:
    """Immutable per-session scenario descriptor."""

    mode: ScenarioMode
    participants: Tuple["Persona", ...] = ()
    must_address_rule: bool = False

    @property
    def persona_map(self) -> Dict[str, "Persona"]:
        return {persona.id: persona for persona in self.participants}

    @property
    def tutor(self) -> Optional["Persona"]:
        return next((p for p in self.participants if p.role == "tutor"), None)

    @property
    def peers(self) -> List["Persona"]:
        return [p for p in self.participants if p.role == "peer"]


@dataclass(frozen=True)
class TurnTimingSettings:
    """Timer values used by the orchestrator; all in seconds, 0 disables."""

    min_think_seconds: float = 10.0
    inactivity_timeout_seconds: float = 30.0
    session_deadline_seconds: float = 720.0
    generation_timeout_seconds: float = 60.0
    max_consecutive_compensations: int = 2


@dataclass
class GenerationToken:
    """Cooperative cancellation token for one generation attempt."""

    token: int
    cancelled: bool = False
    reason: str = "cancelled"

    def cancel(self, reason: Optional[str] = None) -> None:
        """Mark the attempt as cancelled with an optional reason."""
        self.cancelled = True
        if reason:
            self.reason = str(reason).strip() or self.reason


@dataclass(frozen=True)
class GenerationOptions:
    """Options forwarded to the text-generation collaborator."""

    system_prompt: Optional[str] = None
    model_id: Optional[str] = None
    temperature: Optional[float] = None
    persona_id: Optional[str] = None


@dataclass(frozen=True)
class TurnDirective:
    """Policy decision naming the next agent turn and its constraints."""

    persona_id: str
    phase: str
    context: Tuple[Utterance, ...]
    instruction: str
    address_target: Optional[str] = None
    postprocess: Optional[Callable[[str], str]] = None
    reason: str = ""
    completes_round: bool = False


@dataclass
class ConversationState:
    """Mutable turn state. Written only by the orchestrator."""

    messages: "MessageLog"
    turn: TurnState = TurnState.IDLE
    pending_speaker: Optional[str] = None
    generation: Optional[GenerationToken] = None
    last_addressed: Optional[str] = None
    active_turn: Optional[TurnDirective] = None
    placeholder_id: Optional[int] = None
    pending_context: Sequence[Utterance] = ()
    phase: Optional[str] = None
    round_started: bool = False
    compensations: int = 0
    can_submit_final: bool = False
    completed: bool = False
    last_error: Optional[str] = None
    started_at: datetime = field(default_factory=utc_now)

    @property
    def is_generating(self) -> bool:
        return self.turn == TurnState.GENERATING_AGENT

    def committed_messages(self) -> List[Utterance]:
        return [message for message in self.messages if not message.placeholder]
