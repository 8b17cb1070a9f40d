"""Turn-taking orchestration primitives for tutoring conversations."""

from .addressing import AddressResolver
from .errors import (
    CollaboratorError,
    ConversationCompletedError,
    GenerationFailed,
    MessageNotFoundError,
    TurnOrchestrationError,
)
from .events import normalize_turn_event
from .generation import GenerationController, TextGenerationClient
from .message_log import MessageLog
from .orchestrator import TurnOrchestrator
from .policy import GroupPolicy, MultiPolicy, SinglePolicy, SoloPolicy, TurnPolicy, create_turn_policy
from .settings import ScenarioResolver
from .types import (
    LEARNER_ID,
    NO_ANSWER_SENTINEL,
    ConversationState,
    GenerationOptions,
    GenerationToken,
    Problem,
    ScenarioConfig,
    TurnDirective,
    TurnState,
    TurnTimingSettings,
    Utterance,
)
from .watchdog import InactivityWatchdog, WatchdogHandle

__all__ = [
    "AddressResolver",
    "CollaboratorError",
    "ConversationCompletedError",
    "ConversationState",
    "GenerationController",
    "GenerationFailed",
    "GenerationOptions",
    "GenerationToken",
    "GroupPolicy",
    "InactivityWatchdog",
    "LEARNER_ID",
    "MessageLog",
    "MessageNotFoundError",
    "MultiPolicy",
    "NO_ANSWER_SENTINEL",
    "Problem",
    "ScenarioConfig",
    "ScenarioResolver",
    "SinglePolicy",
    "SoloPolicy",
    "TextGenerationClient",
    "TurnDirective",
    "TurnOrchestrationError",
    "TurnOrchestrator",
    "TurnPolicy",
    "TurnState",
    "TurnTimingSettings",
    "Utterance",
    "WatchdogHandle",
    "create_turn_policy",
    "normalize_turn_event",
]
