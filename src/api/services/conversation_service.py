"""In-memory registry of live tutoring conversations."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import settings
from ..models.conversation import ConversationSummary, StartConversationRequest
from .generation_client import LangChainGenerationClient
from .persona_config_service import PersonaConfigService
from .summary_sink import JsonlSummarySink, MemorySummarySink, SummarySink
from .turn_orchestration import (
    Problem,
    ScenarioResolver,
    TextGenerationClient,
    TurnOrchestrator,
    TurnTimingSettings,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Dict[str, str]], TextGenerationClient]


class ConversationNotFoundError(LookupError):
    """Raised when a conversation id is not registered."""


def timing_from_settings() -> TurnTimingSettings:
    return TurnTimingSettings(
        min_think_seconds=settings.min_think_seconds,
        inactivity_timeout_seconds=settings.inactivity_timeout_seconds,
        session_deadline_seconds=settings.session_deadline_seconds,
        generation_timeout_seconds=settings.generation_timeout_seconds,
        max_consecutive_compensations=settings.max_consecutive_compensations,
    )


def default_summary_sink() -> SummarySink:
    if settings.summaries_path is None:
        return MemorySummarySink()
    return JsonlSummarySink(settings.summaries_path)


@dataclass
class _ConversationEntry:
    orchestrator: TurnOrchestrator
    subscribers: Dict[str, asyncio.Queue] = field(default_factory=dict)
    unsubscribe: Optional[Callable[[], None]] = None


class ConversationService:
    """Create, drive and fan out events for live orchestrators."""

    def __init__(
        self,
        *,
        persona_service: Optional[PersonaConfigService] = None,
        client_factory: Optional[ClientFactory] = None,
        summary_sink: Optional[SummarySink] = None,
        timing: Optional[TurnTimingSettings] = None,
    ):
        self.persona_service = persona_service or PersonaConfigService(settings.personas_config_path)
        self.client_factory = client_factory or (lambda names: LangChainGenerationClient(speaker_names=names))
        self.summary_sink = summary_sink or default_summary_sink()
        self.timing = timing or timing_from_settings()
        self._conversations: Dict[str, _ConversationEntry] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def get(self, conversation_id: str) -> TurnOrchestrator:
        entry = self._conversations.get(conversation_id)
        if entry is None:
            raise ConversationNotFoundError(conversation_id)
        return entry.orchestrator

    async def start(self, request: StartConversationRequest) -> TurnOrchestrator:
        personas = await self.persona_service.get_personas()
        config = ScenarioResolver.resolve(
            mode=request.mode,
            personas=personas,
            participant_ids=request.persona_ids,
        )
        names = {persona.id: persona.display_name for persona in config.participants}
        conversation_id = str(uuid.uuid4())
        orchestrator = TurnOrchestrator(
            conversation_id=conversation_id,
            config=config,
            problem=Problem(
                problem_id=request.problem.problem_id,
                statement=request.problem.statement,
                answer=request.problem.answer,
            ),
            client=self.client_factory(names),
            participant_id=request.participant_id,
            timing=self.timing,
            rng=random.Random(request.seed) if request.seed is not None else None,
            summary_sink=self.summary_sink,
            default_model_id=settings.default_model_id,
            default_temperature=settings.default_temperature,
        )
        entry = _ConversationEntry(orchestrator=orchestrator)
        entry.unsubscribe = orchestrator.subscribe(lambda event: self._fan_out(conversation_id, event))
        self._conversations[conversation_id] = entry

        logger.info(
            "[ConversationService] Created %s mode=%s participant=%s",
            conversation_id,
            config.mode,
            request.participant_id,
        )
        await orchestrator.start(request.initial_answer)
        return orchestrator

    async def submit_message(self, conversation_id: str, text: str) -> Dict[str, Any]:
        orchestrator = self.get(conversation_id)
        await orchestrator.submit_learner_message(text)
        return orchestrator.snapshot()

    async def finish(self, conversation_id: str, final_answer: Optional[str]) -> ConversationSummary:
        orchestrator = self.get(conversation_id)
        return await orchestrator.finish(final_answer)

    async def close(self, conversation_id: str) -> None:
        entry = self._conversations.pop(conversation_id, None)
        if entry is None:
            raise ConversationNotFoundError(conversation_id)
        if entry.unsubscribe is not None:
            entry.unsubscribe()
        await entry.orchestrator.close()
        for queue in entry.subscribers.values():
            queue.put_nowait({"type": "stream_closed", "conversation_id": conversation_id})
        logger.info("[ConversationService] Closed %s", conversation_id)

    async def shutdown(self) -> None:
        for conversation_id in list(self._conversations):
            await self.close(conversation_id)

    def subscribe(self, conversation_id: str) -> Tuple[str, asyncio.Queue, List[Dict[str, Any]]]:
        """Register an event queue; returns it with a snapshot of the transcript so far."""
        entry = self._conversations.get(conversation_id)
        if entry is None:
            raise ConversationNotFoundError(conversation_id)
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue()
        entry.subscribers[subscriber_id] = queue
        return subscriber_id, queue, entry.orchestrator.snapshot()["messages"]

    def unsubscribe(self, conversation_id: str, subscriber_id: str) -> None:
        entry = self._conversations.get(conversation_id)
        if entry is None:
            return
        entry.subscribers.pop(subscriber_id, None)

    def _fan_out(self, conversation_id: str, event: Dict[str, Any]) -> None:
        entry = self._conversations.get(conversation_id)
        if entry is None:
            return
        for queue in entry.subscribers.values():
            queue.put_nowait(event)


def is_terminal_event(payload: Dict[str, Any]) -> bool:
    return payload.get("type") in {"conversation_completed", "stream_closed"}
