"""Turn-taking orchestrator shared by every scenario mode."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from src.api.models.conversation import ConversationSummary

from ..summary_sink import SummarySink, answers_match
from . import prompts
from .addressing import DEFAULT_LEARNER_ALIASES, AddressResolver
from .errors import ConversationCompletedError, GenerationFailed, MessageNotFoundError
from .events import normalize_turn_event
from .generation import GenerationController, TextGenerationClient
from .log_utils import build_context_preview_for_log, truncate_log_text
from .message_log import MessageLog
from .policy import TurnPolicy, create_turn_policy
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
    utc_now,
)
from .watchdog import InactivityWatchdog, TimerScheduler

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], None]


class TurnOrchestrator:
    """Owns the conversation state and drives one scenario policy.

    Everything that changes ``self.state`` lives in this class. The generation
    controller and the watchdogs reach it only through the callbacks wired in
    ``__init__``.
    """

    def __init__(
        self,
        *,
        conversation_id: str,
        config: ScenarioConfig,
        problem: Problem,
        client: TextGenerationClient,
        participant_id: str = "anonymous",
        timing: Optional[TurnTimingSettings] = None,
        rng: Optional[random.Random] = None,
        scheduler: Optional[TimerScheduler] = None,
        summary_sink: Optional[SummarySink] = None,
        default_model_id: Optional[str] = None,
        default_temperature: Optional[float] = None,
        learner_aliases: Iterable[str] = DEFAULT_LEARNER_ALIASES,
        policy: Optional[TurnPolicy] = None,
    ):
        self.conversation_id = conversation_id
        self.config = config
        self.problem = problem
        self.participant_id = participant_id
        self.timing = timing or TurnTimingSettings()
        self.summary_sink = summary_sink
        self.default_model_id = default_model_id
        self.default_temperature = default_temperature

        self.resolver = AddressResolver.for_personas(config.participants, learner_aliases=learner_aliases)
        self.policy = policy or create_turn_policy(config, resolver=self.resolver, rng=rng)
        self.controller = GenerationController(
            client=client,
            open_placeholder=self._open_placeholder,
            commit=self._commit_placeholder,
            discard=self._discard_placeholder,
            is_live=self._is_live,
            build_options=self._build_options,
            timeout_seconds=self.timing.generation_timeout_seconds,
        )

        self._inactivity = InactivityWatchdog(name="inactivity", scheduler=scheduler)
        self._think_gate = InactivityWatchdog(name="think_gate", scheduler=scheduler)
        self._deadline = InactivityWatchdog(name="deadline", scheduler=scheduler)

        self.state = ConversationState(messages=MessageLog())
        self._unsubscribe_log = self.state.messages.subscribe(self._on_log_change)
        self._token_counter = 0
        self._tasks: Set[asyncio.Task] = set()
        self._subscribers: List[EventCallback] = []
        self._started = False
        self._summary: Optional[ConversationSummary] = None

    # ==================== Public API ====================

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a feed subscriber; returns an unsubscribe callable."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def summary(self) -> Optional[ConversationSummary]:
        return self._summary

    async def start(self, initial_answer: Optional[str] = None) -> None:
        """Open the conversation, optionally seeded with the learner's answer."""
        if self._started:
            logger.info("[TurnOrchestrator] %s already started", self.conversation_id)
            return
        self._started = True
        self.state.started_at = utc_now()
        logger.info(
            "[TurnOrchestrator] Starting %s mode=%s participants=%s",
            self.conversation_id,
            self.config.mode,
            [p.id for p in self.config.participants],
        )

        if self.timing.min_think_seconds > 0:
            self._think_gate.arm(LEARNER_ID, self.timing.min_think_seconds, self._on_think_gate_open)
        else:
            self.state.can_submit_final = True
        if self.timing.session_deadline_seconds > 0:
            self._deadline.arm(LEARNER_ID, self.timing.session_deadline_seconds, self._on_deadline)

        if initial_answer and initial_answer.strip():
            utterance = self.state.messages.append(LEARNER_ID, initial_answer.strip())
            self.state.last_addressed = self.resolver.resolve(utterance.text)

        directive = self.policy.on_start(self.state)
        if directive is not None:
            self._start_turn(directive)
        else:
            self._enter_awaiting_learner()

    async def submit_learner_message(self, text: str) -> Utterance:
        """Append a learner utterance, pre-empting any in-flight generation."""
        if self.state.completed:
            raise ConversationCompletedError(f"conversation {self.conversation_id} is completed")
        content = (text or "").strip()
        if not content:
            raise ValueError("learner message cannot be empty")

        interrupted = self._preempt("learner_input")
        self._inactivity.disarm()
        self.state.compensations = 0

        utterance = self.state.messages.append(LEARNER_ID, content)
        self.state.last_addressed = self.resolver.resolve(content)
        logger.info(
            "[TurnOrchestrator] Learner #%s%s addressed=%s: %s",
            utterance.id,
            " (interrupting)" if interrupted else "",
            self.state.last_addressed,
            truncate_log_text(content, 200),
        )

        directive = self.policy.on_learner_utterance(self.state, utterance, interrupted=interrupted)
        if directive is not None:
            self._start_turn(directive)
        else:
            self._enter_awaiting_learner()
        return utterance

    def cancel_generation(self, reason: str = "cancelled") -> bool:
        """Cancel the live generation and hand control back to the learner."""
        if not self._preempt(reason):
            return False
        self._enter_awaiting_learner(arm_watchdog=False)
        return True

    async def finish(
        self,
        final_answer: Optional[str] = None,
        *,
        timed_out: bool = False,
    ) -> ConversationSummary:
        """Complete the conversation and hand off its summary exactly once."""
        if self._summary is not None:
            return self._summary
        if not timed_out and not self.state.can_submit_final:
            raise ValueError("final answer cannot be submitted before the minimum think time")

        self._preempt("conversation_finished")
        for watchdog in (self._inactivity, self._think_gate, self._deadline):
            watchdog.disarm()

        answer = (final_answer or "").strip() or NO_ANSWER_SENTINEL
        self.state.completed = True
        self.state.turn = TurnState.COMPLETED
        self.state.pending_speaker = None

        transcript = [m.to_dict() for m in self.state.committed_messages()]
        duration = (utc_now() - self.state.started_at).total_seconds()
        self._summary = ConversationSummary(
            conversation_id=self.conversation_id,
            participant_id=self.participant_id,
            mode=self.config.mode,
            problem_id=self.problem.problem_id,
            transcript=transcript,
            final_answer=answer,
            correctness=answers_match(answer, self.problem.answer),
            duration_seconds=max(duration, 0.0),
            timed_out=timed_out,
        )
        logger.info(
            "[TurnOrchestrator] Completed %s timed_out=%s messages=%s",
            self.conversation_id,
            timed_out,
            len(transcript),
        )
        self._emit({
            "type": "conversation_completed",
            "final_answer": answer,
            "timed_out": timed_out,
            "transcript": transcript,
        })

        if self.summary_sink is not None:
            try:
                await self.summary_sink.save(self._summary)
            except Exception as e:
                logger.error("[TurnOrchestrator] Summary hand-off failed for %s: %s", self.conversation_id, e, exc_info=True)
        return self._summary

    async def wait_idle(self) -> None:
        """Wait until no generation task is running (including chained turns)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop timers and running tasks; the state is discarded afterwards."""
        for watchdog in (self._inactivity, self._think_gate, self._deadline):
            watchdog.disarm()
        if self.state.generation is not None:
            self.state.generation.cancel("closed")
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._unsubscribe_log()
        self._subscribers.clear()

    def snapshot(self) -> Dict[str, Any]:
        state = self.state
        return {
            "conversation_id": self.conversation_id,
            "participant_id": self.participant_id,
            "mode": self.config.mode,
            "participants": [
                {"id": p.id, "display_name": p.display_name, "role": p.role}
                for p in self.config.participants
            ],
            "turn": state.turn.value,
            "pending_speaker": state.pending_speaker,
            "phase": state.phase,
            "last_addressed": state.last_addressed,
            "can_submit_final": state.can_submit_final,
            "completed": state.completed,
            "last_error": state.last_error,
            "messages": state.messages.snapshot(),
        }

    # ==================== Turn transitions ====================

    def _start_turn(self, directive: TurnDirective) -> bool:
        if self.state.is_generating:
            logger.warning(
                "[TurnOrchestrator] Ignoring start for %s: generation #%s still live",
                directive.persona_id,
                self.state.generation.token if self.state.generation else None,
            )
            return False
        if directive.persona_id not in self.config.persona_map:
            raise ValueError(f"policy selected unknown persona: {directive.persona_id}")

        self._inactivity.disarm()
        self._token_counter += 1
        token = GenerationToken(token=self._token_counter)

        state = self.state
        state.generation = token
        state.turn = TurnState.GENERATING_AGENT
        state.pending_speaker = directive.persona_id
        state.active_turn = directive
        state.phase = directive.phase
        state.pending_context = directive.context
        state.last_error = None

        logger.info(
            "[TurnOrchestrator] Turn #%s -> %s phase=%s reason=%s target=%s",
            token.token,
            directive.persona_id,
            directive.phase,
            directive.reason,
            directive.address_target,
        )
        logger.debug(
            "[TurnOrchestrator] Turn #%s context=%s",
            token.token,
            build_context_preview_for_log(directive.context),
        )
        self._emit_turn_state()

        task = asyncio.create_task(self._run_turn(directive, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def _start_turn_or_log(self, directive: TurnDirective) -> bool:
        """Start a turn from a callback path, where a raise would go unobserved."""
        try:
            return self._start_turn(directive)
        except ValueError as e:
            logger.error("[TurnOrchestrator] Could not start turn in %s: %s", self.conversation_id, e)
            self.state.last_error = str(e)
            return False

    async def _run_turn(self, directive: TurnDirective, token: GenerationToken) -> None:
        try:
            utterance = await self.controller.generate(directive, token)
        except GenerationFailed as e:
            self._on_generation_failed(token, e)
            return
        except MessageNotFoundError as e:
            self._reset_after_invariant_violation(e)
            return
        if utterance is None:
            return
        self._on_agent_committed(utterance)

    def _on_agent_committed(self, utterance: Utterance) -> None:
        state = self.state
        if state.active_turn is not None and state.active_turn.completes_round:
            state.round_started = True
        state.generation = None
        state.turn = TurnState.IDLE
        state.active_turn = None
        addressed = self.resolver.resolve(utterance.text)
        if addressed is None and self.config.mode == "single":
            addressed = LEARNER_ID
        state.last_addressed = addressed

        try:
            directive = self.policy.on_agent_utterance(state, utterance)
        except Exception as e:
            logger.error("[TurnOrchestrator] Policy failed after #%s: %s", utterance.id, e, exc_info=True)
            state.last_error = str(e)
            directive = None

        if directive is None or not self._start_turn_or_log(directive):
            self._enter_awaiting_learner()

    def _on_generation_failed(self, token: GenerationToken, error: GenerationFailed) -> None:
        if self.state.generation is not token:
            return
        self.state.generation = None
        self.state.active_turn = None
        self.state.last_error = str(error)
        self._inactivity.disarm()
        self._emit({
            "type": "generation_failed",
            "persona_id": error.persona_id,
            "error": error.reason or str(error),
        })
        self._enter_awaiting_learner(arm_watchdog=False)

    def _enter_awaiting_learner(self, *, arm_watchdog: bool = True) -> None:
        state = self.state
        if state.completed:
            return
        state.turn = TurnState.AWAITING_LEARNER
        state.pending_speaker = LEARNER_ID
        state.active_turn = None
        self._emit_turn_state()

        if not arm_watchdog or not self.policy.arms_inactivity_watchdog:
            return
        if self.timing.inactivity_timeout_seconds <= 0:
            return
        if state.compensations >= self.timing.max_consecutive_compensations:
            return
        if not state.committed_messages():
            return
        self._inactivity.arm(LEARNER_ID, self.timing.inactivity_timeout_seconds, self._on_learner_inactive)

    def _preempt(self, reason: str) -> bool:
        """Cancel the live generation, if any, and drop its placeholder."""
        state = self.state
        token = state.generation
        if token is None or token.cancelled or not state.is_generating:
            return False

        self.controller.cancel(token, reason)
        logger.info("[TurnOrchestrator] Cancelled turn #%s for %s (%s)", token.token, state.pending_speaker, reason)
        if state.placeholder_id is not None:
            self._discard_placeholder(state.placeholder_id)
        state.generation = None
        state.active_turn = None
        state.turn = TurnState.IDLE
        return True

    def _reset_after_invariant_violation(self, error: Exception) -> None:
        logger.error("[TurnOrchestrator] Message log invariant violated in %s: %s", self.conversation_id, error)
        if self.state.generation is not None:
            self.state.generation.cancel("reset")
        self._inactivity.disarm()
        self._unsubscribe_log()

        previous = self.state
        self.state = ConversationState(
            messages=MessageLog(first_id=previous.messages.next_id),
            started_at=previous.started_at,
            can_submit_final=previous.can_submit_final,
        )
        self._unsubscribe_log = self.state.messages.subscribe(self._on_log_change)
        self._emit({"type": "conversation_reset", "reason": str(error)})
        self._enter_awaiting_learner(arm_watchdog=False)

    # ==================== Timer callbacks ====================

    def _on_learner_inactive(self, waiting_for: str) -> None:
        state = self.state
        if state.completed or state.turn != TurnState.AWAITING_LEARNER:
            return
        directive = self.policy.on_learner_inactive(state)
        self._emit({
            "type": "watchdog_fired",
            "waiting_for": waiting_for,
            "compensation": directive.phase if directive else None,
        })
        if directive is None:
            return
        state.compensations += 1
        if not self._start_turn_or_log(directive):
            self._enter_awaiting_learner(arm_watchdog=False)

    def _on_think_gate_open(self, _waiting_for: str) -> None:
        if self.state.completed:
            return
        self.state.can_submit_final = True
        self._emit({"type": "submit_enabled"})

    def _on_deadline(self, _waiting_for: str) -> None:
        if self.state.completed:
            return
        logger.info("[TurnOrchestrator] Session deadline reached for %s", self.conversation_id)
        task = asyncio.create_task(self.finish(None, timed_out=True))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ==================== Generation controller hooks ====================

    def _is_live(self, token: GenerationToken) -> bool:
        return self.state.generation is token and not token.cancelled

    def _open_placeholder(self, persona_id: str) -> Utterance:
        placeholder = self.state.messages.append(persona_id, "", placeholder=True)
        self.state.placeholder_id = placeholder.id
        return placeholder

    def _commit_placeholder(self, placeholder_id: int, text: str) -> Utterance:
        utterance = self.state.messages.replace(placeholder_id, text)
        self.state.placeholder_id = None
        return utterance

    def _discard_placeholder(self, placeholder_id: int) -> None:
        if self.state.messages.contains(placeholder_id):
            self.state.messages.remove(placeholder_id)
        if self.state.placeholder_id == placeholder_id:
            self.state.placeholder_id = None

    def _build_options(self, directive: TurnDirective) -> GenerationOptions:
        persona = self.config.persona_map[directive.persona_id]
        system_prompt = prompts.build_system_prompt(
            base_prompt=persona.system_prompt,
            display_name=persona.display_name,
            error_profile=persona.error_profile,
            problem=self.problem,
            instruction=directive.instruction,
            include_answer=persona.role == "tutor",
        )
        return GenerationOptions(
            system_prompt=system_prompt,
            model_id=persona.model_id or self.default_model_id,
            temperature=persona.temperature if persona.temperature is not None else self.default_temperature,
            persona_id=persona.id,
        )

    # ==================== Feed ====================

    def _on_log_change(self, kind: str, utterance: Utterance) -> None:
        if kind == "utterance_removed":
            self._emit({"type": kind, "utterance_id": utterance.id})
        else:
            self._emit({"type": kind, "utterance": utterance.to_dict()})

    def _emit_turn_state(self) -> None:
        self._emit({
            "type": "turn_state",
            "state": self.state.turn.value,
            "pending_speaker": self.state.pending_speaker,
            "phase": self.state.phase,
        })

    def _emit(self, event: Dict[str, Any]) -> None:
        if not self._subscribers:
            return
        payload = normalize_turn_event({**event, "conversation_id": self.conversation_id})
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception as e:
                logger.warning("[TurnOrchestrator] Subscriber failed for %s: %s", payload.get("type"), e)
