"""Turn policies: who acts next for each scenario mode.

Policies are stateless strategy objects. They read the conversation state and
return a ``TurnDirective`` for the next agent turn, or ``None`` when control
returns to the learner. Only the orchestrator writes state.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from . import prompts
from .addressing import AddressResolver
from .types import LEARNER_ID, ConversationState, ScenarioConfig, TurnDirective, Utterance

COVER_OPENERS = (
    "Hey! I know this one!",
    "Ooh, I've got this!",
    "Oh! I know this one!",
    "Wait, I think I can get this!",
)


class TurnPolicy(ABC):
    """Base strategy plugged into the orchestrator."""

    mode: str = "unknown"
    arms_inactivity_watchdog: bool = True

    def __init__(
        self,
        *,
        config: ScenarioConfig,
        resolver: AddressResolver,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.rng = rng or random.Random()

    def on_start(self, state: ConversationState) -> Optional[TurnDirective]:
        """Kick off the conversation from the learner's initial answer, if any."""
        last = state.messages.last()
        if last is None or not last.is_learner:
            return None
        return self.on_learner_utterance(state, last, interrupted=False)

    @abstractmethod
    def on_learner_utterance(
        self,
        state: ConversationState,
        utterance: Utterance,
        *,
        interrupted: bool,
    ) -> Optional[TurnDirective]:
        raise NotImplementedError

    @abstractmethod
    def on_agent_utterance(self, state: ConversationState, utterance: Utterance) -> Optional[TurnDirective]:
        raise NotImplementedError

    def on_learner_inactive(self, state: ConversationState) -> Optional[TurnDirective]:
        """Compensation when the learner stays silent; None means keep waiting."""
        return None

    @staticmethod
    def history(state: ConversationState):
        return tuple(state.committed_messages())

    def require_address(self, target: str):
        """Post-generation repair hook forcing ``target``'s address token."""
        if not self.config.must_address_rule:
            return None
        return lambda text: self.resolver.repair(text, target)


class SoloPolicy(TurnPolicy):
    """No agents: the learner works alone."""

    mode = "solo"
    arms_inactivity_watchdog = False

    def on_start(self, state: ConversationState) -> Optional[TurnDirective]:
        return None

    def on_learner_utterance(self, state, utterance, *, interrupted):
        return None

    def on_agent_utterance(self, state, utterance):
        return None


class SinglePolicy(TurnPolicy):
    """Learner and tutor strictly alternate."""

    mode = "single"

    @property
    def tutor_id(self) -> str:
        return self.config.tutor.id

    def on_learner_utterance(self, state, utterance, *, interrupted):
        # The tutor restarts from the new utterance alone when the learner cut
        # in, either mid-generation or while the tutor was talking to someone else.
        restart = interrupted or self._tutor_looked_away(state, utterance)
        return TurnDirective(
            persona_id=self.tutor_id,
            phase="tutor_reply",
            context=(utterance,) if restart else self.history(state),
            instruction=prompts.tutor_reply_instruction(),
            reason="interrupted" if restart else "learner_spoke",
        )

    def _tutor_looked_away(self, state: ConversationState, utterance: Utterance) -> bool:
        last_tutor = next(
            (
                m for m in reversed(state.committed_messages())
                if m.speaker == self.tutor_id and m.id < utterance.id
            ),
            None,
        )
        if last_tutor is None:
            return False
        # Unaddressed tutor turns implicitly address the learner.
        addressed = self.resolver.resolve(last_tutor.text)
        return addressed not in (None, LEARNER_ID)

    def on_agent_utterance(self, state, utterance):
        return None

    def on_learner_inactive(self, state):
        if state.phase == "tutor_nudge":
            return None
        return TurnDirective(
            persona_id=self.tutor_id,
            phase="tutor_nudge",
            context=self.history(state),
            instruction=prompts.simplified_prompt_instruction(),
            reason="learner_inactive",
        )


class MultiPolicy(TurnPolicy):
    """Tutor plus two peers: fixed first-round pipeline, then tutor-led rounds."""

    mode = "multi"

    @property
    def tutor_id(self) -> str:
        return self.config.tutor.id

    @property
    def peer_ids(self) -> List[str]:
        return [peer.id for peer in self.config.peers]

    def on_learner_utterance(self, state, utterance, *, interrupted):
        if not state.round_started:
            return self._resume_pipeline(state)
        return self._tutor_turn(state, initial=False, reason="learner_spoke")

    def on_agent_utterance(self, state, utterance):
        phase = state.phase or ""
        if phase == "pipeline_peer_a":
            return self._pipeline_turn(state, 1)
        if phase == "pipeline_peer_b":
            return self._tutor_turn(state, initial=True, reason="pipeline_complete")
        if phase.startswith("tutor"):
            addressee = self.resolver.resolve(utterance.text)
            if addressee in self.peer_ids:
                return TurnDirective(
                    persona_id=addressee,
                    phase="addressee_reply",
                    context=self.history(state),
                    instruction=prompts.reply_instruction(),
                    reason="addressed_by_tutor",
                )
            return None
        if phase == "addressee_reply":
            return self._tutor_turn(state, initial=False, reason="addressee_replied")
        return None

    def on_learner_inactive(self, state):
        target = self.rng.choice(self.peer_ids)
        return TurnDirective(
            persona_id=self.tutor_id,
            phase="tutor_nudge",
            context=self.history(state),
            instruction=prompts.simplified_prompt_instruction(self.resolver.token_for(target)),
            address_target=target,
            postprocess=self.require_address(target),
            reason="learner_inactive",
        )

    def _resume_pipeline(self, state: ConversationState) -> TurnDirective:
        """First peer that has not answered yet, then the tutor's feedback."""
        spoken = {m.speaker for m in state.committed_messages()}
        for index, peer_id in enumerate(self.peer_ids):
            if peer_id not in spoken:
                return self._pipeline_turn(state, index)
        return self._tutor_turn(state, initial=True, reason="pipeline_resumed")

    def _pipeline_turn(self, state: ConversationState, index: int) -> TurnDirective:
        return TurnDirective(
            persona_id=self.peer_ids[index],
            phase="pipeline_peer_a" if index == 0 else "pipeline_peer_b",
            context=self.history(state),
            instruction=prompts.initial_answer_instruction(),
            reason="first_round_pipeline",
        )

    def _tutor_turn(self, state: ConversationState, *, initial: bool, reason: str) -> TurnDirective:
        target = self.rng.choice([LEARNER_ID, *self.peer_ids])
        return TurnDirective(
            persona_id=self.tutor_id,
            phase="tutor_feedback" if initial else "tutor_followup",
            context=self.history(state),
            instruction=prompts.tutor_feedback_instruction(self.resolver.token_for(target), initial=initial),
            address_target=target,
            postprocess=self.require_address(target),
            reason=reason,
            completes_round=initial,
        )


class GroupPolicy(TurnPolicy):
    """Two peers, no tutor; at most one peer-to-peer hop before the learner."""

    mode = "group"

    @property
    def peer_ids(self) -> List[str]:
        return [peer.id for peer in self.config.peers]

    def other_peer(self, peer_id: Optional[str]) -> str:
        others = [pid for pid in self.peer_ids if pid != peer_id]
        return others[0] if others else self.peer_ids[0]

    def on_learner_utterance(self, state, utterance, *, interrupted):
        addressed = self.resolver.resolve(utterance.text)
        if addressed in self.peer_ids:
            responder, reason = addressed, "learner_override"
        else:
            responder, reason = self.rng.choice(self.peer_ids), "random_first_responder"

        target = self.rng.choice([LEARNER_ID, self.other_peer(responder)])
        return TurnDirective(
            persona_id=responder,
            phase="first_responder",
            context=self.history(state),
            instruction=prompts.peer_discussion_instruction(self.resolver.token_for(target)),
            address_target=target,
            postprocess=self.require_address(target),
            reason=reason,
        )

    def on_agent_utterance(self, state, utterance):
        if state.phase != "first_responder":
            return None
        addressed = self.resolver.resolve(utterance.text)
        if addressed not in self.peer_ids or addressed == utterance.speaker:
            return None
        return self._learner_bound_turn(
            state,
            persona_id=addressed,
            phase="second_hop",
            instruction=prompts.peer_hop_instruction(self.resolver.token_for(LEARNER_ID)),
            reason="addressed_by_peer",
        )

    def on_learner_inactive(self, state):
        last_agent = next(
            (m for m in reversed(state.committed_messages()) if not m.is_learner),
            None,
        )
        cover = self.other_peer(last_agent.speaker) if last_agent else self.rng.choice(self.peer_ids)
        opener = self.rng.choice(COVER_OPENERS)
        return self._learner_bound_turn(
            state,
            persona_id=cover,
            phase="cover",
            instruction=prompts.cover_instruction(self.resolver.token_for(LEARNER_ID), opener),
            reason="learner_inactive",
        )

    def _learner_bound_turn(self, state, *, persona_id: str, phase: str, instruction: str, reason: str) -> TurnDirective:
        # Consecutive peer turns must hand control back to the learner, so the
        # repair is applied regardless of must_address_rule.
        return TurnDirective(
            persona_id=persona_id,
            phase=phase,
            context=self.history(state),
            instruction=instruction,
            address_target=LEARNER_ID,
            postprocess=lambda text: self.resolver.repair(text, LEARNER_ID),
            reason=reason,
        )


_POLICY_BY_MODE: Dict[str, Type[TurnPolicy]] = {
    "solo": SoloPolicy,
    "single": SinglePolicy,
    "multi": MultiPolicy,
    "group": GroupPolicy,
}


def create_turn_policy(
    config: ScenarioConfig,
    *,
    resolver: AddressResolver,
    rng: Optional[random.Random] = None,
) -> TurnPolicy:
    """Instantiate the policy matching ``config.mode``."""
    policy_cls = _POLICY_BY_MODE.get(config.mode)
    if policy_cls is None:
        raise ValueError(f"unsupported scenario mode: {config.mode}")
    return policy_cls(config=config, resolver=resolver, rng=rng)
