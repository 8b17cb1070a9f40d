"""Structured conversation feed event models and validation helpers."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict


class _EventBase(BaseModel):
    """Common base for all conversation feed events."""

    model_config = ConfigDict(extra="allow")
    type: str
    conversation_id: Optional[str] = None


class UtteranceAppendedEvent(_EventBase):
    type: str = "utterance_appended"
    utterance: Dict[str, Any]


class UtteranceReplacedEvent(_EventBase):
    type: str = "utterance_replaced"
    utterance: Dict[str, Any]


class UtteranceRemovedEvent(_EventBase):
    type: str = "utterance_removed"
    utterance_id: int


class TurnStateEvent(_EventBase):
    type: str = "turn_state"
    state: str
    pending_speaker: Optional[str] = None
    phase: Optional[str] = None


class GenerationFailedEvent(_EventBase):
    type: str = "generation_failed"
    persona_id: str
    error: str


class WatchdogFiredEvent(_EventBase):
    type: str = "watchdog_fired"
    waiting_for: str
    compensation: Optional[str] = None


class SubmitEnabledEvent(_EventBase):
    type: str = "submit_enabled"


class ConversationResetEvent(_EventBase):
    type: str = "conversation_reset"
    reason: str


class ConversationCompletedEvent(_EventBase):
    type: str = "conversation_completed"
    final_answer: str
    timed_out: bool = False
    transcript: List[Dict[str, Any]] = []


TurnEventModel = Union[
    UtteranceAppendedEvent,
    UtteranceReplacedEvent,
    UtteranceRemovedEvent,
    TurnStateEvent,
    GenerationFailedEvent,
    WatchdogFiredEvent,
    SubmitEnabledEvent,
    ConversationResetEvent,
    ConversationCompletedEvent,
]


_EVENT_MODEL_BY_TYPE: Dict[str, Type[_EventBase]] = {
    "utterance_appended": UtteranceAppendedEvent,
    "utterance_replaced": UtteranceReplacedEvent,
    "utterance_removed": UtteranceRemovedEvent,
    "turn_state": TurnStateEvent,
    "generation_failed": GenerationFailedEvent,
    "watchdog_fired": WatchdogFiredEvent,
    "submit_enabled": SubmitEnabledEvent,
    "conversation_reset": ConversationResetEvent,
    "conversation_completed": ConversationCompletedEvent,
}


def normalize_turn_event(event: Union[_EventBase, Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate and normalize one event into plain dict payload."""
    if isinstance(event, _EventBase):
        return event.model_dump(exclude_none=True)

    payload = dict(event)
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("conversation event must include non-empty string field 'type'")

    model_cls = _EVENT_MODEL_BY_TYPE.get(event_type)
    if model_cls is None:
        raise ValueError(f"unsupported conversation event type: {event_type}")

    return model_cls.model_validate(payload).model_dump(exclude_none=True)
