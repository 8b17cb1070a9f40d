"""Append-only, id-ordered transcript with placeholder replace/remove."""

from __future__ import annotations

import logging
from dataclasses import replace as dc_replace
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import MessageNotFoundError
from .types import PLACEHOLDER_TEXT, Utterance, utc_now

logger = logging.getLogger(__name__)

LogListener = Callable[[str, Utterance], None]


class MessageLog:
    """Single source of truth for the transcript.

    ``append`` is the only place ids are issued. Ids come from a counter that
    only moves forward, so removed placeholders retire their id for good.
    ``replace`` and ``remove`` keep the order of surrounding entries.
    """

    def __init__(self, *, first_id: int = 1):
        self._messages: List[Utterance] = []
        self._next_id = max(int(first_id), 1)
        self._listeners: List[LogListener] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Utterance]:
        return iter(list(self._messages))

    @property
    def next_id(self) -> int:
        return self._next_id

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def append(self, speaker: str, text: str, *, placeholder: bool = False) -> Utterance:
        utterance = Utterance(
            id=self._next_id,
            speaker=speaker,
            text=PLACEHOLDER_TEXT if placeholder else text,
            placeholder=placeholder,
        )
        self._next_id += 1
        self._messages.append(utterance)
        self._publish("utterance_appended", utterance)
        return utterance

    def replace(self, message_id: int, text: str) -> Utterance:
        index = self._index_of(message_id)
        finalized = dc_replace(
            self._messages[index],
            text=text,
            placeholder=False,
            created_at=utc_now(),
        )
        self._messages[index] = finalized
        self._publish("utterance_replaced", finalized)
        return finalized

    def remove(self, message_id: int) -> Utterance:
        index = self._index_of(message_id)
        removed = self._messages.pop(index)
        self._publish("utterance_removed", removed)
        return removed

    def contains(self, message_id: int) -> bool:
        return any(message.id == message_id for message in self._messages)

    def get(self, message_id: int) -> Utterance:
        return self._messages[self._index_of(message_id)]

    def last(self, *, include_placeholders: bool = False) -> Optional[Utterance]:
        for message in reversed(self._messages):
            if include_placeholders or not message.placeholder:
                return message
        return None

    def snapshot(self) -> List[Dict[str, Any]]:
        return [message.to_dict() for message in self._messages]

    def _index_of(self, message_id: int) -> int:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        raise MessageNotFoundError(message_id)

    def _publish(self, kind: str, utterance: Utterance) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, utterance)
            except Exception as e:
                logger.warning("[MessageLog] Listener failed for %s #%s: %s", kind, utterance.id, e)
