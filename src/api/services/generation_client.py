"""LangChain-backed text-generation collaborator for persona turns."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from src.agents.simple_llm import call_llm

from .turn_orchestration.errors import CollaboratorError
from .turn_orchestration.types import LEARNER_ID, GenerationOptions, Utterance

logger = logging.getLogger(__name__)

LLMCall = Callable[..., str]


class LangChainGenerationClient:
    """Run ``call_llm`` in a worker thread and map failures to CollaboratorError."""

    def __init__(
        self,
        *,
        speaker_names: Optional[Mapping[str, str]] = None,
        llm_call: LLMCall = call_llm,
    ):
        self.speaker_names: Dict[str, str] = dict(speaker_names or {})
        self._llm_call = llm_call

    def to_messages(self, context: Sequence[Utterance]) -> List[Dict[str, str]]:
        """Learner turns become user messages; persona turns carry their speaker name."""
        messages: List[Dict[str, str]] = []
        for utterance in context:
            if utterance.placeholder:
                continue
            if utterance.speaker == LEARNER_ID:
                messages.append({"role": "user", "content": utterance.text})
            else:
                name = self.speaker_names.get(utterance.speaker, utterance.speaker)
                messages.append({"role": "assistant", "content": f"{name}: {utterance.text}"})
        return messages

    async def generate_response(
        self,
        context: Sequence[Utterance],
        options: GenerationOptions,
    ) -> str:
        messages = self.to_messages(context)
        try:
            text = await asyncio.to_thread(
                self._llm_call,
                messages,
                persona_id=options.persona_id or "unknown",
                model_id=options.model_id,
                system_prompt=options.system_prompt,
                temperature=options.temperature,
            )
        except Exception as e:
            raise CollaboratorError(f"{e.__class__.__name__}: {e}") from e

        if not isinstance(text, str) or not text.strip():
            raise CollaboratorError("malformed response: empty text")
        return self._strip_own_name(text.strip())

    def _strip_own_name(self, text: str) -> str:
        # Models sometimes echo the "Name: " prefix used in the context.
        for name in self.speaker_names.values():
            prefix = f"{name}:"
            if text.startswith(prefix):
                return text[len(prefix):].lstrip() or text
        return text
