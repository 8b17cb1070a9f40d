"""Generation controller: one collaborator call per agent turn."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol, Sequence

from .errors import CollaboratorError, GenerationFailed
from .log_utils import truncate_log_text
from .types import GenerationOptions, GenerationToken, TurnDirective, Utterance

logger = logging.getLogger(__name__)


class TextGenerationClient(Protocol):
    """Black-box text-generation collaborator."""

    async def generate_response(
        self,
        context: Sequence[Utterance],
        options: GenerationOptions,
    ) -> str: ...


class GenerationController:
    """Runs one persona turn against the collaborator under a cancel token.

    The controller never touches conversation state itself: placeholder
    creation, commit and discard all go through the callables supplied by the
    orchestrator. Liveness is checked before the call, after the call and
    right before commit, so a superseded call can only ever remove its own
    placeholder.
    """

    def __init__(
        self,
        *,
        client: TextGenerationClient,
        open_placeholder: Callable[[str], Utterance],
        commit: Callable[[int, str], Utterance],
        discard: Callable[[int], None],
        is_live: Callable[[GenerationToken], bool],
        build_options: Callable[[TurnDirective], GenerationOptions],
        timeout_seconds: Optional[float] = None,
    ):
        self.client = client
        self.open_placeholder = open_placeholder
        self.commit = commit
        self.discard = discard
        self.is_live = is_live
        self.build_options = build_options
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def cancel(token: Optional[GenerationToken], reason: Optional[str] = None) -> None:
        if token is not None:
            token.cancel(reason)

    async def generate(self, turn: TurnDirective, token: GenerationToken) -> Optional[Utterance]:
        """Generate and commit one utterance; returns None when cancelled."""
        if not self.is_live(token):
            logger.info("[Generation] #%s for %s cancelled before start", token.token, turn.persona_id)
            return None

        placeholder = self.open_placeholder(turn.persona_id)
        if not self.is_live(token):
            self.discard(placeholder.id)
            return None

        options = self.build_options(turn)
        try:
            raw = await self._call_collaborator(turn, options)
        except asyncio.CancelledError:
            self.discard(placeholder.id)
            raise
        except CollaboratorError as e:
            self.discard(placeholder.id)
            if not self.is_live(token):
                logger.info("[Generation] #%s failed after cancellation; ignoring: %s", token.token, e)
                return None
            logger.warning("[Generation] #%s for %s failed: %s", token.token, turn.persona_id, e)
            raise GenerationFailed(turn.persona_id, str(e)) from e

        if not self.is_live(token):
            logger.info(
                "[Generation] Discarding stale result #%s for %s (%s)",
                token.token,
                turn.persona_id,
                token.reason if token.cancelled else "superseded",
            )
            self.discard(placeholder.id)
            return None

        text = turn.postprocess(raw) if turn.postprocess else raw
        if not self.is_live(token):
            self.discard(placeholder.id)
            return None

        logger.info(
            "[Generation] #%s committed for %s: %s",
            token.token,
            turn.persona_id,
            truncate_log_text(text, 200),
        )
        return self.commit(placeholder.id, text)

    async def _call_collaborator(self, turn: TurnDirective, options: GenerationOptions) -> str:
        call = self.client.generate_response(turn.context, options)
        try:
            if self.timeout_seconds and self.timeout_seconds > 0:
                raw = await asyncio.wait_for(call, timeout=self.timeout_seconds)
            else:
                raw = await call
        except asyncio.TimeoutError as e:
            raise CollaboratorError(f"generation timed out after {self.timeout_seconds}s") from e
        except CollaboratorError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise CollaboratorError(str(e) or e.__class__.__name__) from e

        if not isinstance(raw, str) or not raw.strip():
            raise CollaboratorError("malformed response: expected non-empty text")
        return raw.strip()
