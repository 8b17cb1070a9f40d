"""Hand-off of finished conversation summaries to persistence."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Protocol

import aiofiles

from ..models.conversation import ConversationSummary

logger = logging.getLogger(__name__)

_ANSWER_NOISE_RE = re.compile(r"[\s$\\{}]")


def answers_match(final_answer: Optional[str], canonical_answer: Optional[str]) -> Optional[bool]:
    """Loose comparison of a learner answer with the canonical one.

    Returns None when there is no canonical answer to compare against.
    """
    if not canonical_answer or not canonical_answer.strip():
        return None
    left = _ANSWER_NOISE_RE.sub("", (final_answer or "")).lower().rstrip(".")
    right = _ANSWER_NOISE_RE.sub("", canonical_answer).lower().rstrip(".")
    if not left:
        return False
    if left == right:
        return True
    try:
        return abs(float(left) - float(right)) < 1e-9
    except ValueError:
        return False


class SummarySink(Protocol):
    """Persistence collaborator receiving one summary per conversation."""

    async def save(self, summary: ConversationSummary) -> None: ...


class JsonlSummarySink:
    """Append summaries as JSON lines to a local file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def save(self, summary: ConversationSummary) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(summary.model_dump(mode="json"), ensure_ascii=False)
        async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
            await f.write(line + "\n")
        logger.info(
            "[SummarySink] Saved conversation %s (%s messages) to %s",
            summary.conversation_id,
            len(summary.transcript),
            self.path,
        )


class MemorySummarySink:
    """Keep summaries in memory; used when no persistence path is configured."""

    def __init__(self):
        self.summaries: List[ConversationSummary] = []

    async def save(self, summary: ConversationSummary) -> None:
        self.summaries.append(summary)
