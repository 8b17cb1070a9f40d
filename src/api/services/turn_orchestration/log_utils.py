"""Shared log/text helpers for turn orchestration."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .types import Utterance


def truncate_log_text(text: Optional[str], max_chars: int = 1600) -> str:
    """Trim text for debug logs while preserving head and tail context."""
    content = (text or "").replace("\r", "")
    if len(content) <= max_chars:
        return content
    head = int(max_chars * 0.7)
    tail = max_chars - head
    return f"{content[:head]}\n...[truncated]...\n{content[-tail:]}"


def build_context_preview_for_log(
    messages: Iterable[Utterance],
    *,
    max_messages: int = 10,
    max_chars: int = 220,
) -> List[Dict[str, Any]]:
    """Build a compact recent transcript view for turn debugging."""
    preview: List[Dict[str, Any]] = []
    for msg in list(messages)[-max_messages:]:
        preview.append(
            {
                "id": msg.id,
                "speaker": msg.speaker,
                "text": truncate_log_text(msg.text, max_chars),
            }
        )
    return preview
