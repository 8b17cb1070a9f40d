"""Address-token resolution and repair for routed utterances."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional

from .types import LEARNER_ID

DEFAULT_LEARNER_ALIASES = ("User", "Learner", "You")
DEFAULT_ADDRESS_CLAUSE = "what do you think about this?"

_GENERIC_TOKEN = r"[A-Za-z][\w-]*"
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def final_paragraph(text: str) -> str:
    """Return the last non-empty paragraph of a message."""
    paragraphs = [p for p in _PARAGRAPH_SPLIT_RE.split((text or "").strip()) if p.strip()]
    return paragraphs[-1] if paragraphs else ""


class AddressResolver:
    """Map ``@Name`` tokens to participant ids.

    Only the final paragraph is scanned; earlier paragraphs are content, not
    routing. When the final paragraph holds several tokens the last one wins.
    """

    def __init__(
        self,
        participant_names: Mapping[str, Iterable[str]],
        *,
        learner_aliases: Iterable[str] = DEFAULT_LEARNER_ALIASES,
    ):
        self._display_names: Dict[str, str] = {}
        self._lookup: Dict[str, str] = {}
        surface_names: List[str] = []

        learner_aliases = [alias for alias in learner_aliases if alias]
        self._display_names[LEARNER_ID] = learner_aliases[0] if learner_aliases else "User"
        for alias in [LEARNER_ID, *learner_aliases]:
            self._lookup[self.normalize(alias)] = LEARNER_ID
            surface_names.append(alias)

        for participant_id, names in participant_names.items():
            names = [name for name in names if name]
            self._display_names[participant_id] = names[0] if names else participant_id
            for name in [participant_id, *names]:
                key = self.normalize(name)
                if key and key not in self._lookup:
                    self._lookup[key] = participant_id
                surface_names.append(name)

        self._token_re = self._build_token_pattern(surface_names)

    @classmethod
    def for_personas(cls, personas: Iterable, **kwargs) -> "AddressResolver":
        """Build a resolver from persona models (display name first, then id)."""
        return cls({p.id: [p.display_name] for p in personas}, **kwargs)

    @staticmethod
    def _build_token_pattern(surface_names: Iterable[str]) -> "re.Pattern[str]":
        # Known names first, longest first, so "@Peer B" is not read as "@Peer".
        names = sorted({n.strip() for n in surface_names if n and n.strip()}, key=len, reverse=True)
        known = "|".join(r"\s+".join(re.escape(part) for part in name.split()) for name in names)
        return re.compile(
            rf"@(?:(?P<known>{known})(?![\w-])|(?P<generic>{_GENERIC_TOKEN}))",
            re.IGNORECASE,
        )

    @staticmethod
    def normalize(value: str) -> str:
        return "".join(ch.lower() for ch in (value or "") if ch.isalnum())

    @property
    def participants(self) -> List[str]:
        return list(self._display_names)

    def resolve(self, text: str) -> Optional[str]:
        """Return the addressed participant id, or None when unaddressed."""
        addressed: Optional[str] = None
        for match in self._token_re.finditer(final_paragraph(text)):
            participant_id = self._lookup.get(self.normalize(match.group("known") or match.group("generic")))
            if participant_id is not None:
                addressed = participant_id
        return addressed

    def token_for(self, participant_id: str) -> str:
        """Single-word token for a participant, e.g. ``@PeerB`` for "Peer B"."""
        name = self._display_names.get(participant_id, participant_id)
        return "@" + "".join(name.split())

    def repair(
        self,
        text: str,
        target: str,
        *,
        clause: str = DEFAULT_ADDRESS_CLAUSE,
    ) -> str:
        """Guarantee that ``text`` resolves to ``target``.

        Generated text that already closes on the right token is returned
        unchanged; otherwise a closing paragraph addressing ``target`` is added.
        """
        if self.resolve(text) == target:
            return text
        body = (text or "").rstrip()
        addition = f"{self.token_for(target)}, {clause}"
        return f"{body}\n\n{addition}" if body else addition
