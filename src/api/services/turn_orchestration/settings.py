"""Scenario normalization and participant resolution."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from src.api.models.persona import Persona

from .types import ScenarioConfig, ScenarioMode


class ScenarioResolver:
    """Normalize a requested scenario mode and pick its participants."""

    ALLOWED_MODES = ("solo", "single", "multi", "group")
    _MODE_ALIASES = {
        "alone": "solo",
        "tutor": "single",
        "one": "single",
        "full": "multi",
        "peers": "group",
    }
    # (tutors, peers) each mode needs.
    _ROLE_REQUIREMENTS: Dict[str, tuple] = {
        "solo": (0, 0),
        "single": (1, 0),
        "multi": (1, 2),
        "group": (0, 2),
    }

    @classmethod
    def normalize_mode(cls, mode: Optional[str]) -> ScenarioMode:
        """Normalize a user-provided mode string; raise on unknown values."""
        normalized = str(mode or "").strip().lower()
        normalized = cls._MODE_ALIASES.get(normalized, normalized)
        if normalized not in cls.ALLOWED_MODES:
            raise ValueError(f"unsupported scenario mode: {mode!r}")
        return normalized  # type: ignore[return-value]

    @classmethod
    def resolve(
        cls,
        *,
        mode: Optional[str],
        personas: Iterable[Persona],
        participant_ids: Optional[Sequence[str]] = None,
    ) -> ScenarioConfig:
        """Build the immutable scenario config for one conversation.

        When ``participant_ids`` is omitted, the first personas of each role in
        configuration order are used.
        """
        normalized_mode = cls.normalize_mode(mode)
        available: Dict[str, Persona] = {p.id: p for p in personas}

        if participant_ids:
            missing = [pid for pid in participant_ids if pid not in available]
            if missing:
                raise ValueError(f"unknown persona ids: {', '.join(missing)}")
            candidates = [available[pid] for pid in participant_ids]
        else:
            candidates = list(available.values())

        tutors_needed, peers_needed = cls._ROLE_REQUIREMENTS[normalized_mode]
        tutors = [p for p in candidates if p.role == "tutor"]
        peers = [p for p in candidates if p.role == "peer"]
        if participant_ids and (len(tutors) != tutors_needed or len(peers) != peers_needed):
            raise ValueError(
                f"mode {normalized_mode} needs {tutors_needed} tutor(s) and {peers_needed} peer(s), "
                f"got {len(tutors)} and {len(peers)}"
            )
        if len(tutors) < tutors_needed or len(peers) < peers_needed:
            raise ValueError(
                f"mode {normalized_mode} needs {tutors_needed} tutor(s) and {peers_needed} peer(s) configured"
            )

        participants: List[Persona] = tutors[:tutors_needed] + peers[:peers_needed]
        return ScenarioConfig(
            mode=normalized_mode,
            participants=tuple(participants),
            must_address_rule=normalized_mode in ("multi", "group"),
        )
