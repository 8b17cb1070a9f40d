"""
Repository layout for persona configs and conversation summaries.

- config/defaults/personas.yaml: tracked persona cast
- config/local/personas.yaml: writable per-instance override (gitignored)
- data/state/summaries.jsonl: finished conversation summaries (gitignored)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

PERSONAS_FILENAME = "personas.yaml"
SUMMARIES_FILENAME = "summaries.jsonl"


@lru_cache(maxsize=1)
def repo_root() -> Path:
    # src/api/paths.py -> api/ -> src/ -> repo root
    return Path(__file__).resolve().parents[2]


def default_personas_path() -> Path:
    return repo_root() / "config" / "defaults" / PERSONAS_FILENAME


def local_personas_path() -> Path:
    return repo_root() / "config" / "local" / PERSONAS_FILENAME


def default_summaries_path() -> Path:
    return repo_root() / "data" / "state" / SUMMARIES_FILENAME


def bootstrap_personas_file(local_path: Path, defaults_path: Optional[Path], fallback_text: str) -> bool:
    """Create ``local_path`` from the tracked defaults, or from ``fallback_text``.

    Returns True when a new file was written.
    """
    if local_path.exists():
        return False
    local_path.parent.mkdir(parents=True, exist_ok=True)
    if defaults_path is not None and defaults_path.exists():
        local_path.write_text(defaults_path.read_text(encoding="utf-8"), encoding="utf-8")
    else:
        local_path.write_text(fallback_text, encoding="utf-8")
    return True


def personas_read_path(local_path: Path, defaults_path: Optional[Path]) -> Path:
    """Local override wins; fall back to the tracked defaults."""
    if local_path.exists() or defaults_path is None or not defaults_path.exists():
        return local_path
    return defaults_path
