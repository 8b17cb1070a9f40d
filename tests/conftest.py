"""Shared pytest fixtures for all tests."""

import asyncio
import shutil
import uuid
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import pytest

from src.api.models.persona import Persona
from src.api.services.turn_orchestration.types import GenerationOptions, Problem, Utterance


def _create_workspace_temp_dir(kind: str) -> Path:
    """Create a temporary directory under repository-local .pytest_work."""
    repo_root = Path(__file__).resolve().parents[1]
    root_dir = repo_root / ".pytest_work" / kind
    root_dir.mkdir(parents=True, exist_ok=True)
    temp_dir = root_dir / f"{kind}_{uuid.uuid4().hex[:8]}"
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir


@pytest.fixture
def tmp_path():
    """Workspace-local replacement for pytest's tmp_path fixture."""
    temp_dir = _create_workspace_temp_dir("tmp_path")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


class _FakeTimer:
    def __init__(self, due: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.due = due
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """Manual ``call_later`` scheduler; timers only fire on ``advance``."""

    def __init__(self):
        self.now = 0.0
        self.timers: List[_FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _FakeTimer:
        timer = _FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[_FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> int:
        """Move time forward and run due timers in order; returns how many fired."""
        target = self.now + seconds
        fired = 0
        while True:
            due = sorted(
                (t for t in self.timers if not t.cancelled and t.due <= target),
                key=lambda t: t.due,
            )
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback(*timer.args)
            fired += 1
        self.now = target
        return fired


class ScriptedClient:
    """Text-generation fake.

    With ``hold=True`` every call parks on a future that the test resolves via
    ``release``; otherwise replies are popped from ``replies`` (an Exception
    entry is raised instead of returned).
    """

    def __init__(self, replies: Optional[Sequence[Any]] = None, *, hold: bool = False):
        self.replies = list(replies or [])
        self.hold = hold
        self.calls: List[Tuple[Tuple[Utterance, ...], GenerationOptions]] = []
        self.pending: List[asyncio.Future] = []

    async def generate_response(self, context, options):
        self.calls.append((tuple(context), options))
        if self.hold:
            future = asyncio.get_running_loop().create_future()
            self.pending.append(future)
            result = await future
        elif self.replies:
            result = self.replies.pop(0)
        else:
            result = f"reply {len(self.calls)}"
        if isinstance(result, Exception):
            raise result
        return result

    def release(self, index: int, text: Any) -> None:
        future = self.pending[index]
        if isinstance(text, Exception):
            future.set_exception(text)
        else:
            future.set_result(text)


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tutor():
    return Persona(
        id="bob",
        display_name="Bob",
        role="tutor",
        system_prompt="You are Bob, a math tutor.",
    )


@pytest.fixture
def peer_a():
    return Persona(
        id="arithmetic",
        display_name="Alice",
        role="peer",
        error_profile="arithmetic slips",
        system_prompt="You are Alice.",
    )


@pytest.fixture
def peer_b():
    return Persona(
        id="concept",
        display_name="Charlie",
        role="peer",
        error_profile="wrong concept",
        system_prompt="You are Charlie.",
    )


@pytest.fixture
def personas(tutor, peer_a, peer_b):
    return [tutor, peer_a, peer_b]


@pytest.fixture
def problem():
    return Problem(problem_id="q1", statement="What is 6 x 7?", answer="42")


@pytest.fixture
def make_client():
    """Factory for ScriptedClient instances."""
    return ScriptedClient


@pytest.fixture
def settle_tasks():
    return settle
