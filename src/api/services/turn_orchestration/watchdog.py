"""Single-armed inactivity timer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    """Anything exposing ``call_later``; the asyncio loop qualifies."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


@dataclass
class WatchdogHandle:
    """One arming of a watchdog. ``live`` flips to False on disarm or fire."""

    waiting_for: str
    timeout_seconds: float
    live: bool = True
    _timer: Optional[TimerHandle] = field(default=None, repr=False)


class InactivityWatchdog:
    """Timer that fires a compensation when a participant stays silent.

    Only one arming is active at a time: arming again disarms the previous
    handle. ``on_fire`` runs only when the handle is still live at fire time.
    """

    def __init__(self, *, name: str = "watchdog", scheduler: Optional[TimerScheduler] = None):
        self.name = name
        self._scheduler = scheduler
        self._current: Optional[WatchdogHandle] = None

    @property
    def armed(self) -> Optional[WatchdogHandle]:
        return self._current

    def arm(
        self,
        waiting_for: str,
        timeout_seconds: float,
        on_fire: Callable[[str], None],
    ) -> WatchdogHandle:
        self.disarm()
        handle = WatchdogHandle(waiting_for=waiting_for, timeout_seconds=float(timeout_seconds))

        def _fire() -> None:
            if not handle.live or self._current is not handle:
                return
            handle.live = False
            self._current = None
            logger.info("[Watchdog:%s] Fired waiting for %s after %.1fs", self.name, waiting_for, timeout_seconds)
            on_fire(waiting_for)

        scheduler = self._scheduler or asyncio.get_running_loop()
        handle._timer = scheduler.call_later(float(timeout_seconds), _fire)
        self._current = handle
        return handle

    def disarm(self, handle: Optional[WatchdogHandle] = None) -> None:
        """Disarm ``handle`` (or the current arming when omitted)."""
        target = handle or self._current
        if target is None:
            return
        target.live = False
        if target._timer is not None:
            target._timer.cancel()
        if self._current is target:
            self._current = None
