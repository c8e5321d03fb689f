"""
Countdown timer with pause support, driven by an injected scheduler.

    idle -> running <-> paused -> expired | stopped

Time is whole seconds. Unlimited sessions still tick (elapsed time is
tracked per question) but never count down, expire, or pause.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional

from .config import TICK_SECONDS
from .models import TimeMode

logger = logging.getLogger(__name__)


class ScheduledHandle:
    """Cancellation handle for a recurring job."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self.cancelled = False
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel:
            self._on_cancel()


class Scheduler(ABC):
    """Clock plus interval primitive."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledHandle:
        """Run `callback` every `interval` seconds until the handle is cancelled."""


class _Job:
    __slots__ = ("due", "interval", "callback", "handle")

    def __init__(self, due, interval, callback, handle):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.handle = handle


class ManualScheduler(Scheduler):
    """
    Scheduler advanced explicitly with `advance(seconds)`.

    Due jobs fire one at a time in time order, so timer ticks and auto-save
    ticks interleave exactly as they would on an event loop. Streamlit reruns
    use it by advancing with the wall-clock time elapsed since the last rerun.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._jobs: List[_Job] = []

    def now(self) -> float:
        return self._now

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = ScheduledHandle()
        self._jobs.append(_Job(self._now + interval, interval, callback, handle))
        return handle

    def pending(self) -> int:
        return sum(1 for job in self._jobs if not job.handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + max(0.0, seconds)
        while True:
            self._jobs = [job for job in self._jobs if not job.handle.cancelled]
            due = [job for job in self._jobs if job.due <= target]
            if not due:
                break
            # earliest first; registration order breaks ties
            job = min(due, key=lambda j: j.due)
            self._now = job.due
            job.due += job.interval
            job.callback()
        self._now = target


class AsyncioScheduler(Scheduler):
    """Scheduler on an asyncio event loop using call_later."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledHandle:
        state = {"timer": None}

        def _cancel():
            if state["timer"] is not None:
                state["timer"].cancel()

        handle = ScheduledHandle(on_cancel=_cancel)

        def _fire():
            if handle.cancelled:
                return
            state["timer"] = self.loop.call_later(interval, _fire)
            try:
                callback()
            except Exception:
                logger.exception("Scheduled callback failed")

        state["timer"] = self.loop.call_later(interval, _fire)
        return handle


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    EXPIRED = "expired"
    STOPPED = "stopped"


TERMINAL_STATES = frozenset({TimerState.EXPIRED, TimerState.STOPPED})


def format_time(seconds: Optional[int]) -> str:
    """M:SS, or H:MM:SS past an hour. Fractions are truncated, never rounded up."""
    if seconds is None:
        return "∞"
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class TimerController:
    """
    Owns the session clock.

    Args:
        scheduler: clock and interval source
        allotted_seconds: total time for a standard session, None for unlimited
        time_remaining: starting remaining time when resuming (defaults to the allotment)
        on_expire: auto-submit callback, invoked at most once
        on_tick: called after every tick while running, before expiry handling
    """

    def __init__(
        self,
        scheduler: Scheduler,
        allotted_seconds: Optional[int],
        time_remaining: Optional[int] = None,
        on_expire: Optional[Callable[[], None]] = None,
        on_tick: Optional[Callable[[], None]] = None,
    ):
        self.scheduler = scheduler
        self.allotted_seconds = allotted_seconds
        self.mode = TimeMode.UNLIMITED if allotted_seconds is None else TimeMode.STANDARD
        if self.mode is TimeMode.STANDARD:
            start = allotted_seconds if time_remaining is None else time_remaining
            self._remaining: Optional[int] = max(0, min(int(start), int(allotted_seconds)))
        else:
            self._remaining = None
        self.on_expire = on_expire
        self.on_tick = on_tick
        self.state = TimerState.IDLE
        self.elapsed_seconds = 0
        self._handle: Optional[ScheduledHandle] = None
        self._expire_fired = False

    @property
    def time_remaining(self) -> Optional[int]:
        return self._remaining

    @property
    def time_spent(self) -> int:
        """Seconds used out of the allotment; always 0 for unlimited sessions."""
        if self.mode is TimeMode.UNLIMITED:
            return 0
        return max(0, self.allotted_seconds - self._remaining)

    @property
    def is_active(self) -> bool:
        return self.state in (TimerState.RUNNING, TimerState.PAUSED)

    def start(self) -> None:
        if self.state is not TimerState.IDLE:
            logger.debug(f"start() ignored in state {self.state.value}")
            return
        if self.mode is TimeMode.STANDARD and self._remaining <= 0:
            self._expire()
            return
        self.state = TimerState.RUNNING
        self._schedule()

    def pause(self) -> bool:
        if self.mode is TimeMode.UNLIMITED or self.state is not TimerState.RUNNING:
            return False
        self._cancel()
        self.state = TimerState.PAUSED
        return True

    def resume(self) -> bool:
        if self.mode is TimeMode.UNLIMITED or self.state is not TimerState.PAUSED:
            return False
        self.state = TimerState.RUNNING
        self._schedule()
        return True

    def stop(self) -> None:
        self._cancel()
        if self.state not in TERMINAL_STATES:
            self.state = TimerState.STOPPED

    def _schedule(self) -> None:
        self._cancel()
        self._handle = self.scheduler.call_every(TICK_SECONDS, self._tick)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _tick(self) -> None:
        if self.state is not TimerState.RUNNING:
            return
        self.elapsed_seconds += TICK_SECONDS
        if self.mode is TimeMode.STANDARD:
            self._remaining = max(0, self._remaining - TICK_SECONDS)
        if self.on_tick:
            self.on_tick()
        if self.state is TimerState.RUNNING and self.mode is TimeMode.STANDARD and self._remaining == 0:
            self._expire()

    def _expire(self) -> None:
        self._cancel()
        self.state = TimerState.EXPIRED
        if self._expire_fired:
            return
        self._expire_fired = True
        logger.info("Timer expired")
        if self.on_expire:
            self.on_expire()
