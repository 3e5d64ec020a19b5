"""Countdown state machine for a single active exercise.

The timer never reads a clock. Whoever drives it (the browser posting once a
second, a test, a background thread) calls ``tick(elapsed_seconds)`` and the
session advances one second at a time through its phases.
"""

import threading
from contextlib import contextmanager

from .defaults import (
    KEGEL_CONFIGS,
    KEGEL_KINDS,
    BREATHING_PHASES,
    PHASE_LABELS,
    DEFAULT_DIFFICULTY,
)
from .schedule import format_time


class TimerSession:
    """One running exercise: phase, remaining seconds and Kegel set counter."""

    def __init__(self, exercise: dict, day: str | None = None):
        self.exercise = exercise
        self.day = day
        self.kind = exercise["kind"]
        self.phase = None
        self.remaining_seconds = 0
        self.current_set = 1
        self.total_sets = 0
        self.contract_seconds = 0
        self.relax_seconds = 0
        self.running = False
        self.finished = False
        self.cancelled = False
        # Completion row already written, stats still owed
        self.recorded = False

        if self.is_kegel:
            config = KEGEL_CONFIGS[exercise.get("difficulty") or DEFAULT_DIFFICULTY]
            self.contract_seconds = config["contract_seconds"]
            self.relax_seconds = config["relax_seconds"]
            self.total_sets = config["sets"]

    @property
    def is_kegel(self) -> bool:
        return self.kind in KEGEL_KINDS

    @property
    def active(self) -> bool:
        return not (self.finished or self.cancelled)

    @property
    def can_complete(self) -> bool:
        return not self.cancelled and not self.running

    @property
    def phase_label(self) -> str:
        return PHASE_LABELS.get(self.phase, "")

    @property
    def display_time(self) -> str:
        return format_time(self.remaining_seconds)

    def start(self):
        self.current_set = 1
        self.finished = False
        self.cancelled = False
        if self.is_kegel:
            self.phase = "contract"
            self.remaining_seconds = self.contract_seconds
        elif self.kind == "breathing":
            self.phase, self.remaining_seconds = BREATHING_PHASES[0]
        else:
            self.phase = "countdown"
            self.remaining_seconds = int(self.exercise.get("duration_seconds") or 0)
        self.running = True
        return self

    def pause(self):
        self.running = False

    def resume(self):
        if self.active:
            self.running = True

    def cancel(self):
        self.running = False
        self.cancelled = True

    def tick(self, elapsed_seconds: int = 1):
        """Advance the countdown; ignored unless running."""
        for _ in range(max(0, int(elapsed_seconds))):
            if not self.running or not self.active:
                break
            self._step()

    def _step(self):
        if self.remaining_seconds > 1:
            self.remaining_seconds -= 1
            return

        if self.is_kegel:
            self._advance_kegel()
        elif self.kind == "breathing":
            self._advance_breathing()
        else:
            # Start-Stop holds at zero until the user acts
            self.remaining_seconds = 0

    def _advance_kegel(self):
        if self.phase == "contract":
            self.phase = "relax"
            self.remaining_seconds = self.relax_seconds
            return

        self.current_set += 1
        if self.current_set > self.total_sets:
            self.running = False
            self.finished = True
            self.remaining_seconds = 0
            return

        self.phase = "contract"
        self.remaining_seconds = self.contract_seconds

    def _advance_breathing(self):
        names = [name for name, _ in BREATHING_PHASES]
        idx = names.index(self.phase) if self.phase in names else -1
        self.phase, self.remaining_seconds = BREATHING_PHASES[(idx + 1) % len(BREATHING_PHASES)]

    def to_dict(self) -> dict:
        return {
            "exercise": self.exercise,
            "day": self.day,
            "phase": self.phase,
            "remaining_seconds": self.remaining_seconds,
            "current_set": self.current_set,
            "running": self.running,
            "finished": self.finished,
            "cancelled": self.cancelled,
            "recorded": self.recorded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TimerSession":
        timer = cls(data["exercise"], data.get("day"))
        timer.phase = data.get("phase")
        timer.remaining_seconds = int(data.get("remaining_seconds") or 0)
        timer.current_set = int(data.get("current_set") or 1)
        timer.running = bool(data.get("running"))
        timer.finished = bool(data.get("finished"))
        timer.cancelled = bool(data.get("cancelled"))
        timer.recorded = bool(data.get("recorded"))
        return timer

    def state(self) -> dict:
        """Values the timer page displays."""
        return {
            "exercise_id": self.exercise["id"],
            "kind": self.kind,
            "name": self.exercise.get("name"),
            "phase": self.phase,
            "phase_label": self.phase_label,
            "remaining_seconds": self.remaining_seconds,
            "display_time": self.display_time,
            "current_set": self.current_set if self.is_kegel else None,
            "total_sets": self.total_sets if self.is_kegel else None,
            "running": self.running,
            "finished": self.finished,
            "can_complete": self.can_complete,
        }


class TimerStore:
    """Active timers kept in process memory, at most one per user.

    Every read-modify-write for a user goes through that user's lock, so a
    tick can never interleave with a pause, resume or completion.
    """

    def __init__(self):
        self._timers = {}
        self._locks = {}
        self._guard = threading.Lock()

    def _lock_for(self, user_id):
        with self._guard:
            return self._locks.setdefault(user_id, threading.RLock())

    @contextmanager
    def edit(self, user_id):
        """Hold the user's lock and yield their timer (None when idle)."""
        with self._lock_for(user_id):
            yield self._timers.get(user_id)

    def get(self, user_id):
        with self._lock_for(user_id):
            return self._timers.get(user_id)

    def put(self, user_id, timer: TimerSession):
        """Make ``timer`` the user's active timer, returning the one it replaced."""
        with self._lock_for(user_id):
            previous = self._timers.get(user_id)
            self._timers[user_id] = timer
            return previous

    def discard(self, user_id):
        with self._lock_for(user_id):
            return self._timers.pop(user_id, None)

    def clear(self):
        with self._guard:
            self._timers.clear()
            self._locks.clear()
