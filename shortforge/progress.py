"""Progress synthesis for exports.

Reported progress is an integer percentage that never goes backwards. Two
real signals feed the render band (ffmpeg's ``-progress`` output time and the
``time=`` field of its stats log), and a time-based ramp fills in while
neither has produced anything yet.
"""

import math
import threading
import time
from typing import Callable

# Checkpoints on the 0-100 scale shown to the caller.
INIT = 1
MOUNTED = 4
FONT_READY = 6
PRE_RENDER = 8
RENDER_MAX = 92
READ_OUTPUT = 94
VALIDATE_OUTPUT = 95
PACKAGED = 96
DONE = 100

RAMP_QUICK_TARGET = 82


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


class ProgressReducer:
    """Monotonic progress: ``advance`` only ever moves forward.

    The callback receives ``(stage, fraction)`` with fraction in ``[0, 1]``.
    Safe to call from the ramp thread and the render thread at once.
    """

    def __init__(self, on_progress: Callable[[str, float], None] | None = None):
        self._on_progress = on_progress
        self._lock = threading.Lock()
        self.current = 0
        self.stage = ""

    def advance(self, pct: float, stage: str | None = None) -> bool:
        if not math.isfinite(pct):
            return False
        nxt = round(_clamp(pct, 0, 100))
        with self._lock:
            if stage:
                self.stage = stage
            if nxt <= self.current:
                return False
            self.current = nxt
            # Reported under the lock so callers see values in order
            if self._on_progress:
                self._on_progress(self.stage, nxt / 100)
        return True

    def advance_render(self, render_pct: float) -> bool:
        """Map a 0-100 render percentage into the render band."""
        if not math.isfinite(render_pct):
            return False
        span = RENDER_MAX - PRE_RENDER
        return self.advance(PRE_RENDER + _clamp(render_pct, 0, 100) / 100 * span)


class TimeBaseline:
    """Rebases processed-time readings so each attempt starts from zero.

    A reading that jumps backwards by more than a quarter second (a retry, or
    a pre-seek reporting source time) becomes the new baseline.
    """

    def __init__(self):
        self._baseline: float | None = None

    def reset(self) -> None:
        self._baseline = None

    def normalize(self, seconds: float) -> float:
        if not math.isfinite(seconds) or seconds <= 0:
            return 0.0
        if self._baseline is None or seconds + 0.25 < self._baseline:
            self._baseline = seconds
            return 0.0
        return max(0.0, seconds - self._baseline)


def ramp_value(elapsed: float, start_pct: float, clip_duration: float) -> float:
    """Synthetic render progress after *elapsed* seconds.

    Eases out quickly towards 82%, then creeps asymptotically towards one
    below the end of the render band.
    """
    quick = max(4.0, clip_duration * 2.5)
    tail_tau = max(12.0, clip_duration * 5.0)
    ceiling = RENDER_MAX - 1

    if elapsed <= quick:
        linear = _clamp(elapsed / quick, 0, 1)
        eased = 1 - (1 - linear) ** 3
        return start_pct + (RAMP_QUICK_TARGET - start_pct) * eased

    tail = 1 - math.exp(-(elapsed - quick) / tail_tau)
    return RAMP_QUICK_TARGET + (ceiling - RAMP_QUICK_TARGET) * tail


class RampTicker:
    """Drives :func:`ramp_value` into a reducer every *interval* seconds."""

    def __init__(
        self,
        reducer: ProgressReducer,
        clip_duration: float,
        interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._reducer = reducer
        self._clip_duration = clip_duration
        self._interval = interval
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._start_pct = PRE_RENDER
        self._started_at = 0.0

    def tick(self) -> None:
        elapsed = self._clock() - self._started_at
        self._reducer.advance(ramp_value(elapsed, self._start_pct, self._clip_duration))

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.tick()

    def start(self) -> None:
        self._start_pct = max(self._reducer.current, PRE_RENDER)
        self._started_at = self._clock()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "RampTicker":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
