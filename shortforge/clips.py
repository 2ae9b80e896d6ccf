"""Clip window model — clamping, trimming and caption selection.

Every function here is pure: windows are frozen and each operation returns a
new one.
"""

import math
from dataclasses import dataclass, field, replace

from shortforge.models import ClipWindow, ShortPlan, TimedTextEntry, TrimNudges

CLAMP_MIN_DURATION = 0.5
EXPORT_MIN_DURATION = 0.25
TRIM_MIN_DURATION = 1.0


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def _finite(value: float | None) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def clamp_to_source_duration(
    window: ClipWindow,
    source_duration: float,
    min_duration: float = CLAMP_MIN_DURATION,
) -> ClipWindow:
    """Shift and clamp *window* so it lies inside ``[0, source_duration]``.

    The requested duration is preserved where it fits. When the window is too
    short it is stretched to *min_duration*, anchored at the end. An unknown
    or non-positive source duration leaves the window untouched.
    """
    if not _finite(source_duration) or source_duration <= 0:
        return window

    if (
        window.start >= 0
        and window.end <= source_duration
        and window.duration >= min_duration
    ):
        return window

    raw_duration = (
        window.duration
        if _finite(window.duration) and window.duration > 0
        else max(0.0, window.end - window.start)
    )
    target = _clamp(raw_duration, min_duration, source_duration)
    max_start = max(0.0, source_duration - target)

    start = window.start if _finite(window.start) else 0.0
    start = _clamp(start, 0.0, max_start)
    end = start + target

    if end > source_duration:
        end = source_duration
        start = max(0.0, end - target)
    duration = end - start

    return replace(
        window,
        start=round(start, 3),
        end=round(end, 3),
        duration=round(duration, 3),
    )


def apply_trim_nudges(
    window: ClipWindow,
    nudges: TrimNudges,
    source_duration: float | None = None,
) -> ClipWindow:
    """Move the window edges by *nudges*, keeping at least one second of clip."""
    if _finite(source_duration):
        max_end = max(TRIM_MIN_DURATION, round(source_duration, 2))
        max_start = max(0.0, max_end - TRIM_MIN_DURATION)
    else:
        max_end = math.inf
        max_start = math.inf

    start = round(_clamp(round(window.start + nudges.start, 2), 0.0, max_start), 2)
    min_end = round(start + TRIM_MIN_DURATION, 2)
    unclamped_end = round(window.end + nudges.end, 2)
    end = round(_clamp(max(min_end, unclamped_end), min_end, max_end), 2)

    return replace(window, start=start, end=end, duration=round(end - start, 2))


def derive_trim_nudges(base: ClipWindow, saved: ClipWindow) -> TrimNudges:
    """Recover the nudges that turn *base* into *saved*."""
    return TrimNudges(
        start=round(saved.start - base.start, 2),
        end=round(saved.end - base.end, 2),
    )


def overlapping_entries(
    window: ClipWindow, entries: list[TimedTextEntry]
) -> list[TimedTextEntry]:
    """Return entries whose ``[start, end)`` overlaps the window."""
    selected: list[TimedTextEntry] = []
    for entry in entries:
        end = entry.end if entry.end is not None else entry.start
        if entry.start < window.end and end > window.start:
            selected.append(entry)
    return selected


def find_active_entry(
    entries: list[TimedTextEntry], time_seconds: float
) -> TimedTextEntry | None:
    """Return the entry showing at *time_seconds*, if any.

    An open-ended entry stays active until a later entry starts.
    """
    ordered = sorted(entries, key=lambda e: e.start)
    active: TimedTextEntry | None = None
    for i, entry in enumerate(ordered):
        if entry.start > time_seconds:
            break
        if entry.end is None:
            next_start = ordered[i + 1].start if i + 1 < len(ordered) else math.inf
            if time_seconds < next_start:
                active = entry
        elif time_seconds < entry.end:
            # Latest-starting entry that contains the time
            active = entry
    return active


def to_clip_relative(window: ClipWindow, entry: TimedTextEntry) -> TimedTextEntry:
    """Translate an entry from source time into clip time."""
    end = None if entry.end is None else entry.end - window.start
    return TimedTextEntry(text=entry.text, start=entry.start - window.start, end=end)


@dataclass
class ExportPreparation:
    """A clip window made safe for export, plus the captions that fall in it."""

    clip: ClipWindow
    entries: list[TimedTextEntry] = field(default_factory=list)
    adjusted_to_source: bool = False
    adjustment_notice: str | None = None
    min_duration: float = EXPORT_MIN_DURATION
    validation_error: str | None = None

    @property
    def duration_valid(self) -> bool:
        return self.validation_error is None


def prepare_export(
    requested: ClipWindow,
    entries: list[TimedTextEntry],
    source_duration: float | None = None,
    min_duration: float = EXPORT_MIN_DURATION,
    tolerance: float = 0.02,
) -> ExportPreparation:
    """Clamp *requested* to the source and select its captions.

    The result carries a validation error rather than raising, so callers can
    show the message before any render is attempted.
    """
    tolerance = max(0.0, tolerance)
    min_duration = max(0.01, min_duration)

    # Checked before clamping, which stretches short windows
    requested_duration = (
        requested.duration
        if _finite(requested.duration) and requested.duration > 0
        else requested.end - requested.start
    )

    clip = (
        clamp_to_source_duration(requested, source_duration)
        if _finite(source_duration)
        else requested
    )
    adjusted = (
        abs(clip.start - requested.start) > tolerance
        or abs(clip.end - requested.end) > tolerance
    )

    duration = clip.duration if _finite(clip.duration) and clip.duration > 0 else clip.end - clip.start
    error = None
    if (
        not _finite(duration)
        or not _finite(requested_duration)
        or min(duration, requested_duration) < min_duration
    ):
        error = (
            "Selected clip is too short to export. "
            f"Increase duration to at least {min_duration:.2f}s."
        )

    notice = None
    if adjusted:
        notice = f"Clip adjusted to media range: {clip.start:.2f}s -> {clip.end:.2f}s."

    return ExportPreparation(
        clip=clip,
        entries=overlapping_entries(clip, entries),
        adjusted_to_source=adjusted,
        adjustment_notice=notice,
        min_duration=min_duration,
        validation_error=error,
    )


def create_manual_fallback_clip(source_duration: float | None = None) -> ClipWindow:
    """A first-minute clip for editing a source without clip suggestions."""
    end = 60.0
    if _finite(source_duration):
        end = min(max(1.0, round(source_duration, 2)), 60.0)
    return ClipWindow(start=0.0, end=end, duration=round(end, 2), id="manual_clip_fallback")


def create_manual_fallback_plan(clip_id: str) -> ShortPlan:
    return ShortPlan(
        id="manual_plan_fallback",
        clip_id=clip_id,
        platform="youtube_shorts",
        subtitle_style="clean_caption",
        title="Manual Edit Preset",
        opening_text="Manual short cut",
        end_card_text="Follow for more",
        safe_top_pct=12.0,
        safe_bottom_pct=14.0,
        target_duration_range=(15.0, 60.0),
    )
