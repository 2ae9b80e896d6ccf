"""Shared data types used across ShortForge."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ClipWindow:
    """A start/end time range of the source asset, in seconds."""

    start: float
    end: float
    duration: float
    id: str = "clip"

    @classmethod
    def from_range(cls, start: float, end: float, id: str = "clip") -> "ClipWindow":
        return cls(start=start, end=end, duration=round(end - start, 2), id=id)


@dataclass(frozen=True)
class TimedTextEntry:
    """A caption line with absolute source timing. ``end`` may be open."""

    text: str
    start: float
    end: float | None = None


@dataclass(frozen=True)
class TrimNudges:
    """Signed offsets applied to a clip's start and end."""

    start: float = 0.0
    end: float = 0.0


@dataclass(frozen=True)
class FrameSize:
    """A width/height pair in pixels (preview viewport or video rect)."""

    width: float
    height: float


@dataclass(frozen=True)
class StyleOverrides:
    """User overrides on top of a caption preset. ``None`` means "use the preset".

    ``outline_*`` and ``background_padding`` are accepted for records saved
    before the border/padding fields were split.
    """

    preset: str | None = None
    text_color: str | None = None
    letter_width: float | None = None
    border_color: str | None = None
    border_width: float | None = None
    shadow_color: str | None = None
    shadow_opacity: float | None = None
    shadow_distance: float | None = None
    text_case: str | None = None
    background_enabled: bool | None = None
    background_color: str | None = None
    background_opacity: float | None = None
    background_radius: float | None = None
    background_padding_x: float | None = None
    background_padding_y: float | None = None
    outline_color: str | None = None
    outline_width: float | None = None
    background_padding: float | None = None


@dataclass(frozen=True)
class EditorState:
    """Framing and caption placement chosen by the user in the editor."""

    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0
    subtitle_scale: float = 1.0
    subtitle_x_pct: float = 50.0
    subtitle_y_pct: float = 78.0
    style: StyleOverrides = field(default_factory=StyleOverrides)
    show_safe_zones: bool = False


@dataclass(frozen=True)
class ShortPlan:
    """Target platform and caption preset for one short."""

    id: str
    clip_id: str
    platform: str = "youtube_shorts"
    subtitle_style: str = "clean_caption"
    title: str = ""
    caption: str = ""
    opening_text: str = ""
    end_card_text: str = ""
    aspect_ratio: str = "9:16"
    resolution: str = "1080x1920"
    safe_top_pct: float = 12.0
    safe_bottom_pct: float = 14.0
    target_duration_range: tuple[float, float] = (15.0, 60.0)


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    codec_video: str
    audio_sample_rate: int | None = None
    codec_audio: str | None = None
