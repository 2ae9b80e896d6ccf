"""Caption style presets, override resolution and text layout metrics."""

import math
import re
from dataclasses import dataclass, replace

from shortforge.models import StyleOverrides

PRESETS = ("bold_pop", "clean_caption", "creator_neon")
TEXT_CASES = ("uppercase", "original")
MAX_LETTER_WIDTH = 1.5

BASE_FONT_SIZE = 56
MIN_FONT_SIZE = 36
MAX_FONT_SIZE = 96
LINE_HEIGHT_RATIO = 1.18

PRESET_LABELS = {
    "bold_pop": "Bold Pop",
    "clean_caption": "Clean Caption",
    "creator_neon": "Creator Neon",
}

_HEX_COLOR_RE = re.compile(r"^#?([a-fA-F0-9]{6})$")


@dataclass(frozen=True)
class SubtitleStyle:
    """A fully resolved caption style. Every field is populated and in range."""

    preset: str
    text_color: str
    letter_width: float
    border_color: str
    border_width: float
    shadow_color: str
    shadow_opacity: float
    shadow_distance: float
    text_case: str
    background_enabled: bool
    background_color: str
    background_opacity: float
    background_radius: float
    background_padding_x: float
    background_padding_y: float


_DEFAULTS: dict[str, SubtitleStyle] = {
    "bold_pop": SubtitleStyle(
        preset="bold_pop",
        text_color="#FFFFFF",
        letter_width=1.08,
        border_color="#0A0A0A",
        border_width=3.8,
        shadow_color="#000000",
        shadow_opacity=0.44,
        shadow_distance=3.2,
        text_case="uppercase",
        background_enabled=False,
        background_color="#111111",
        background_opacity=0.8,
        background_radius=28,
        background_padding_x=26,
        background_padding_y=14,
    ),
    "clean_caption": SubtitleStyle(
        preset="clean_caption",
        text_color="#FFFFFF",
        letter_width=1.04,
        border_color="#2A2A2A",
        border_width=3,
        shadow_color="#000000",
        shadow_opacity=0.32,
        shadow_distance=2.2,
        text_case="original",
        background_enabled=False,
        background_color="#111111",
        background_opacity=0.72,
        background_radius=22,
        background_padding_x=22,
        background_padding_y=11,
    ),
    "creator_neon": SubtitleStyle(
        preset="creator_neon",
        text_color="#E8F7FF",
        letter_width=1.06,
        border_color="#0B2A66",
        border_width=3.4,
        shadow_color="#031129",
        shadow_opacity=0.48,
        shadow_distance=2.8,
        text_case="original",
        background_enabled=False,
        background_color="#08111F",
        background_opacity=0.74,
        background_radius=24,
        background_padding_x=24,
        background_padding_y=12,
    ),
}


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def _round_px(value: float) -> float:
    return round(value, 2)


def _first_number(*values: float | None) -> float | None:
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return float(value)
    return None


def normalize_hex_color(value: str | None, fallback: str) -> str:
    """Return ``#RRGGBB`` (upper case) or *fallback* if *value* is not a hex colour."""
    match = _HEX_COLOR_RE.match(str(value if value is not None else "").strip())
    if not match:
        return fallback
    return f"#{match.group(1).upper()}"


def clamp_letter_width(value: float) -> float:
    return _clamp(value, 1.0, MAX_LETTER_WIDTH)


def default_style(preset: str) -> SubtitleStyle:
    return _DEFAULTS[preset]


def resolve_style(preset: str, overrides: StyleOverrides | None = None) -> SubtitleStyle:
    """Overlay *overrides* on the defaults of *preset*, validating each field.

    An unknown preset (either argument or override) falls back to
    ``clean_caption``.
    """
    o = overrides or StyleOverrides()
    if o.preset in PRESETS:
        preset = o.preset
    elif preset not in PRESETS:
        preset = "clean_caption"
    d = _DEFAULTS[preset]

    legacy_background = (
        o.background_color is not None
        or o.background_opacity is not None
        or o.background_radius is not None
        or o.background_padding is not None
        or o.background_padding_x is not None
        or o.background_padding_y is not None
    )
    if isinstance(o.background_enabled, bool):
        background_enabled = o.background_enabled
    else:
        background_enabled = True if legacy_background else d.background_enabled

    return SubtitleStyle(
        preset=preset,
        text_color=normalize_hex_color(o.text_color, d.text_color),
        letter_width=clamp_letter_width(_first_number(o.letter_width, d.letter_width)),
        border_color=normalize_hex_color(
            o.border_color if o.border_color is not None else o.outline_color, d.border_color
        ),
        border_width=_clamp(_first_number(o.border_width, o.outline_width, d.border_width), 0, 8),
        shadow_color=normalize_hex_color(o.shadow_color, d.shadow_color),
        shadow_opacity=_clamp(_first_number(o.shadow_opacity, d.shadow_opacity), 0, 1),
        shadow_distance=_clamp(_first_number(o.shadow_distance, d.shadow_distance), 0, 12),
        text_case=o.text_case if o.text_case in TEXT_CASES else d.text_case,
        background_enabled=background_enabled,
        background_color=normalize_hex_color(o.background_color, d.background_color),
        background_opacity=_clamp(_first_number(o.background_opacity, d.background_opacity), 0, 1),
        background_radius=_clamp(_first_number(o.background_radius, d.background_radius), 0, 80),
        background_padding_x=_clamp(
            _first_number(o.background_padding_x, o.background_padding, d.background_padding_x), 0, 80
        ),
        background_padding_y=_clamp(
            _first_number(o.background_padding_y, o.background_padding, d.background_padding_y), 0, 48
        ),
    )


def caption_font_size(subtitle_scale: float) -> int:
    return round(_clamp(BASE_FONT_SIZE * subtitle_scale, MIN_FONT_SIZE, MAX_FONT_SIZE))


def line_step(font_size: float) -> int:
    """Vertical distance between stacked caption lines."""
    return round(font_size * LINE_HEIGHT_RATIO)


def max_chars_per_line(font_size: float, letter_width: float = 1.0, canvas_width: int = 1080) -> int:
    """Characters that fit in 80% of the canvas; fewer as glyphs get larger."""
    effective = clamp_letter_width(letter_width)
    return max(10, round((canvas_width * 0.8) / (font_size * 0.55 * effective)))


def wrap_lines(text: str, max_chars: int) -> list[str]:
    """Greedy word wrap. Words longer than *max_chars* get a line of their own."""
    words = str(text or "").split()
    if not words:
        return []

    lines: list[str] = []
    current = ""
    for word in words:
        if current and len(current) + 1 + len(word) > max_chars:
            lines.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        lines.append(current)
    return lines


def weight_boost_offsets(font_size: float) -> list[float]:
    """Horizontal offsets of the extra fill passes that fake a heavier weight."""
    boost = _clamp(font_size * 0.012, 0.45, 1.1)
    return [_round_px(-(boost / 2)), _round_px(boost / 2)]


def letter_width_spread(font_size: float, letter_width: float = 1.0) -> float:
    effective = clamp_letter_width(letter_width)
    return _clamp((effective - 1) * font_size * 0.18, 0, min(font_size * 0.08, 6))


def letter_width_offsets(font_size: float, letter_width: float = 1.0) -> list[float]:
    """Offsets of the fill passes that widen glyphs. Empty near the default width."""
    spread = letter_width_spread(font_size, letter_width)
    if spread < 0.75:
        return []

    offsets = {-spread, spread}
    if spread > 2.2:
        offsets.add(-(spread * 0.55))
        offsets.add(spread * 0.55)
    return sorted(_round_px(o) for o in offsets)


def _rgb(hex_color: str) -> tuple[int, int, int]:
    h = normalize_hex_color(hex_color, "#000000")
    return int(h[1:3], 16), int(h[3:5], 16), int(h[5:7], 16)


def css_rgba(hex_color: str, alpha: float) -> str:
    r, g, b = _rgb(hex_color)
    return f"rgba({r}, {g}, {b}, {_clamp(alpha, 0, 1):.3f})"


def css_text_shadow(style: SubtitleStyle, scale: float = 1.0) -> str:
    if style.shadow_opacity <= 0 or style.shadow_distance <= 0:
        return "none"
    distance = _clamp(style.shadow_distance * scale, 0, 40)
    return f"{distance:.2f}px {distance:.2f}px 0 {css_rgba(style.shadow_color, style.shadow_opacity)}"


def ffmpeg_hex_color(hex_color: str) -> str:
    """``#AABBCC`` -> ``0xAABBCC`` as understood by ffmpeg colour options."""
    return "0x" + normalize_hex_color(hex_color, "#000000")[1:]


def ffmpeg_color_with_alpha(hex_color: str, alpha: float) -> str:
    return f"{ffmpeg_hex_color(hex_color)}@{_clamp(alpha, 0, 1):.3f}"


@dataclass(frozen=True)
class QuickStyle:
    """A named one-click style shown in the caption style picker."""

    id: str
    name: str
    description: str
    style: SubtitleStyle


QUICK_STYLES: list[QuickStyle] = [
    QuickStyle(
        "yt_classic",
        "YouTube Classic",
        "White captions with a clean charcoal border and soft shadow.",
        default_style("clean_caption"),
    ),
    QuickStyle(
        "reel_bold",
        "Reels Bold",
        "Heavy uppercase text with a thicker border and stronger drop shadow.",
        replace(default_style("bold_pop"), border_width=4.6, shadow_opacity=0.5, shadow_distance=3.6),
    ),
    QuickStyle(
        "tiktok_pop",
        "TikTok Pop",
        "Warm bright text, dense border, and punchier shadow separation.",
        replace(
            default_style("bold_pop"),
            text_color="#FFF3B0",
            border_color="#141414",
            border_width=4.4,
            shadow_color="#2B1118",
            shadow_opacity=0.56,
            shadow_distance=3.8,
        ),
    ),
    QuickStyle(
        "podcast_soft",
        "Podcast Soft",
        "Soft off-white text with a subtle slate border and restrained shadow.",
        replace(
            default_style("clean_caption"),
            text_color="#F4F7FA",
            border_color="#425466",
            border_width=2,
            shadow_opacity=0.24,
            shadow_distance=1.8,
        ),
    ),
    QuickStyle(
        "minimal_clear",
        "Minimal Clear",
        "Lean caption styling with a crisp border and barely-there shadow.",
        replace(default_style("clean_caption"), border_width=2.8, shadow_opacity=0.18, shadow_distance=1.2),
    ),
    QuickStyle(
        "boxed_focus",
        "Boxed Focus",
        "High-contrast subtitles with a soft rounded background for busy footage.",
        replace(
            default_style("clean_caption"),
            border_width=2.2,
            shadow_opacity=0.18,
            shadow_distance=1.4,
            background_enabled=True,
            background_opacity=0.78,
            background_radius=26,
            background_padding_x=24,
            background_padding_y=12,
        ),
    ),
    QuickStyle(
        "neon_creator",
        "Neon Creator",
        "Cool cyan text with electric edge contrast and a moody shadow.",
        replace(
            default_style("creator_neon"),
            border_color="#0F3B82",
            border_width=3.8,
            shadow_color="#010916",
            shadow_opacity=0.54,
            shadow_distance=3.1,
        ),
    ),
]


def quick_style(style_id: str) -> QuickStyle | None:
    return next((q for q in QUICK_STYLES if q.id == style_id), None)
