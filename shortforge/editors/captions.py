"""Caption editor — burn-in filter instructions and subtitle sidecar files."""

from dataclasses import dataclass
from pathlib import Path

from shortforge.geometry import OUTPUT_HEIGHT, OUTPUT_WIDTH
from shortforge.models import ClipWindow, EditorState, TimedTextEntry
from shortforge.style import (
    BASE_FONT_SIZE,
    SubtitleStyle,
    caption_font_size,
    ffmpeg_color_with_alpha,
    ffmpeg_hex_color,
    letter_width_offsets,
    line_step,
    max_chars_per_line,
    resolve_style,
    weight_boost_offsets,
    wrap_lines,
)

OPEN_END_SECONDS = 2.5
LATE_START_SLACK = 0.25
AVG_GLYPH_WIDTH = 0.58


@dataclass(frozen=True)
class CaptionCue:
    """A caption in clip time."""

    start: float
    end: float
    text: str


@dataclass(frozen=True)
class CaptionLayout:
    """Placement shared by every cue of one export."""

    style: SubtitleStyle
    font_size: int
    max_chars: int
    line_height: int
    x_pct: float
    y_pct: float
    canvas_width: int
    canvas_height: int

    def lines(self, text: str) -> list[str]:
        if self.style.text_case == "uppercase":
            text = text.upper()
        return wrap_lines(text, self.max_chars)

    def block_height(self, line_count: int) -> int:
        return (line_count - 1) * self.line_height + self.font_size

    def line_offsets(self, line_count: int) -> list[int]:
        """Distance of each line's top edge above the anchor, stacked symmetrically."""
        half = round(self.block_height(line_count) / 2)
        return [half - i * self.line_height for i in range(line_count)]


def build_cues(entries: list[TimedTextEntry], clip: ClipWindow) -> list[CaptionCue]:
    """Translate entries to clip time and drop the ones that can't be shown.

    Open-ended entries get a fixed display time. Entries starting after the
    clip (with a small slack) are dropped, and ends are cut at the clip end.
    """
    cues: list[CaptionCue] = []
    for entry in entries:
        text = " ".join(str(entry.text or "").split())
        if not text:
            continue
        start = max(0.0, entry.start - clip.start)
        if entry.end is None:
            end = start + OPEN_END_SECONDS
        else:
            end = max(0.0, entry.end - clip.start)
        if end <= start or start > clip.duration + LATE_START_SLACK:
            continue
        cues.append(CaptionCue(start=start, end=min(end, clip.duration), text=text))
    return cues


def build_layout(
    editor: EditorState,
    preset: str,
    canvas_width: int = OUTPUT_WIDTH,
    canvas_height: int = OUTPUT_HEIGHT,
) -> CaptionLayout:
    style = resolve_style(preset, editor.style)
    font_size = caption_font_size(editor.subtitle_scale)
    return CaptionLayout(
        style=style,
        font_size=font_size,
        max_chars=max_chars_per_line(font_size, style.letter_width, canvas_width),
        line_height=line_step(font_size),
        x_pct=editor.subtitle_x_pct / 100,
        y_pct=editor.subtitle_y_pct / 100,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
    )


def escape_drawtext(text: str) -> str:
    """Escape text for a single-quoted drawtext ``text=`` value."""
    return (
        text.replace("\\", "\\\\")
        .replace("'", "'\\''")
        .replace(":", "\\:")
        .replace("[", "\\[")
        .replace("]", "\\]")
        .replace(";", "\\;")
        .replace("%", "%%")
        .replace("\r", "")
        .replace("\n", " ")
    )


def _escape_path(path: Path | str) -> str:
    return str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def _drawtext(
    font_path: str,
    text: str,
    layout: CaptionLayout,
    color: str,
    x_shift: float,
    y_expr: str,
    enable: str,
    border: SubtitleStyle | None = None,
) -> str:
    x_pct = f"{layout.x_pct:.4f}"
    parts = [
        f"drawtext=fontfile={font_path}",
        f"text='{text}'",
        f"fontsize={layout.font_size}",
        f"fontcolor={color}",
    ]
    if border is not None and border.border_width > 0:
        parts += [
            f"borderw={border.border_width:.2f}",
            f"bordercolor={ffmpeg_color_with_alpha(border.border_color, 0.95)}",
        ]
    else:
        parts.append("borderw=0")
    parts += [
        f"x=(w*{x_pct}-tw/2{x_shift:+.2f})",
        f"y={y_expr}",
        f"enable='{enable}'",
    ]
    return ":".join(parts)


def build_caption_filters(
    entries: list[TimedTextEntry],
    clip: ClipWindow,
    editor: EditorState,
    preset: str,
    font_path: Path | str,
    time_offset: float = 0.0,
    canvas_width: int = OUTPUT_WIDTH,
    canvas_height: int = OUTPUT_HEIGHT,
) -> list[str]:
    """Build drawbox/drawtext filters that burn *entries* into the clip.

    Each line is drawn in several passes: a shadow pass, bordered fill passes
    spread horizontally to fake heavier and wider glyphs, then the main fill.
    *time_offset* shifts enable windows when the filter graph sees frames
    from before the clip start (hybrid seek).
    """
    cues = build_cues(entries, clip)
    if not cues:
        return []

    layout = build_layout(editor, preset, canvas_width, canvas_height)
    style = layout.style
    font = _escape_path(font_path)
    y_pct = f"{layout.y_pct:.4f}"
    spreads = sorted(set(weight_boost_offsets(layout.font_size)) | set(
        letter_width_offsets(layout.font_size, style.letter_width)
    ))
    text_color = ffmpeg_hex_color(style.text_color)
    pad_scale = layout.font_size / BASE_FONT_SIZE

    filters: list[str] = []
    for cue in cues:
        lines = layout.lines(cue.text)
        if not lines:
            continue
        enable = f"between(t,{cue.start + time_offset:.3f},{cue.end + time_offset:.3f})"
        offsets = layout.line_offsets(len(lines))

        if style.background_enabled and style.background_opacity > 0:
            pad_x = round(style.background_padding_x * pad_scale)
            pad_y = round(style.background_padding_y * pad_scale)
            longest = max(len(line) for line in lines)
            text_w = round(longest * layout.font_size * AVG_GLYPH_WIDTH * style.letter_width)
            box_w = min(text_w + 2 * pad_x, round(canvas_width * 0.92))
            box_h = layout.block_height(len(lines)) + 2 * pad_y
            filters.append(
                f"drawbox=x=(iw*{layout.x_pct:.4f}-{round(box_w / 2)})"
                f":y=(ih*{y_pct}-{round(box_h / 2)})"
                f":w={box_w}:h={box_h}"
                f":color={ffmpeg_color_with_alpha(style.background_color, style.background_opacity)}"
                f":t=fill:enable='{enable}'"
            )

        for line, offset in zip(lines, offsets):
            text = escape_drawtext(line)
            y_expr = f"(h*{y_pct}-{offset})"

            if style.shadow_opacity > 0 and style.shadow_distance > 0:
                d = style.shadow_distance
                filters.append(_drawtext(
                    font, text, layout,
                    ffmpeg_color_with_alpha(style.shadow_color, style.shadow_opacity),
                    d, f"(h*{y_pct}-{offset}+{d:.2f})", enable,
                ))
            for shift in spreads:
                filters.append(_drawtext(font, text, layout, text_color, shift, y_expr, enable, border=style))
            filters.append(_drawtext(font, text, layout, text_color, 0.0, y_expr, enable))

    return filters


# ---------------------------------------------------------------------------
# Sidecar subtitle files
# ---------------------------------------------------------------------------

def _format_srt_time(seconds: float) -> str:
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    ms = int(round((seconds % 1) * 1000)) % 1000
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def _format_vtt_time(seconds: float) -> str:
    return _format_srt_time(seconds).replace(",", ".")


def _write_srt(cues: list[CaptionCue], path: Path) -> None:
    lines: list[str] = []
    for i, cue in enumerate(cues, 1):
        lines.append(str(i))
        lines.append(f"{_format_srt_time(cue.start)} --> {_format_srt_time(cue.end)}")
        lines.append(cue.text)
        lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")


def _write_vtt(cues: list[CaptionCue], path: Path) -> None:
    lines: list[str] = ["WEBVTT", ""]
    for cue in cues:
        lines.append(f"{_format_vtt_time(cue.start)} --> {_format_vtt_time(cue.end)}")
        lines.append(cue.text)
        lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")


def write_sidecar(
    entries: list[TimedTextEntry],
    clip: ClipWindow,
    output_path: Path,
    output_format: str = "srt",
) -> Path:
    """Write the clip's captions, in clip time, next to the rendered short."""
    suffix = ".vtt" if output_format == "vtt" else ".srt"
    subtitle_path = output_path.with_suffix(suffix)
    cues = build_cues(entries, clip)

    if output_format == "vtt":
        _write_vtt(cues, subtitle_path)
    else:
        _write_srt(cues, subtitle_path)

    return subtitle_path


def parse_srt(text: str) -> list[TimedTextEntry]:
    """Read SRT (or VTT) cues into source-time entries."""
    entries: list[TimedTextEntry] = []
    for block in text.replace("\r\n", "\n").split("\n\n"):
        rows = [row for row in block.strip().split("\n") if row.strip()]
        timing = next((i for i, row in enumerate(rows) if "-->" in row), None)
        if timing is None:
            continue
        start_raw, end_raw = (part.strip().split(" ")[0] for part in rows[timing].split("-->"))
        start = _parse_cue_time(start_raw)
        end = _parse_cue_time(end_raw)
        if start is None:
            continue
        entries.append(TimedTextEntry(text=" ".join(rows[timing + 1:]), start=start, end=end))
    return entries


def _parse_cue_time(value: str) -> float | None:
    parts = value.replace(",", ".").split(":")
    try:
        if len(parts) == 3:
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
        if len(parts) == 2:
            return int(parts[0]) * 60 + float(parts[1])
    except ValueError:
        return None
    return None
