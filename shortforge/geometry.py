"""Export geometry — maps a source frame plus editor framing onto the output canvas.

The editor previews the source inside a viewport of arbitrary size. The export
must reproduce the same framing on a fixed canvas (1080x1920 by default), so
pan offsets are converted from viewport pixels to output pixels, and the
scaled frame is either padded (zoomed out) or cropped (zoomed in).
"""

import math
from dataclasses import dataclass

from shortforge.models import EditorState, FrameSize

OUTPUT_WIDTH = 1080
OUTPUT_HEIGHT = 1920
MIN_ZOOM = 0.2
DEFAULT_VIEWPORT_WIDTH = 320


@dataclass(frozen=True)
class ExportGeometry:
    """The scale/pad/crop transform and every intermediate value behind it."""

    filter: str
    crop_x: int
    crop_y: int
    scaled_width: int
    scaled_height: int
    canvas_width: int
    canvas_height: int
    pad_x: int
    pad_y: int
    output_width: int
    output_height: int
    used_measured_frame: bool

    @property
    def padded(self) -> bool:
        return self.canvas_width != self.scaled_width or self.canvas_height != self.scaled_height


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def _round(value: float) -> int:
    # Half-up like a browser's Math.round, so offsets don't flip with banker's rounding.
    return math.floor(value + 0.5)


def _usable(rect: FrameSize | None) -> bool:
    if rect is None:
        return False
    try:
        w, h = float(rect.width), float(rect.height)
    except (TypeError, ValueError):
        return False
    return math.isfinite(w) and math.isfinite(h) and w > 0 and h > 0


def compute_geometry(
    source_width: int,
    source_height: int,
    editor: EditorState,
    viewport: FrameSize | None = None,
    measured_frame: FrameSize | None = None,
    output_width: int = OUTPUT_WIDTH,
    output_height: int = OUTPUT_HEIGHT,
) -> ExportGeometry:
    """Compute the ffmpeg filter chain that reproduces the editor framing.

    Args:
        source_width: Source video width in pixels.
        source_height: Source video height in pixels.
        editor: Zoom and pan (pan in viewport pixels).
        viewport: Size of the preview viewport. Defaults to 320 wide at 9:16.
        measured_frame: The rectangle the video actually occupied inside the
            viewport. When given it takes priority over the zoom-derived size.
        output_width: Width of the final canvas.
        output_height: Height of the final canvas.
    """
    out_w = max(1, _round(output_width))
    out_h = max(1, _round(output_height))

    vp_w = max(1.0, viewport.width if viewport else DEFAULT_VIEWPORT_WIDTH)
    vp_h = max(1.0, viewport.height if viewport else vp_w * 16 / 9)

    src_w = max(1, source_width)
    src_h = max(1, source_height)
    base_scale = min(out_w / src_w, out_h / src_h)
    scale_factor = base_scale * max(MIN_ZOOM, editor.zoom or 1.0)

    used_measured = _usable(measured_frame)
    if used_measured:
        scaled_w = max(1, _round(measured_frame.width / vp_w * out_w))
        scaled_h = max(1, _round(measured_frame.height / vp_h * out_h))
    else:
        scaled_w = max(1, _round(src_w * scale_factor))
        scaled_h = max(1, _round(src_h * scale_factor))

    pan_x = editor.pan_x / vp_w * out_w
    pan_y = editor.pan_y / vp_h * out_h

    canvas_w = max(out_w, scaled_w)
    canvas_h = max(out_h, scaled_h)

    pad_x = _round(_clamp(
        (canvas_w - scaled_w) / 2 + (pan_x if scaled_w < out_w else 0),
        0, max(0, canvas_w - scaled_w),
    ))
    pad_y = _round(_clamp(
        (canvas_h - scaled_h) / 2 + (pan_y if scaled_h < out_h else 0),
        0, max(0, canvas_h - scaled_h),
    ))

    crop_x = _round(_clamp(
        (canvas_w - out_w) / 2 - (pan_x if scaled_w >= out_w else 0),
        0, max(0, canvas_w - out_w),
    ))
    crop_y = _round(_clamp(
        (canvas_h - out_h) / 2 - (pan_y if scaled_h >= out_h else 0),
        0, max(0, canvas_h - out_h),
    ))

    steps = [f"scale={scaled_w}:{scaled_h}"]
    if canvas_w != scaled_w or canvas_h != scaled_h:
        steps.append(f"pad={canvas_w}:{canvas_h}:{pad_x}:{pad_y}:black")
    steps.append(f"crop={out_w}:{out_h}:{crop_x}:{crop_y}")
    steps.append("format=yuv420p")

    return ExportGeometry(
        filter=",".join(steps),
        crop_x=crop_x,
        crop_y=crop_y,
        scaled_width=scaled_w,
        scaled_height=scaled_h,
        canvas_width=canvas_w,
        canvas_height=canvas_h,
        pad_x=pad_x,
        pad_y=pad_y,
        output_width=out_w,
        output_height=out_h,
        used_measured_frame=used_measured,
    )


def describe(geometry: ExportGeometry) -> str:
    """One-line human summary of the framing, used in export notes."""
    g = geometry
    if g.padded:
        return (
            f"Zoom-out/pad mode. Scaled frame {g.scaled_width}x{g.scaled_height}, "
            f"padded canvas {g.canvas_width}x{g.canvas_height} @ ({g.pad_x}, {g.pad_y}), "
            f"crop @ ({g.crop_x}, {g.crop_y})."
        )
    return (
        f"Crop based on zoom/pan. Scaled frame {g.scaled_width}x{g.scaled_height}, "
        f"crop @ ({g.crop_x}, {g.crop_y})."
    )
