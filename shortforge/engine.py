"""Render orchestrator — turns a clip, framing and captions into a finished short."""

import math
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from loguru import logger

from shortforge import ffutil, progress, settings
from shortforge.clips import prepare_export
from shortforge.contracts import assert_invariants
from shortforge.editors.captions import build_caption_filters, parse_srt, write_sidecar
from shortforge.errors import (
    CaptionRenderFailure,
    EngineFailure,
    ExportCancelled,
    GeometryInvariantViolation,
    SeekIncompatibility,
    ShortForgeError,
    ValidationError,
)
from shortforge.fonts import FontCache
from shortforge.geometry import ExportGeometry, compute_geometry, describe
from shortforge.manifest import ExportConfig, Manifest
from shortforge.models import ClipWindow, EditorState, FrameSize, ShortPlan, TimedTextEntry
from shortforge.progress import ProgressReducer, RampTicker, TimeBaseline
from shortforge.style import resolve_style

SEEK_HYBRID = "hybrid"
SEEK_EXACT = "exact"
MIME_TYPE = "video/mp4"
MIN_RENDER_DURATION = 0.5


@dataclass(frozen=True)
class RenderAttempt:
    seek_mode: str
    captions: bool


def plan_attempts(captions: bool) -> list[RenderAttempt]:
    """Ordered fallback list: hybrid before exact seek, captioned before plain."""
    modes = (SEEK_HYBRID, SEEK_EXACT)
    attempts = [RenderAttempt(mode, True) for mode in modes] if captions else []
    return attempts + [RenderAttempt(mode, False) for mode in modes]


def recovered_failure(attempt: RenderAttempt, failure: EngineFailure) -> ShortForgeError | None:
    """Name the fallback a failed attempt triggers, or None if it was the last resort.

    A hybrid-seek failure is treated as a seek problem, an exact-seek failure
    with captions as a caption problem.
    """
    status = failure.returncode
    if attempt.seek_mode == SEEK_HYBRID:
        return SeekIncompatibility(f"hybrid seek failed (status {status}), retrying with exact seek")
    if attempt.captions:
        return CaptionRenderFailure(f"caption burn-in failed (status {status}), retrying without subtitles")
    return None


@dataclass
class ExportRequest:
    """Everything one export needs. Treated as read-only by the engine."""

    source_path: Path
    clip: ClipWindow
    source_width: int
    source_height: int
    editor: EditorState = field(default_factory=EditorState)
    plan: ShortPlan | None = None
    entries: list[TimedTextEntry] = field(default_factory=list)
    source_duration: float | None = None
    source_filename: str | None = None
    viewport: FrameSize | None = None
    measured_frame: FrameSize | None = None
    config: ExportConfig = field(default_factory=ExportConfig)

    @property
    def filename(self) -> str:
        return self.source_filename or self.source_path.name

    @property
    def short_plan(self) -> ShortPlan:
        return self.plan or ShortPlan(id="plan", clip_id=self.clip.id)


@dataclass
class ExportResult:
    output_path: Path
    filename: str
    size_bytes: int
    seek_mode: str
    captions_burned_in: bool
    filter_preview: str
    command_preview: list[str]
    clip: ClipWindow
    geometry: ExportGeometry
    mime_type: str = MIME_TYPE
    notes: list[str] = field(default_factory=list)

    def read_bytes(self) -> bytes:
        return self.output_path.read_bytes()


def output_filename(source_filename: str, platform: str, clip: ClipWindow) -> str:
    stem = re.sub(r"\.[^/.]+$", "", source_filename)
    name = f"{stem}__{platform}__{math.floor(clip.start)}-{math.ceil(clip.end)}.mp4"
    return re.sub(r"[^\w.-]+", "_", name)


def build_export_diagnostics(
    request: ExportRequest,
    export_clip: ClipWindow,
    export_entry_count: int,
    error: str | None = None,
) -> str:
    """Multi-line summary of an export, attached to failed short projects."""
    duration = (
        f"{request.source_duration:.3f}"
        if request.source_duration is not None and math.isfinite(request.source_duration)
        else "unknown"
    )
    req = request.clip
    style = resolve_style(request.short_plan.subtitle_style, request.editor.style)
    rows = [
        f"source={request.filename}",
        f"platform={request.short_plan.platform}",
        f"sourceSize={request.source_width}x{request.source_height}",
        f"sourceDurationSec={duration}",
        f"requestedClip={req.start:.3f}-{req.end:.3f} ({req.duration:.3f}s)",
        f"exportClip={export_clip.start:.3f}-{export_clip.end:.3f} ({export_clip.duration:.3f}s)",
        f"selectedSubtitleChunks={len(request.entries)}",
        f"exportSubtitleChunks={export_entry_count}",
        f"subtitleStylePreset={style.preset}",
    ]
    if error:
        rows.append(f"error={error}")
    return "\n".join(rows)


def _mount_source(source: Path, scratch: Path) -> Path:
    """Expose the source inside the scratch dir. Falls back to the original path."""
    link = scratch / f"input{source.suffix}"
    try:
        os.symlink(source.resolve(), link)
    except OSError as e:
        logger.debug(f"Could not link source into scratch dir ({e}); using {source}")
        return source
    return link


def _release_scratch(scratch: Path) -> None:
    try:
        shutil.rmtree(scratch)
    except OSError as e:
        logger.warning(f"Failed to remove scratch dir {scratch}: {e}")


class _AttemptRunner:
    """Runs render attempts, feeding both progress signals into one reducer."""

    def __init__(
        self,
        reducer: ProgressReducer,
        clip_duration: float,
        cancel_event: threading.Event | None,
    ):
        self.reducer = reducer
        self.clip_duration = clip_duration
        self.cancel_event = cancel_event
        self.log_tail: list[str] = []

    def run(self, cmd: list[str]) -> None:
        # Fresh baselines per attempt so a retry's timestamps don't look like a rewind.
        progress_time = TimeBaseline()
        log_time = TimeBaseline()

        def on_line(line: str) -> None:
            report = ffutil.parse_progress_line(line)
            if report is not None:
                if report.out_time is not None:
                    processed = progress_time.normalize(report.out_time)
                    if processed > 0:
                        self.reducer.advance_render(processed / self.clip_duration * 100)
                return
            seconds = ffutil.parse_log_time(line)
            if seconds is not None:
                processed = log_time.normalize(seconds)
                if processed > 0:
                    self.reducer.advance_render(processed / self.clip_duration * 100)

        with RampTicker(self.reducer, self.clip_duration):
            result = ffutil.run_ffmpeg(cmd, on_line=on_line, cancel_event=self.cancel_event)
        self.log_tail = result.log_tail
        if result.returncode != 0:
            raise EngineFailure(
                f"ffmpeg exited with status {result.returncode}",
                returncode=result.returncode,
                log_tail=result.log_tail,
            )


def export_short(
    request: ExportRequest,
    output_path: Path,
    on_progress: Callable[[str, float], None] | None = None,
    fonts: FontCache | None = None,
    cancel_event: threading.Event | None = None,
) -> ExportResult:
    """Render one short to *output_path*.

    Args:
        request: Source, clip, framing and captions to export.
        output_path: Where the finished MP4 is moved on success.
        on_progress: Optional callback(stage_name, fraction_complete).
        fonts: Process-wide caption font cache. A private one is made if omitted.
        cancel_event: Set it to stop the export; ffmpeg is killed and the
            scratch dir removed.

    Raises:
        ValidationError: The clip is too short after clamping to the source.
        GeometryInvariantViolation: The framing would stretch the output.
        EngineFailure: Every render attempt failed, or the output was unusable.
        ExportCancelled: *cancel_event* was set.
    """
    config = request.config
    reducer = ProgressReducer(on_progress)
    reducer.advance(progress.INIT, "Preparing export")

    prep = prepare_export(
        request.clip,
        request.entries,
        source_duration=request.source_duration,
        min_duration=config.min_clip_duration,
    )
    if not prep.duration_valid:
        raise ValidationError(prep.validation_error, min_duration=prep.min_duration)
    clip = prep.clip

    geometry = compute_geometry(
        request.source_width,
        request.source_height,
        request.editor,
        viewport=request.viewport,
        measured_frame=request.measured_frame,
        output_width=config.output_width,
        output_height=config.output_height,
    )
    try:
        assert_invariants(
            request.source_width,
            request.source_height,
            geometry,
            context=request.filename,
            expected_width=config.output_width,
            expected_height=config.output_height,
            max_scale_delta_pct=config.max_scale_delta_pct,
            max_aspect_delta_pct=config.max_aspect_delta_pct,
        )
    except GeometryInvariantViolation as e:
        logger.error(str(e))
        raise

    plan = request.short_plan
    clip_duration = max(MIN_RENDER_DURATION, clip.end - clip.start)
    seek_before = max(0.0, clip.start - config.fast_seek_cushion)
    trim_after = max(0.0, clip.start - seek_before)
    filename = output_filename(request.filename, plan.platform, clip)
    notes: list[str] = [f"Local render via ffmpeg ({plan.platform})"]
    if prep.adjustment_notice:
        notes.append(prep.adjustment_notice)

    attempt = None
    caption_filters: dict[str, list[str]] = {}
    runner = _AttemptRunner(reducer, clip_duration, cancel_event)

    scratch = Path(tempfile.mkdtemp(prefix="shortforge_", dir=settings.WORK_DIR))
    scratch_output = scratch / "out.mp4"
    try:
        source = _mount_source(request.source_path, scratch)
        reducer.advance(progress.MOUNTED, "Source mounted")

        if prep.entries:
            font_path = (fonts or FontCache()).try_ensure()
            if font_path is None:
                notes.append("Caption font unavailable; rendered without burned subtitles.")
            else:
                reducer.advance(progress.FONT_READY, "Caption font ready")
                # Filter time starts at the pre-seek point (hybrid) or the source start (exact).
                for mode, offset in ((SEEK_HYBRID, trim_after), (SEEK_EXACT, clip.start)):
                    caption_filters[mode] = build_caption_filters(
                        prep.entries, clip, request.editor, plan.subtitle_style, font_path,
                        time_offset=offset,
                        canvas_width=config.output_width,
                        canvas_height=config.output_height,
                    )
                if not caption_filters[SEEK_HYBRID]:
                    caption_filters.clear()

        last_error: EngineFailure | None = None
        for candidate in plan_attempts(bool(caption_filters)):
            if cancel_event is not None and cancel_event.is_set():
                raise ExportCancelled("Export cancelled")

            vf = geometry.filter
            if candidate.captions:
                vf = ",".join([geometry.filter, *caption_filters[candidate.seek_mode]])
            hybrid = candidate.seek_mode == SEEK_HYBRID
            cmd = ffutil.build_render_command(
                source,
                scratch_output,
                vf,
                trim_offset=trim_after if hybrid else clip.start,
                trim_duration=clip_duration,
                seek_before=seek_before if hybrid else None,
                codec=config.codec,
            )
            scratch_output.unlink(missing_ok=True)
            reducer.advance(progress.PRE_RENDER, "Rendering")
            logger.info(
                f"Rendering {filename}: seek={candidate.seek_mode}, "
                f"captions={'on' if candidate.captions else 'off'}"
            )
            try:
                runner.run(cmd)
            except EngineFailure as e:
                last_error = e
                recovered = recovered_failure(candidate, e)
                if recovered is not None:
                    logger.warning(f"{type(recovered).__name__}: {recovered}")
                continue
            attempt = candidate
            break

        if attempt is None:
            raise last_error

        reducer.advance(progress.READ_OUTPUT, "Reading output")
        size = scratch_output.stat().st_size if scratch_output.exists() else 0
        if size < config.min_output_bytes:
            raise EngineFailure(
                "Rendered output is empty. Clip timing may be outside the source video range.",
                log_tail=runner.log_tail,
            )
        reducer.advance(progress.VALIDATE_OUTPUT, "Validating output")

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(scratch_output), str(output_path))
        reducer.advance(progress.PACKAGED, "Packaging")
    except EngineFailure as e:
        summary = ", ".join([
            f"clip={clip.start:.3f}-{clip.end:.3f} ({clip_duration:.3f}s)",
            f"seekMode={(attempt or RenderAttempt(SEEK_EXACT, False)).seek_mode}",
            f"subtitleBurnIn={bool(attempt and attempt.captions)}",
            f"subtitleChunks={len(request.entries)}",
            f"source={request.filename}",
        ])
        e.diagnostics = summary + "\n" + build_export_diagnostics(request, clip, len(prep.entries))
        if not e.log_tail:
            e.log_tail = runner.log_tail
        logger.error(f"Export of {request.filename} failed: {e}")
        raise
    finally:
        _release_scratch(scratch)

    captioned = attempt.captions
    vf_preview = f"{geometry.filter},...drawtext" if captioned else geometry.filter
    preview_cmd = ffutil.build_render_command(
        request.filename,
        filename,
        vf_preview,
        trim_offset=trim_after if attempt.seek_mode == SEEK_HYBRID else clip.start,
        trim_duration=clip_duration,
        seek_before=seek_before if attempt.seek_mode == SEEK_HYBRID else None,
        codec=config.codec,
        ffmpeg="ffmpeg",
        report_progress=False,
    )

    if attempt.seek_mode == SEEK_HYBRID:
        if seek_before > 0:
            notes.append(
                f"Hybrid trim seek enabled: fast pre-seek {seek_before:.2f}s, "
                f"exact post-seek {trim_after:.2f}s."
            )
        else:
            notes.append(f"Exact trim seek from start: {trim_after:.2f}s.")
    else:
        notes.append(f"Fallback exact-seek mode used from {clip.start:.2f}s for container compatibility.")
    notes.append(describe(geometry))
    if geometry.used_measured_frame:
        vp = request.viewport
        notes.append(
            f"Preview parity source: video rect {round(request.measured_frame.width)}x"
            f"{round(request.measured_frame.height)} inside viewport "
            f"{round(vp.width) if vp else 0}x{round(vp.height) if vp else 0}."
        )
    else:
        notes.append("Preview parity source: computed from source dimensions + editor zoom.")

    style = resolve_style(plan.subtitle_style, request.editor.style)
    if captioned:
        notes.append(
            f"Subtitles burned in at x={request.editor.subtitle_x_pct:.0f}%, "
            f"y={request.editor.subtitle_y_pct:.0f}% using {style.preset}."
        )
    else:
        notes.append("Rendered without burned subtitles (subtitle filter unavailable or no subtitle chunks).")
    if style.background_enabled and style.background_radius > 0:
        notes.append("Rounded subtitle box corners are preview-only; the export draws square boxes.")

    reducer.advance(progress.DONE, "Done")
    logger.info(f"Exported {filename} ({size} bytes, seek={attempt.seek_mode}, captions={captioned})")
    return ExportResult(
        output_path=output_path,
        filename=filename,
        size_bytes=size,
        seek_mode=attempt.seek_mode,
        captions_burned_in=captioned,
        filter_preview=vf_preview,
        command_preview=preview_cmd,
        clip=clip,
        geometry=geometry,
        notes=notes,
    )


def process(
    manifest: Manifest,
    on_progress: Callable[[str, float], None] | None = None,
    fonts: FontCache | None = None,
    cancel_event: threading.Event | None = None,
) -> ExportResult:
    """Probe the source named by *manifest* and export it.

    Args:
        manifest: Validated export manifest.
        on_progress: Optional callback(stage_name, fraction_complete).
        fonts: Process-wide caption font cache.
        cancel_event: Cooperative cancellation flag.
    """
    ffutil.check_ffmpeg()
    probe_result = ffutil.probe(manifest.input)

    entries: list[TimedTextEntry] = []
    if manifest.captions.enabled:
        entries = list(manifest.captions.entries)
        if manifest.captions.srt_path:
            entries += parse_srt(manifest.captions.srt_path.read_text(encoding="utf-8"))

    request = ExportRequest(
        source_path=manifest.input,
        clip=manifest.clip,
        source_width=probe_result.width,
        source_height=probe_result.height,
        editor=manifest.editor,
        plan=manifest.plan,
        entries=entries,
        source_duration=manifest.source_duration or probe_result.duration,
        viewport=manifest.preview_viewport,
        measured_frame=manifest.preview_video_rect,
        config=manifest.export,
    )
    result = export_short(
        request, manifest.output, on_progress=on_progress, fonts=fonts, cancel_event=cancel_event
    )

    if manifest.captions.sidecar_format and entries:
        sidecar = write_sidecar(entries, result.clip, manifest.output, manifest.captions.sidecar_format)
        result.notes.append(f"Caption sidecar written to {sidecar.name}.")
    return result
