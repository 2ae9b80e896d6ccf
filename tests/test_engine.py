"""Tests for the render orchestrator (ffmpeg mocked)."""

import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from shortforge import settings
from shortforge.editors.captions import parse_srt
from shortforge.engine import (
    SEEK_EXACT,
    SEEK_HYBRID,
    ExportRequest,
    RenderAttempt,
    build_export_diagnostics,
    export_short,
    output_filename,
    plan_attempts,
    process,
    recovered_failure,
)
from shortforge.errors import (
    CaptionRenderFailure,
    EngineFailure,
    ExportCancelled,
    GeometryInvariantViolation,
    SeekIncompatibility,
    ValidationError,
)
from shortforge.ffutil import RunResult
from shortforge.manifest import CaptionConfig, Manifest
from shortforge.models import ClipWindow, FrameSize, ShortPlan, TimedTextEntry


def _renderer(outcomes=(), size=4096):
    """Fake run_ffmpeg: one return code per attempt, writing *size* bytes on success."""
    calls: list[list[str]] = []

    def fake(cmd, on_line=None, cancel_event=None):
        calls.append(cmd)
        code = outcomes[len(calls) - 1] if len(calls) <= len(outcomes) else 0
        if on_line:
            on_line("out_time_us=1000000")
            on_line("out_time_us=7000000")
            on_line("frame=90 fps=30 time=00:00:03.00 bitrate=N/A speed=1x")
        if code == 0:
            Path(cmd[-1]).write_bytes(b"\0" * size)
        return RunResult(returncode=code, log_tail=[f"attempt {len(calls)} log"])

    return fake, calls


def _vf(cmd: list[str]) -> str:
    return cmd[cmd.index("-vf") + 1]


@pytest.fixture
def work_dir(tmp_path, monkeypatch) -> Path:
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setattr(settings, "WORK_DIR", str(work))
    return work


@pytest.fixture
def make_request(tmp_path):
    source = tmp_path / "source.mp4"
    source.write_bytes(b"video")

    def make(**overrides) -> ExportRequest:
        fields = dict(
            source_path=source,
            clip=ClipWindow.from_range(8.0, 20.0, id="clip_1"),
            source_width=1920,
            source_height=1080,
            entries=[TimedTextEntry("Hello there", 10.0, 12.0)],
            source_duration=90.0,
        )
        fields.update(overrides)
        return ExportRequest(**fields)

    return make


class TestAttemptPlan:
    def test_with_captions(self):
        assert plan_attempts(True) == [
            RenderAttempt(SEEK_HYBRID, True),
            RenderAttempt(SEEK_EXACT, True),
            RenderAttempt(SEEK_HYBRID, False),
            RenderAttempt(SEEK_EXACT, False),
        ]

    def test_without_captions(self):
        assert plan_attempts(False) == [RenderAttempt(SEEK_HYBRID, False), RenderAttempt(SEEK_EXACT, False)]

    def test_recovered_failure_kinds(self):
        failure = EngineFailure("boom", returncode=1)
        assert isinstance(recovered_failure(RenderAttempt(SEEK_HYBRID, True), failure), SeekIncompatibility)
        assert isinstance(recovered_failure(RenderAttempt(SEEK_EXACT, True), failure), CaptionRenderFailure)
        assert recovered_failure(RenderAttempt(SEEK_EXACT, False), failure) is None


class TestOutputFilename:
    def test_basic(self):
        clip = ClipWindow.from_range(12.4, 30.2)
        assert output_filename("talk.mov", "tiktok", clip) == "talk__tiktok__12-31.mp4"

    def test_sanitised(self):
        clip = ClipWindow.from_range(0.0, 10.0)
        assert output_filename("my clip (final).mp4", "youtube_shorts", clip) == (
            "my_clip_final___youtube_shorts__0-10.mp4"
        )


class TestExportShort:
    def test_too_short_clip_fails_before_ffmpeg(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer()
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            with pytest.raises(ValidationError, match="too short") as exc:
                export_short(make_request(clip=ClipWindow.from_range(5.0, 5.1)), tmp_path / "out.mp4", fonts=fonts)
        assert exc.value.min_duration == 0.25
        assert calls == []

    def test_geometry_violation_aborts_before_ffmpeg(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer()
        request = make_request(viewport=FrameSize(400, 800), measured_frame=FrameSize(1422, 800))
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            with pytest.raises(GeometryInvariantViolation):
                export_short(request, tmp_path / "out.mp4", fonts=fonts)
        assert calls == []

    def test_captioned_hybrid_render(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer()
        out = tmp_path / "exports" / "short.mp4"
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            result = export_short(make_request(), out, fonts=fonts)

        assert len(calls) == 1
        cmd = calls[0]
        assert cmd.count("-ss") == 2
        assert cmd[cmd.index("-i") - 1] == "5"
        assert cmd[cmd.index("-i") + 3] == "3"
        assert "enable='between(t,5.000,7.000)'" in _vf(cmd)

        assert result.seek_mode == SEEK_HYBRID
        assert result.captions_burned_in is True
        assert result.output_path == out
        assert out.stat().st_size == result.size_bytes == 4096
        assert result.filename == "source__youtube_shorts__8-20.mp4"
        assert result.mime_type == "video/mp4"
        assert result.filter_preview.endswith(",...drawtext")
        assert "-progress" not in result.command_preview
        assert "Hybrid trim seek enabled: fast pre-seek 5.00s, exact post-seek 3.00s." in result.notes
        assert any(n.startswith("Subtitles burned in") for n in result.notes)

    def test_fallback_order(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer(outcomes=(1, 1, 0))
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            result = export_short(make_request(), tmp_path / "out.mp4", fonts=fonts)

        assert len(calls) == 3
        hybrid_captions, exact_captions, hybrid_plain = calls
        assert "drawtext" in _vf(hybrid_captions)
        assert exact_captions.count("-ss") == 1
        assert "enable='between(t,10.000,12.000)'" in _vf(exact_captions)
        assert "drawtext" not in _vf(hybrid_plain)
        assert hybrid_plain.count("-ss") == 2

        assert result.seek_mode == SEEK_HYBRID
        assert result.captions_burned_in is False
        assert any("without burned subtitles" in n for n in result.notes)

    def test_exact_seek_fallback_without_captions(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer(outcomes=(1, 0))
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            result = export_short(make_request(entries=[]), tmp_path / "out.mp4", fonts=fonts)

        assert len(calls) == 2
        assert result.seek_mode == SEEK_EXACT
        assert any(n.startswith("Fallback exact-seek mode used from 8.00s") for n in result.notes)
        fonts.try_ensure.assert_not_called()

    def test_all_attempts_fail(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer(outcomes=(1, 1, 1, 1))
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            with pytest.raises(EngineFailure) as exc:
                export_short(make_request(), tmp_path / "out.mp4", fonts=fonts)

        assert len(calls) == 4
        message = str(exc.value)
        assert "clip=8.000-20.000 (12.000s)" in message
        assert "subtitleBurnIn=False" in message
        assert "source=source.mp4" in message
        assert "ffmpeg-log-tail:\nattempt 4 log" in message
        assert exc.value.returncode == 1
        assert not (tmp_path / "out.mp4").exists()

    def test_empty_output_is_rejected(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer(size=10)
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            with pytest.raises(EngineFailure, match="Rendered output is empty"):
                export_short(make_request(), tmp_path / "out.mp4", fonts=fonts)

    def test_font_unavailable_renders_plain(self, make_request, work_dir, fonts, tmp_path):
        fonts.try_ensure.return_value = None
        fake, calls = _renderer()
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            result = export_short(make_request(), tmp_path / "out.mp4", fonts=fonts)

        assert len(calls) == 1
        assert "drawtext" not in _vf(calls[0])
        assert result.captions_burned_in is False
        assert any("Caption font unavailable" in n for n in result.notes)

    def test_clip_is_clamped_to_source(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer()
        request = make_request(clip=ClipWindow.from_range(85.0, 100.0), entries=[])
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            result = export_short(request, tmp_path / "out.mp4", fonts=fonts)

        assert (result.clip.start, result.clip.end) == (75.0, 90.0)
        assert any(n.startswith("Clip adjusted to media range") for n in result.notes)

    def test_progress_is_monotonic_and_completes(self, make_request, work_dir, fonts, tmp_path):
        seen: list[float] = []
        fake, calls = _renderer(outcomes=(1, 0))
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            export_short(
                make_request(), tmp_path / "out.mp4",
                on_progress=lambda stage, frac: seen.append(frac), fonts=fonts,
            )
        assert seen == sorted(seen)
        assert seen[0] == 0.01
        assert seen[-1] == 1.0

    def test_scratch_dir_is_always_removed(self, make_request, work_dir, fonts, tmp_path):
        fake, _ = _renderer()
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            export_short(make_request(), tmp_path / "out.mp4", fonts=fonts)
        assert list(work_dir.iterdir()) == []

        failing, _ = _renderer(outcomes=(1, 1, 1, 1))
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=failing):
            with pytest.raises(EngineFailure):
                export_short(make_request(), tmp_path / "out2.mp4", fonts=fonts)
        assert list(work_dir.iterdir()) == []

    def test_cancelled_before_render(self, make_request, work_dir, fonts, tmp_path):
        fake, calls = _renderer()
        cancel = threading.Event()
        cancel.set()
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=fake):
            with pytest.raises(ExportCancelled):
                export_short(make_request(), tmp_path / "out.mp4", fonts=fonts, cancel_event=cancel)
        assert calls == []
        assert list(work_dir.iterdir()) == []

    def test_cancelled_during_render(self, make_request, work_dir, fonts, tmp_path):
        with patch("shortforge.engine.ffutil.run_ffmpeg", side_effect=ExportCancelled("stop")):
            with pytest.raises(ExportCancelled):
                export_short(make_request(), tmp_path / "out.mp4", fonts=fonts)
        assert list(work_dir.iterdir()) == []


class TestDiagnostics:
    def test_block(self, make_request):
        request = make_request(plan=ShortPlan(id="p", clip_id="clip_1", platform="tiktok"))
        text = build_export_diagnostics(
            request, ClipWindow.from_range(8.0, 20.0), export_entry_count=1, error="boom"
        )
        rows = text.splitlines()
        assert rows[0] == "source=source.mp4"
        assert "platform=tiktok" in rows
        assert "sourceSize=1920x1080" in rows
        assert "sourceDurationSec=90.000" in rows
        assert "selectedSubtitleChunks=1" in rows
        assert rows[-1] == "error=boom"

    def test_unknown_duration(self, make_request):
        text = build_export_diagnostics(make_request(source_duration=None), ClipWindow.from_range(8, 20), 0)
        assert "sourceDurationSec=unknown" in text


class TestProcess:
    @patch("shortforge.engine.export_short")
    @patch("shortforge.engine.ffutil.probe")
    @patch("shortforge.engine.ffutil.check_ffmpeg")
    def test_builds_request_and_writes_sidecar(
        self, mock_check, mock_probe, mock_export, landscape_probe, tmp_path
    ):
        srt = tmp_path / "captions.srt"
        srt.write_text("1\n00:00:10,000 --> 00:00:12,000\nFrom file\n")
        mock_probe.return_value = landscape_probe
        clip = ClipWindow.from_range(8.0, 20.0)
        mock_export.return_value.clip = clip
        mock_export.return_value.notes = []

        manifest = Manifest(
            input=tmp_path / "in.mp4",
            output=tmp_path / "out.mp4",
            clip=clip,
            captions=CaptionConfig(
                entries=[TimedTextEntry("Inline", 9.0, 10.0)], srt_path=srt, sidecar_format="srt"
            ),
        )
        result = process(manifest)

        request = mock_export.call_args.args[0]
        assert (request.source_width, request.source_height) == (1920, 1080)
        assert request.source_duration == 90.0
        assert [e.text for e in request.entries] == ["Inline", "From file"]

        sidecar = tmp_path / "out.srt"
        assert [e.text for e in parse_srt(sidecar.read_text())] == ["Inline", "From file"]
        assert result.notes == ["Caption sidecar written to out.srt."]

    @patch("shortforge.engine.export_short")
    @patch("shortforge.engine.ffutil.probe")
    @patch("shortforge.engine.ffutil.check_ffmpeg")
    def test_disabled_captions(self, mock_check, mock_probe, mock_export, landscape_probe, tmp_path):
        mock_probe.return_value = landscape_probe
        manifest = Manifest(
            input=tmp_path / "in.mp4",
            output=tmp_path / "out.mp4",
            clip=ClipWindow.from_range(8.0, 20.0),
            captions=CaptionConfig(enabled=False, entries=[TimedTextEntry("x", 9.0, 10.0)]),
        )
        process(manifest)
        assert mock_export.call_args.args[0].entries == []
