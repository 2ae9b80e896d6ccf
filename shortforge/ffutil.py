"""FFmpeg/ffprobe subprocess helpers."""

import json
import re
import shutil
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from shortforge import settings
from shortforge.errors import ExportCancelled
from shortforge.models import ProbeResult

LOG_TAIL_LINES = 40
CANCEL_POLL_SECONDS = 0.25

_TIMECODE_RE = re.compile(r"^(\d+):(\d{2}):(\d{2})(?:\.(\d+))?$")
_LOG_TIME_RE = re.compile(r"\btime=(\d+:\d{2}:\d{2}(?:\.\d+)?)\b")
_PROGRESS_KV_RE = re.compile(r"^(out_time_us|out_time_ms|progress)=(\S+)$")
# Bare key=value lines come from -progress; everything else is kept for diagnostics
_KV_LINE_RE = re.compile(r"^[\w.]+=\S*$")


class FFmpegNotFoundError(RuntimeError):
    pass


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in (settings.FFMPEG_PATH, settings.FFPROBE_PATH):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def probe(input_path: Path) -> ProbeResult:
    """Extract media metadata via ffprobe. Audio is optional for shorts."""
    cmd = [
        settings.FFPROBE_PATH,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    video_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "video"), None
    )
    audio_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "audio"), None
    )

    if video_stream is None:
        raise ValueError(f"No video stream found in {input_path}")

    # Parse fps from r_frame_rate (e.g. "30/1")
    num, den = video_stream.get("r_frame_rate", "0/1").split("/")
    fps = int(num) / int(den) if int(den) else 0.0

    return ProbeResult(
        duration=float(data["format"]["duration"]),
        width=int(video_stream["width"]),
        height=int(video_stream["height"]),
        fps=fps,
        codec_video=video_stream["codec_name"],
        audio_sample_rate=int(audio_stream["sample_rate"]) if audio_stream else None,
        codec_audio=audio_stream["codec_name"] if audio_stream else None,
    )


def parse_timecode(timecode: str) -> float | None:
    """``HH:MM:SS(.frac)`` -> seconds, or None if malformed."""
    match = _TIMECODE_RE.match(timecode.strip())
    if not match:
        return None
    hours, minutes, seconds, fraction = match.groups()
    frac = float(f"0.{fraction}") if fraction else 0.0
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds) + frac


def parse_log_time(line: str) -> float | None:
    """Processed time from an ffmpeg stats line (``... time=00:00:03.20 ...``)."""
    match = _LOG_TIME_RE.search(line)
    if not match:
        return None
    return parse_timecode(match.group(1))


@dataclass
class ProgressReport:
    """One parsed ``-progress`` key: out time in seconds, or the end marker."""

    out_time: float | None = None
    finished: bool = False


def parse_progress_line(line: str) -> ProgressReport | None:
    """Parse a ``key=value`` line written by ``-progress``."""
    match = _PROGRESS_KV_RE.match(line.strip())
    if not match:
        return None
    key, value = match.groups()
    if key == "progress":
        return ProgressReport(finished=value == "end")
    try:
        # out_time_ms is microseconds too, despite the name
        return ProgressReport(out_time=int(value) / 1_000_000)
    except ValueError:
        return None


@dataclass
class CodecParams:
    """Output encoding parameters for a rendered short."""

    video_codec: str = "libx264"
    preset: str = "veryfast"
    crf: int = 22
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    faststart: bool = True

    def args(self) -> list[str]:
        out = [
            "-c:v", self.video_codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-c:a", self.audio_codec,
            "-b:a", self.audio_bitrate,
        ]
        if self.faststart:
            out += ["-movflags", "+faststart"]
        return out


def build_render_command(
    input_path: Path | str,
    output_path: Path | str,
    video_filter: str,
    trim_offset: float,
    trim_duration: float,
    seek_before: float | None = None,
    codec: CodecParams | None = None,
    ffmpeg: str | None = None,
    report_progress: bool = True,
) -> list[str]:
    """Build the ffmpeg argv for one render attempt.

    With *seek_before* set, ffmpeg does a fast keyframe seek on the input and
    then trims *trim_offset* seconds exactly after decoding (hybrid seek).
    Without it the whole offset is decoded (exact seek).
    """
    codec = codec or CodecParams()
    cmd = [ffmpeg or settings.FFMPEG_PATH, "-y", "-hide_banner"]
    if report_progress:
        cmd += ["-progress", "pipe:2", "-stats_period", "0.5"]
    if seek_before is not None:
        cmd += ["-ss", _fmt_seconds(seek_before)]
    cmd += [
        "-i", str(input_path),
        "-ss", _fmt_seconds(trim_offset),
        "-t", _fmt_seconds(trim_duration),
        "-vf", video_filter,
        *codec.args(),
        str(output_path),
    ]
    return cmd


def _fmt_seconds(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".") or "0"


@dataclass
class RunResult:
    returncode: int
    log_tail: list[str] = field(default_factory=list)


def _kill_on_cancel(proc: subprocess.Popen, cancel_event: threading.Event, done: threading.Event) -> None:
    """Kill *proc* once *cancel_event* is set, even if ffmpeg has gone quiet."""
    while not done.is_set():
        if cancel_event.wait(CANCEL_POLL_SECONDS):
            if proc.poll() is None:
                proc.kill()
            return


def run_ffmpeg(
    cmd: list[str],
    on_line: Callable[[str], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> RunResult:
    """Run ffmpeg, streaming each stderr line to *on_line*.

    The process is killed if *cancel_event* is set or anything raises while
    it runs; it is never left behind.
    """
    tail: deque[str] = deque(maxlen=LOG_TAIL_LINES)
    proc = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
    )
    done = threading.Event()
    watcher = None
    if cancel_event is not None:
        watcher = threading.Thread(target=_kill_on_cancel, args=(proc, cancel_event, done), daemon=True)
        watcher.start()
    try:
        for raw in proc.stderr:
            if cancel_event is not None and cancel_event.is_set():
                break
            line = raw.strip()
            if not line:
                continue
            if not _KV_LINE_RE.match(line):
                tail.append(line)
            if on_line:
                on_line(line)
        if cancel_event is not None and cancel_event.is_set():
            raise ExportCancelled("Export cancelled while ffmpeg was running")
        returncode = proc.wait()
    finally:
        done.set()
        if watcher is not None:
            watcher.join()
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        if proc.stderr:
            proc.stderr.close()
    return RunResult(returncode=returncode, log_tail=list(tail))
