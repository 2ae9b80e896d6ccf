"""JSON manifest schema — the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path

from shortforge.ffutil import CodecParams
from shortforge.models import (
    ClipWindow,
    EditorState,
    FrameSize,
    ShortPlan,
    StyleOverrides,
    TimedTextEntry,
)


@dataclass
class ExportConfig:
    """Tunables for one short export."""

    output_width: int = 1080
    output_height: int = 1920
    min_clip_duration: float = 0.25
    fast_seek_cushion: float = 3.0
    min_output_bytes: int = 1024
    max_scale_delta_pct: float = 1.5
    max_aspect_delta_pct: float = 1.5
    codec: CodecParams = field(default_factory=CodecParams)


@dataclass
class CaptionConfig:
    """Which captions to burn in, and whether to also write a sidecar file."""

    enabled: bool = True
    entries: list[TimedTextEntry] = field(default_factory=list)
    srt_path: Path | None = None
    sidecar_format: str | None = None


@dataclass
class Manifest:
    """Top-level export manifest."""

    input: Path
    output: Path
    clip: ClipWindow
    version: str = "1"
    source_duration: float | None = None
    editor: EditorState = field(default_factory=EditorState)
    plan: ShortPlan | None = None
    captions: CaptionConfig = field(default_factory=CaptionConfig)
    preview_viewport: FrameSize | None = None
    preview_video_rect: FrameSize | None = None
    export: ExportConfig = field(default_factory=ExportConfig)


def _pick(cls, data: dict) -> dict:
    """Keep only keys that are fields of *cls* (manifests may carry extras)."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _frame(data: dict | None) -> FrameSize | None:
    if not data:
        return None
    return FrameSize(width=float(data["width"]), height=float(data["height"]))


def parse_editor(data: dict | None) -> EditorState:
    data = dict(data or {})
    style = StyleOverrides(**_pick(StyleOverrides, data.pop("style", None) or {}))
    return EditorState(style=style, **_pick(EditorState, data))


def parse_entries(rows: list[dict] | None) -> list[TimedTextEntry]:
    return [
        TimedTextEntry(
            text=str(row.get("text", "")),
            start=float(row["start"]),
            end=None if row.get("end") is None else float(row["end"]),
        )
        for row in rows or []
    ]


def parse_export_config(data: dict | None) -> ExportConfig:
    data = dict(data or {})
    codec = CodecParams(**_pick(CodecParams, data.pop("codec", None) or {}))
    return ExportConfig(codec=codec, **_pick(ExportConfig, data))


def manifest_from_dict(data: dict) -> Manifest:
    if "input" not in data or "output" not in data or "clip" not in data:
        raise ValueError("Manifest must contain 'input', 'output' and 'clip' fields")

    clip_data = data["clip"]
    clip = ClipWindow.from_range(
        float(clip_data["start"]), float(clip_data["end"]), id=str(clip_data.get("id", "clip"))
    )

    plan = None
    if "plan" in data:
        plan = ShortPlan(**{"clip_id": clip.id, **_pick(ShortPlan, data["plan"])})

    cc = data.get("captions", {})
    captions = CaptionConfig(
        enabled=cc.get("enabled", True),
        entries=parse_entries(cc.get("entries")),
        srt_path=Path(cc["srt_path"]) if cc.get("srt_path") else None,
        sidecar_format=cc.get("sidecar_format"),
    )

    source_duration = data.get("source_duration")
    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        clip=clip,
        source_duration=None if source_duration is None else float(source_duration),
        editor=parse_editor(data.get("editor")),
        plan=plan,
        captions=captions,
        preview_viewport=_frame(data.get("preview_viewport")),
        preview_video_rect=_frame(data.get("preview_video_rect")),
        export=parse_export_config(data.get("export")),
    )


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())
    return manifest_from_dict(data)
