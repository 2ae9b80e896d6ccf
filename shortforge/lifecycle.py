"""Short project lifecycle: draft -> exporting -> exported | error."""

import math
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Callable

from shortforge.manifest import parse_editor
from shortforge.models import ClipWindow, EditorState, ShortPlan

STATUS_DRAFT = "draft"
STATUS_EXPORTING = "exporting"
STATUS_EXPORTED = "exported"
STATUS_ERROR = "error"
STATUSES = (STATUS_DRAFT, STATUS_EXPORTING, STATUS_EXPORTED, STATUS_ERROR)

EXPORT_COMPLETED = "completed"

PLATFORM_LABELS = {
    "youtube_shorts": "YouTube Shorts",
    "instagram_reels": "Instagram Reels",
    "tiktok": "TikTok",
}


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ShortIdentity:
    """Natural key of a short: the same five ids mean the same logical short."""

    source_project_id: str
    transcript_id: str
    subtitle_id: str
    clip_id: str
    plan_id: str


@dataclass
class ShortProjectRecord:
    id: str
    source_project_id: str
    source_media_id: str
    source_filename: str
    transcript_id: str
    subtitle_id: str
    clip_id: str
    plan_id: str
    platform: str
    name: str
    clip: ClipWindow
    plan: ShortPlan
    editor: EditorState
    created_at: int
    updated_at: int
    status: str = STATUS_DRAFT
    last_export_id: str | None = None
    last_error: str | None = None

    @property
    def identity(self) -> ShortIdentity:
        return ShortIdentity(
            self.source_project_id, self.transcript_id, self.subtitle_id, self.clip_id, self.plan_id
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ShortProjectRecord":
        return cls(**{
            **data,
            "clip": ClipWindow(**data["clip"]),
            "plan": _plan_from_dict(data["plan"]),
            "editor": parse_editor(data.get("editor")),
        })


@dataclass(frozen=True)
class ShortExportRecord:
    """A finished render. Never modified after creation."""

    id: str
    short_project_id: str
    source_project_id: str
    source_filename: str
    platform: str
    created_at: int
    filename: str
    mime_type: str
    size_bytes: int
    clip: ClipWindow
    plan: ShortPlan
    editor: EditorState
    status: str = EXPORT_COMPLETED
    command_preview: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    payload: bytes | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        """Metadata only; the payload is stored separately."""
        data = asdict(replace(self, payload=None))
        data.pop("payload")
        return data

    @classmethod
    def from_dict(cls, data: dict, payload: bytes | None = None) -> "ShortExportRecord":
        return cls(**{
            **data,
            "clip": ClipWindow(**data["clip"]),
            "plan": _plan_from_dict(data["plan"]),
            "editor": parse_editor(data.get("editor")),
            "payload": payload,
        })


def _plan_from_dict(data: dict) -> ShortPlan:
    data = dict(data)
    if "target_duration_range" in data:
        data["target_duration_range"] = tuple(data["target_duration_range"])
    return ShortPlan(**data)


def seconds_to_clock(seconds: float) -> str:
    """``m:ss`` below an hour, ``h:mm:ss`` above."""
    total = max(0, math.floor(seconds)) if math.isfinite(seconds) else 0
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def platform_label(platform: str) -> str:
    return PLATFORM_LABELS.get(platform, "TikTok")


def default_project_name(
    plan: ShortPlan,
    clip: ClipWindow,
    clock: Callable[[float], str] = seconds_to_clock,
) -> str:
    return f"{platform_label(plan.platform)} • {clock(clip.start)}-{clock(clip.end)}"


def find_existing_record(
    records: list[ShortProjectRecord],
    identity: ShortIdentity,
    explicit_id: str | None = None,
) -> ShortProjectRecord | None:
    """Look up by explicit id first, then by the natural key."""
    if explicit_id:
        by_id = next((r for r in records if r.id == explicit_id), None)
        if by_id is not None:
            return by_id
    return next((r for r in records if r.identity == identity), None)


def build_or_reuse_record(
    *,
    status: str,
    now: int,
    new_id: str,
    source_project_id: str,
    source_media_id: str,
    source_filename: str,
    transcript_id: str,
    subtitle_id: str,
    clip: ClipWindow,
    plan: ShortPlan,
    editor: EditorState,
    saved_records: list[ShortProjectRecord],
    explicit_id: str | None = None,
    explicit_name: str | None = None,
    last_export_id: str | None = None,
    last_error: str | None = None,
    clock: Callable[[float], str] = seconds_to_clock,
) -> ShortProjectRecord:
    """Upsert a project record by identity.

    An existing record keeps its id, ``created_at``, name and last export id;
    everything else is taken from the arguments.
    """
    if status not in STATUSES:
        raise ValueError(f"Unknown short project status: {status!r}")
    identity = ShortIdentity(source_project_id, transcript_id, subtitle_id, clip.id, plan.id)
    existing = find_existing_record(saved_records, identity, explicit_id)

    name = (explicit_name or "").strip()
    if not name:
        name = existing.name if existing else default_project_name(plan, clip, clock)

    return ShortProjectRecord(
        id=existing.id if existing else new_id,
        source_project_id=source_project_id,
        source_media_id=source_media_id,
        source_filename=source_filename,
        transcript_id=transcript_id,
        subtitle_id=subtitle_id,
        clip_id=clip.id,
        plan_id=plan.id,
        platform=plan.platform,
        name=name,
        clip=clip,
        plan=plan,
        editor=editor,
        created_at=existing.created_at if existing else now,
        updated_at=now,
        status=status,
        last_export_id=last_export_id or (existing.last_export_id if existing else None),
        last_error=last_error,
    )


def mark_exported(project: ShortProjectRecord, now: int, export_id: str) -> ShortProjectRecord:
    return replace(
        project, status=STATUS_EXPORTED, updated_at=now, last_export_id=export_id, last_error=None
    )


def mark_failed(project: ShortProjectRecord, now: int, error: str) -> ShortProjectRecord:
    # last_export_id is kept: a failed re-export doesn't erase a prior success
    return replace(project, status=STATUS_ERROR, updated_at=now, last_error=error)


def build_completed_export_record(
    *,
    id: str,
    project: ShortProjectRecord,
    created_at: int,
    filename: str,
    mime_type: str,
    size_bytes: int,
    payload: bytes | None = None,
    command_preview: list[str] | None = None,
    notes: list[str] | None = None,
) -> ShortExportRecord:
    return ShortExportRecord(
        id=id,
        short_project_id=project.id,
        source_project_id=project.source_project_id,
        source_filename=project.source_filename,
        platform=project.plan.platform,
        created_at=created_at,
        filename=filename,
        mime_type=mime_type,
        size_bytes=size_bytes,
        clip=project.clip,
        plan=project.plan,
        editor=project.editor,
        command_preview=list(command_preview or []),
        notes=list(notes or []),
        payload=payload,
    )


def build_render_response(
    job_id: str,
    created_at: int,
    plan: ShortPlan,
    filename: str,
    captions_burned_in: bool,
    command_preview: list[str],
    notes: list[str],
    seek_mode: str | None = None,
    filter_preview: str | None = None,
) -> dict:
    """Caller-facing summary of a completed local render."""
    return {
        "ok": True,
        "provider_mode": "local",
        "job_id": job_id,
        "status": EXPORT_COMPLETED,
        "created_at": created_at,
        "estimated_seconds": 0,
        "output": {
            "platform": plan.platform,
            "filename": filename,
            "aspect_ratio": plan.aspect_ratio,
            "resolution": plan.resolution,
            "subtitle_burned_in": captions_burned_in,
        },
        "debug_preview": {
            "seek_mode": seek_mode,
            "filter_preview": filter_preview,
            "command_preview": list(command_preview),
            "notes": list(notes),
        },
    }
