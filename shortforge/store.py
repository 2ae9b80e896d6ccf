"""Short project/export persistence."""

import json
import threading
from pathlib import Path
from typing import Protocol

from loguru import logger

from shortforge.errors import PersistenceFailure
from shortforge.lifecycle import ShortExportRecord, ShortProjectRecord


class ShortsRepository(Protocol):
    def list_projects(self, source_project_id: str | None = None) -> list[ShortProjectRecord]: ...

    def list_exports(self, source_project_id: str | None = None) -> list[ShortExportRecord]: ...

    def get_export(self, export_id: str) -> ShortExportRecord | None: ...

    def put_project(self, record: ShortProjectRecord) -> None: ...

    def put_export(self, record: ShortExportRecord) -> None: ...

    def delete_project(self, project_id: str) -> None: ...


def sort_projects(records: list[ShortProjectRecord]) -> list[ShortProjectRecord]:
    return sorted(records, key=lambda r: r.updated_at or r.created_at, reverse=True)


def sort_exports(records: list[ShortExportRecord]) -> list[ShortExportRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


def group_exports_by_project(exports: list[ShortExportRecord]) -> dict[str, list[ShortExportRecord]]:
    grouped: dict[str, list[ShortExportRecord]] = {}
    for record in exports:
        grouped.setdefault(record.short_project_id, []).append(record)
    return grouped


class InMemoryShortsRepository:
    """Dict-backed repository, used by the web app and tests."""

    def __init__(self):
        self._projects: dict[str, ShortProjectRecord] = {}
        self._exports: dict[str, ShortExportRecord] = {}
        self._lock = threading.Lock()

    def list_projects(self, source_project_id: str | None = None) -> list[ShortProjectRecord]:
        with self._lock:
            records = list(self._projects.values())
        if source_project_id:
            records = [r for r in records if r.source_project_id == source_project_id]
        return sort_projects(records)

    def list_exports(self, source_project_id: str | None = None) -> list[ShortExportRecord]:
        with self._lock:
            records = list(self._exports.values())
        if source_project_id:
            records = [r for r in records if r.source_project_id == source_project_id]
        return sort_exports(records)

    def get_export(self, export_id: str) -> ShortExportRecord | None:
        with self._lock:
            return self._exports.get(export_id)

    def put_project(self, record: ShortProjectRecord) -> None:
        with self._lock:
            self._projects[record.id] = record

    def put_export(self, record: ShortExportRecord) -> None:
        with self._lock:
            self._exports[record.id] = record

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            self._projects.pop(project_id, None)
            for export_id in [e.id for e in self._exports.values() if e.short_project_id == project_id]:
                del self._exports[export_id]


class JsonShortsRepository:
    """One JSON file per record under *root*; export payloads sit beside them as ``.bin``."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    @property
    def projects_dir(self) -> Path:
        return self.root / "projects"

    @property
    def exports_dir(self) -> Path:
        return self.root / "exports"

    def _read(self, path: Path) -> dict:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(f"Failed to read {path}: {e}") from e

    def _write(self, path: Path, data: dict) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError) as e:
            raise PersistenceFailure(f"Failed to write {path}: {e}") from e

    def _load_export(self, path: Path, with_payload: bool = False) -> ShortExportRecord:
        payload = None
        blob = path.with_suffix(".bin")
        if with_payload and blob.exists():
            try:
                payload = blob.read_bytes()
            except OSError as e:
                raise PersistenceFailure(f"Failed to read {blob}: {e}") from e
        return ShortExportRecord.from_dict(self._read(path), payload=payload)

    def list_projects(self, source_project_id: str | None = None) -> list[ShortProjectRecord]:
        with self._lock:
            records = [
                ShortProjectRecord.from_dict(self._read(p))
                for p in sorted(self.projects_dir.glob("*.json"))
            ]
        if source_project_id:
            records = [r for r in records if r.source_project_id == source_project_id]
        return sort_projects(records)

    def list_exports(self, source_project_id: str | None = None) -> list[ShortExportRecord]:
        with self._lock:
            records = [self._load_export(p) for p in sorted(self.exports_dir.glob("*.json"))]
        if source_project_id:
            records = [r for r in records if r.source_project_id == source_project_id]
        return sort_exports(records)

    def get_export(self, export_id: str) -> ShortExportRecord | None:
        path = self.exports_dir / f"{export_id}.json"
        with self._lock:
            if not path.exists():
                return None
            return self._load_export(path, with_payload=True)

    def put_project(self, record: ShortProjectRecord) -> None:
        with self._lock:
            self._write(self.projects_dir / f"{record.id}.json", record.to_dict())

    def put_export(self, record: ShortExportRecord) -> None:
        path = self.exports_dir / f"{record.id}.json"
        with self._lock:
            if record.payload is not None:
                try:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.with_suffix(".bin").write_bytes(record.payload)
                except OSError as e:
                    raise PersistenceFailure(f"Failed to write export payload {record.id}: {e}") from e
            self._write(path, record.to_dict())

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            doomed = [self.projects_dir / f"{project_id}.json"]
            for path in self.exports_dir.glob("*.json"):
                if self._read(path).get("short_project_id") == project_id:
                    doomed += [path, path.with_suffix(".bin")]
            try:
                for path in doomed:
                    path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceFailure(f"Failed to delete short project {project_id}: {e}") from e
        logger.debug(f"Deleted short project {project_id} and {len(doomed) // 2} export(s)")
