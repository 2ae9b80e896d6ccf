"""Web API routes for ShortForge."""

import json
import queue
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)
from loguru import logger

from shortforge.engine import process
from shortforge.errors import EngineFailure, PersistenceFailure, ShortForgeError
from shortforge.lifecycle import (
    STATUS_EXPORTING,
    build_completed_export_record,
    build_or_reuse_record,
    build_render_response,
    mark_exported,
    mark_failed,
    now_ms,
)
from shortforge.manifest import manifest_from_dict
from shortforge.models import ShortPlan
from shortforge.store import group_exports_by_project

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


@bp.route("/")
def index():
    return jsonify({
        "service": "shortforge",
        "endpoints": [
            "POST /api/upload",
            "POST /api/jobs/<job_id>/export",
            "POST /api/jobs/<job_id>/cancel",
            "GET /api/jobs/<job_id>/progress",
            "GET /api/jobs/<job_id>/status",
            "GET /api/jobs/<job_id>/result",
            "GET /api/shorts",
            "DELETE /api/shorts/<project_id>",
        ],
    })


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = job_dir / f"input{ext}"
    f.save(input_path)

    _jobs[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "filename": f.filename,
        "status": "uploaded",
    }

    return jsonify({"job_id": job_id, "filename": f.filename})


def _run_in_background(fn) -> None:
    threading.Thread(target=fn, daemon=True).start()


def _record_failure(repository, project, message: str) -> None:
    """Best-effort: a failed export still marks its project as errored."""
    try:
        repository.put_project(mark_failed(project, now=now_ms(), error=message))
    except PersistenceFailure as e:
        logger.error(f"Could not mark short project {project.id} as failed: {e}")


@bp.route("/api/jobs/<job_id>/export", methods=["POST"])
def start_export(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] not in ("uploaded", "done", "error"):
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    config = request.get_json(silent=True) or {}
    input_path = job["input_path"]
    output_path = job["dir"] / "short.mp4"

    try:
        manifest = manifest_from_dict({**config, "input": str(input_path), "output": str(output_path)})
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid export config: {e}"}), 400

    repository = current_app.config["SHORTS_REPOSITORY"]
    fonts = current_app.config["FONT_CACHE"]
    plan = manifest.plan or ShortPlan(id="plan", clip_id=manifest.clip.id)
    source_project_id = str(config.get("source_project_id") or job_id)

    try:
        project = build_or_reuse_record(
            status=STATUS_EXPORTING,
            now=now_ms(),
            new_id=f"shortproj_{uuid.uuid4().hex[:12]}",
            source_project_id=source_project_id,
            source_media_id=job_id,
            source_filename=job["filename"],
            transcript_id=str(config.get("transcript_id", "")),
            subtitle_id=str(config.get("subtitle_id", "")),
            clip=manifest.clip,
            plan=plan,
            editor=manifest.editor,
            saved_records=repository.list_projects(source_project_id),
            explicit_id=config.get("short_project_id"),
            explicit_name=config.get("name"),
        )
        repository.put_project(project)
    except PersistenceFailure as e:
        return jsonify({"error": str(e)}), 500

    progress_queue: queue.Queue = queue.Queue()
    cancel_event = threading.Event()
    job["progress_queue"] = progress_queue
    job["cancel_event"] = cancel_event
    job["status"] = "exporting"
    job["error"] = None
    job["short_project_id"] = project.id

    def run():
        try:
            def on_progress(stage: str, frac: float):
                progress_queue.put({"stage": stage, "progress": round(frac, 3)})

            result = process(manifest, on_progress=on_progress, fonts=fonts, cancel_event=cancel_event)
            created_at = now_ms()
            export_record = build_completed_export_record(
                id=f"shortexp_{uuid.uuid4().hex[:12]}",
                project=project,
                created_at=created_at,
                filename=result.filename,
                mime_type=result.mime_type,
                size_bytes=result.size_bytes,
                payload=result.read_bytes(),
                command_preview=result.command_preview,
                notes=result.notes,
            )
            repository.put_export(export_record)
            repository.put_project(mark_exported(project, now=created_at, export_id=export_record.id))

            job["output_path"] = result.output_path
            job["result"] = build_render_response(
                job_id=export_record.id,
                created_at=created_at,
                plan=plan,
                filename=result.filename,
                captions_burned_in=result.captions_burned_in,
                command_preview=result.command_preview,
                notes=result.notes,
                seek_mode=result.seek_mode,
                filter_preview=result.filter_preview,
            )
            job["status"] = "done"
        except EngineFailure as e:
            job["status"] = "error"
            job["error"] = f"ffmpeg failed: {e}"
            _record_failure(repository, project, str(e))
        except ShortForgeError as e:
            job["status"] = "error"
            job["error"] = str(e)
            _record_failure(repository, project, str(e))
        except Exception as e:
            logger.exception(f"Export job {job_id} crashed")
            job["status"] = "error"
            job["error"] = str(e)
            _record_failure(repository, project, str(e))
        finally:
            progress_queue.put(None)  # sentinel

    _run_in_background(run)
    return jsonify({"status": "started", "short_project_id": project.id})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_export(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    event = _jobs[job_id].get("cancel_event")
    if event is None or _jobs[job_id]["status"] != "exporting":
        return jsonify({"error": "No export in progress"}), 409
    event.set()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job.get("progress_queue")

    if q is None:
        return jsonify({"error": "No export in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": job.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    return send_file(
        job["output_path"],
        mimetype="video/mp4",
        as_attachment=True,
        download_name=job["result"]["output"]["filename"],
    )


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"], "filename": job.get("filename")}
    if job.get("short_project_id"):
        resp["short_project_id"] = job["short_project_id"]
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)


@bp.route("/api/shorts")
def list_shorts():
    repository = current_app.config["SHORTS_REPOSITORY"]
    source_project_id = request.args.get("source_project_id") or None
    try:
        projects = repository.list_projects(source_project_id)
        exports = group_exports_by_project(repository.list_exports(source_project_id))
    except PersistenceFailure as e:
        return jsonify({"error": str(e)}), 500

    return jsonify({
        "projects": [
            {**p.to_dict(), "exports": [e.to_dict() for e in exports.get(p.id, [])]}
            for p in projects
        ],
    })


@bp.route("/api/shorts/<project_id>", methods=["DELETE"])
def delete_short(project_id: str):
    repository = current_app.config["SHORTS_REPOSITORY"]
    try:
        repository.delete_project(project_id)
    except PersistenceFailure as e:
        return jsonify({"error": str(e)}), 500
    return jsonify({"deleted": project_id})
