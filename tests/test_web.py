"""Unit tests for the ShortForge web API."""

import io
import json
from unittest.mock import MagicMock, patch

import pytest

from shortforge.errors import EngineFailure, ValidationError
from shortforge.store import InMemoryShortsRepository
from shortforge.web import create_app

EXPORT_CONFIG = {
    "clip": {"id": "clip_1", "start": 1.0, "end": 5.0},
    "plan": {"id": "plan_1", "platform": "tiktok"},
    "editor": {"zoom": 1.2},
    "source_project_id": "proj_1",
}


@pytest.fixture
def repository():
    return InMemoryShortsRepository()


@pytest.fixture
def app(tmp_path, repository, fonts):
    app = create_app(work_dir=tmp_path, repository=repository, fonts=fonts)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def inline_worker():
    """Run the export worker on the request thread."""
    with patch("shortforge.web.routes._run_in_background", side_effect=lambda fn: fn()):
        yield


@pytest.fixture
def render_result(tmp_path):
    out = tmp_path / "rendered.mp4"
    out.write_bytes(b"MP4DATA")
    result = MagicMock()
    result.output_path = out
    result.filename = "short-tiktok-clip_1-1_0-5_0.mp4"
    result.mime_type = "video/mp4"
    result.size_bytes = 7
    result.read_bytes.return_value = b"MP4DATA"
    result.command_preview = ["ffmpeg", "-y"]
    result.notes = ["Hybrid seek used."]
    result.captions_burned_in = True
    result.seek_mode = "hybrid"
    result.filter_preview = "crop=..."
    return result


def _upload(client, filename="test.mp4", content=b"fake video data"):
    return client.post(
        "/api/upload",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
    )


def _job(client) -> str:
    return _upload(client).get_json()["job_id"]


class TestIndex:
    def test_lists_endpoints(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["service"] == "shortforge"
        assert "GET /api/shorts" in data["endpoints"]


class TestUpload:
    def test_upload_success(self, client):
        resp = _upload(client)
        assert resp.status_code == 200
        data = resp.get_json()
        assert "job_id" in data
        assert data["filename"] == "test.mp4"

    def test_upload_no_file(self, client):
        assert client.post("/api/upload").status_code == 400

    def test_upload_creates_file(self, client, tmp_path):
        job_id = _upload(client, content=b"CONTENT").get_json()["job_id"]
        input_file = tmp_path / job_id / "input.mp4"
        assert input_file.read_bytes() == b"CONTENT"


class TestExport:
    def test_unknown_job(self, client):
        assert client.post("/api/jobs/nonexistent/export", json=EXPORT_CONFIG).status_code == 404

    def test_missing_clip(self, client):
        resp = client.post(f"/api/jobs/{_job(client)}/export", json={"plan": {"id": "p"}})
        assert resp.status_code == 400
        assert "Invalid export config" in resp.get_json()["error"]

    @patch("shortforge.web.routes.process")
    def test_export_completes(self, mock_process, client, repository, render_result, inline_worker):
        mock_process.return_value = render_result
        job_id = _job(client)

        resp = client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG)
        assert resp.status_code == 200
        started = resp.get_json()
        assert started["status"] == "started"

        manifest = mock_process.call_args[0][0]
        assert manifest.clip.duration == 4.0
        assert manifest.plan.platform == "tiktok"
        assert manifest.editor.zoom == 1.2

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "done"
        assert status["short_project_id"] == started["short_project_id"]
        assert status["result"]["output"]["filename"] == render_result.filename
        assert status["result"]["debug_preview"]["seek_mode"] == "hybrid"

        [project] = repository.list_projects("proj_1")
        assert project.status == "exported"
        assert project.name.startswith("TikTok • 0:01-0:05")
        [export] = repository.list_exports("proj_1")
        assert project.last_export_id == export.id
        assert repository.get_export(export.id).payload == b"MP4DATA"

    @patch("shortforge.web.routes.process")
    def test_re_export_reuses_project(self, mock_process, client, repository, render_result, inline_worker):
        mock_process.return_value = render_result
        job_id = _job(client)
        first = client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG).get_json()
        second = client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG).get_json()

        assert first["short_project_id"] == second["short_project_id"]
        assert len(repository.list_projects()) == 1
        assert len(repository.list_exports()) == 2

    @patch("shortforge.web.routes.process")
    def test_engine_failure_marks_error(self, mock_process, client, repository, inline_worker):
        mock_process.side_effect = EngineFailure("exit 1", returncode=1)
        job_id = _job(client)
        client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG)

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "error"
        assert status["error"].startswith("ffmpeg failed: exit 1")

        [project] = repository.list_projects()
        assert project.status == "error"
        assert project.last_error.startswith("exit 1")
        assert repository.list_exports() == []

    @patch("shortforge.web.routes.process")
    def test_validation_failure(self, mock_process, client, repository, inline_worker):
        mock_process.side_effect = ValidationError("Clip is too short to export.", min_duration=0.5)
        job_id = _job(client)
        client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG)

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["error"] == "Clip is too short to export."
        assert repository.list_projects()[0].status == "error"

    @patch("shortforge.web.routes.process")
    def test_progress_stream_ends_with_result(self, mock_process, client, render_result, inline_worker):
        def fake_process(manifest, on_progress=None, **kwargs):
            on_progress("Rendering", 0.5)
            return render_result

        mock_process.side_effect = fake_process
        job_id = _job(client)
        client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG)

        body = client.get(f"/api/jobs/{job_id}/progress").get_data(as_text=True)
        events = [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]
        assert events[0] == {"stage": "Rendering", "progress": 0.5}
        assert events[-1]["stage"] == "complete"
        assert events[-1]["result"]["ok"] is True


class TestJobEndpoints:
    def test_status_unknown(self, client):
        assert client.get("/api/jobs/nonexistent/status").status_code == 404

    def test_status_uploaded(self, client):
        data = client.get(f"/api/jobs/{_job(client)}/status").get_json()
        assert data["status"] == "uploaded"
        assert data["filename"] == "test.mp4"

    def test_progress_before_export(self, client):
        assert client.get(f"/api/jobs/{_job(client)}/progress").status_code == 409

    def test_cancel_without_export(self, client):
        assert client.post(f"/api/jobs/{_job(client)}/cancel").status_code == 409

    def test_result_not_ready(self, client):
        assert client.get(f"/api/jobs/{_job(client)}/result").status_code == 409

    @patch("shortforge.web.routes.process")
    def test_download_result(self, mock_process, client, render_result, inline_worker):
        mock_process.return_value = render_result
        job_id = _job(client)
        client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG)

        resp = client.get(f"/api/jobs/{job_id}/result")
        assert resp.status_code == 200
        assert resp.data == b"MP4DATA"
        assert resp.mimetype == "video/mp4"
        assert render_result.filename in resp.headers["Content-Disposition"]


class TestShorts:
    @patch("shortforge.web.routes.process")
    def test_list_and_delete(self, mock_process, client, repository, render_result, inline_worker):
        mock_process.return_value = render_result
        job_id = _job(client)
        project_id = client.post(f"/api/jobs/{job_id}/export", json=EXPORT_CONFIG).get_json()["short_project_id"]

        listing = client.get("/api/shorts?source_project_id=proj_1").get_json()
        [project] = listing["projects"]
        assert project["id"] == project_id
        assert len(project["exports"]) == 1
        assert "payload" not in project["exports"][0]

        assert client.get("/api/shorts?source_project_id=other").get_json() == {"projects": []}

        resp = client.delete(f"/api/shorts/{project_id}")
        assert resp.get_json() == {"deleted": project_id}
        assert repository.list_projects() == []
        assert repository.list_exports() == []
